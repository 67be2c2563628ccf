"""Pipeline stage taxonomy, cached in its own single-row slot."""

from dealboard.cache.snapshot import StageTaxonomyCache
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import StageTaxonomy
from dealboard.services.crm_client import CrmApiError, CrmClient

logger = get_logger(__name__)


class StagesService:
    def __init__(self, crm: CrmClient, cache: StageTaxonomyCache):
        self._crm = crm
        self._cache = cache

    async def get_taxonomy(self) -> StageTaxonomy:
        """Cached taxonomy, fetched on first use. An upstream failure yields an empty, uncached taxonomy."""
        cached = await self._cache.get()
        if cached is not None:
            return cached

        try:
            pipelines = await self._crm.list_pipelines("deals")
        except CrmApiError as e:
            logger.error("Error fetching pipeline stages", error=str(e), status_code=e.status_code)
            return StageTaxonomy(all_stages=[])

        taxonomy = StageTaxonomy.from_pipelines(pipelines)
        await self._cache.replace(taxonomy)
        logger.info("Pipeline stages cached", stage_count=len(taxonomy.all_stages))
        return taxonomy
