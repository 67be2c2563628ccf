"""Decides whether a stored next-step suggestion can be served as-is."""

from dealboard.cache.backing import CacheBacking
from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SuggestionGate:
    def __init__(self, backing: CacheBacking):
        self._backing = backing

    async def should_regenerate(
        self, entity_id: str, parent_entity_id: str, force_refresh: bool = False
    ) -> bool:
        """
        True when the suggestion for entity_id must be generated again.

        Forced refreshes and deals without a stored suggestion always
        regenerate. Otherwise only an engagement strictly newer than the
        one the suggestion was generated from triggers regeneration.
        """
        if force_refresh:
            return True

        record = await self._backing.get_suggestion(entity_id)
        if record is None:
            return True

        latest = await self._backing.latest_engagement_timestamp(parent_entity_id)
        if latest is None:
            return False
        if record.last_engagement_at is None:
            return True

        newer = latest > record.last_engagement_at
        if newer:
            logger.debug(
                "New engagement since suggestion was generated",
                deal_id=entity_id,
                stored=record.last_engagement_at.isoformat(),
                latest=latest.isoformat(),
            )
        return newer
