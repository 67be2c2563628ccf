"""
Single-slot caches.

SnapshotCache holds the latest full deal collection; StageTaxonomyCache
holds the pipeline stage list. Both live in one backing slot that is
replaced wholesale on every write, so a reader sees either the previous
value or the new one.
"""

from dealboard.cache.backing import SLOT_DEALS, SLOT_STAGES, CacheBacking
from dealboard.cache.clock import Clock, utcnow
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import Deal, Snapshot, StageTaxonomy

logger = get_logger(__name__)


class SnapshotCache:
    """Latest full deal dataset with staleness-age queries."""

    def __init__(self, backing: CacheBacking, clock: Clock = utcnow):
        self._backing = backing
        self._clock = clock

    async def get_snapshot(self) -> Snapshot | None:
        entry = await self._backing.get_slot(SLOT_DEALS)
        if entry is None:
            return None
        return Snapshot(
            data=[Deal.from_dict(item) for item in entry.value],
            last_fetched=entry.cached_at,
        )

    async def replace_snapshot(self, data: list[Deal]) -> Snapshot:
        payload = [deal.to_dict() for deal in data]
        last_fetched = self._clock()
        await self._backing.replace_slot(SLOT_DEALS, payload, last_fetched)
        logger.info("Deal snapshot replaced", deal_count=len(payload))
        return Snapshot(data=list(data), last_fetched=last_fetched)

    async def clear(self) -> None:
        await self._backing.clear_slot(SLOT_DEALS)
        logger.info("Deal snapshot cleared")

    async def age_seconds(self) -> float | None:
        """Seconds since the snapshot was written, or None when there is none."""
        entry = await self._backing.get_slot(SLOT_DEALS)
        if entry is None:
            return None
        return entry.age_seconds(self._clock())


class StageTaxonomyCache:
    """Pipeline stages. No TTL; emptied only by a full cache clear."""

    def __init__(self, backing: CacheBacking, clock: Clock = utcnow):
        self._backing = backing
        self._clock = clock

    async def get(self) -> StageTaxonomy | None:
        entry = await self._backing.get_slot(SLOT_STAGES)
        if entry is None:
            return None
        return StageTaxonomy.from_dict(entry.value)

    async def replace(self, taxonomy: StageTaxonomy) -> None:
        await self._backing.replace_slot(SLOT_STAGES, taxonomy.to_dict(), self._clock())

    async def clear(self) -> None:
        await self._backing.clear_slot(SLOT_STAGES)

    async def exists(self) -> bool:
        return await self._backing.get_slot(SLOT_STAGES) is not None
