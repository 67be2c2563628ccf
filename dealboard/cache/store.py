"""
Key-value cache store and the cache facade used by the services.

KeyValueCache gives TTL-aware reads over one backing namespace. Entries
never expire in storage: age is only checked when reading, so a stale
entry is still there (and still overwritable) after it stops being served.
"""

from typing import Any

from dealboard.cache.backing import (
    NAMESPACE_COMPANY,
    NAMESPACE_CONTACT,
    NAMESPACE_MEETING,
    NAMESPACES,
    CacheBacking,
)
from dealboard.cache.clock import Clock, utcnow
from dealboard.cache.meeting_identity import MeetingIdentityCache
from dealboard.cache.memory_backing import InMemoryCacheBacking
from dealboard.cache.snapshot import SnapshotCache, StageTaxonomyCache
from dealboard.config import Settings
from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class KeyValueCache:
    """Per-entity-type cache keyed by entity id."""

    def __init__(self, backing: CacheBacking, namespace: str, clock: Clock = utcnow):
        self._backing = backing
        self.namespace = namespace
        self._clock = clock

    async def get(self, key: str, max_age_s: float) -> dict[str, Any] | None:
        """Cached value for key, or None if absent or older than max_age_s."""
        entry = await self._backing.get_entry(self.namespace, key)
        if entry is None:
            return None
        if entry.age_seconds(self._clock()) > max_age_s:
            return None
        return entry.value

    async def set(self, key: str, value: dict[str, Any]) -> None:
        await self._backing.put_entry(self.namespace, key, value, self._clock())

    async def count(self) -> int:
        return await self._backing.count_entries(self.namespace)


class CacheStore:
    """All dashboard caches over a single backing."""

    def __init__(self, backing: CacheBacking, clock: Clock = utcnow):
        self.backing = backing
        self.clock = clock
        self.companies = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
        self.contacts = KeyValueCache(backing, NAMESPACE_CONTACT, clock)
        self.meetings = MeetingIdentityCache(backing, clock)
        self.deals = SnapshotCache(backing, clock)
        self.stages = StageTaxonomyCache(backing, clock)

    async def clear_all(self) -> None:
        """
        Empty every cache. The engagement log and stored suggestions are
        history rather than cache and are kept.
        """
        await self.deals.clear()
        await self.stages.clear()
        for namespace in NAMESPACES:
            await self.backing.clear_namespace(namespace)
        logger.info("All caches cleared", backing=self.backing.name)

    async def stats(self) -> dict[str, Any]:
        snapshot = await self.deals.get_snapshot()
        now = self.clock()
        return {
            "backing": self.backing.name,
            "deals": {
                "cached": snapshot is not None,
                "count": len(snapshot.data) if snapshot else 0,
                "last_fetched": snapshot.last_fetched.isoformat() if snapshot else None,
                "age_seconds": round(snapshot.age_seconds(now), 1) if snapshot else None,
            },
            "companies": await self.companies.count(),
            "contacts": await self.contacts.count(),
            "meetings": await self.backing.count_entries(NAMESPACE_MEETING),
            "pipeline_stages": await self.stages.exists(),
        }


def build_backing(config: Settings) -> CacheBacking:
    """Pick the storage backing from configuration."""
    if config.use_database():
        from dealboard.cache.postgres_backing import PostgresCacheBacking

        logger.info("Using Postgres cache backing")
        return PostgresCacheBacking(config.DATABASE_URL)

    logger.info("Using in-memory cache backing (DATABASE_URL not configured)")
    return InMemoryCacheBacking()
