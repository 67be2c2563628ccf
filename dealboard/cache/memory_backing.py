"""Process-local cache backing used when no database is configured."""

import copy
from datetime import datetime
from typing import Any

from dealboard.cache.backing import NAMESPACES, CacheBacking
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import CacheEntry, EngagementRecord, SuggestionRecord

logger = get_logger(__name__)


class InMemoryCacheBacking(CacheBacking):
    """
    Dict-based storage. Contents are lost on restart.

    Values are deep-copied on the way in and out so callers can never
    mutate stored state behind the cache's back, mirroring the isolation a
    database round-trip gives. No method awaits between reading and
    writing its dicts, so every operation is atomic under asyncio.
    """

    name = "memory"

    def __init__(self):
        self._entries: dict[str, dict[str, CacheEntry]] = {ns: {} for ns in NAMESPACES}
        self._slots: dict[str, CacheEntry] = {}
        self._engagements: dict[str, EngagementRecord] = {}
        self._suggestions: dict[str, SuggestionRecord] = {}

    async def initialize(self) -> None:
        logger.info("In-memory cache backing initialized")

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": True, "service": "cache_backing", "backing": self.name}

    async def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        self._check_namespace(namespace)
        entry = self._entries[namespace].get(key)
        if entry is None:
            return None
        return CacheEntry(value=copy.deepcopy(entry.value), cached_at=entry.cached_at)

    async def put_entry(
        self, namespace: str, key: str, value: dict[str, Any], cached_at: datetime
    ) -> None:
        self._check_namespace(namespace)
        self._entries[namespace][key] = CacheEntry(value=copy.deepcopy(value), cached_at=cached_at)

    async def clear_namespace(self, namespace: str) -> None:
        self._check_namespace(namespace)
        self._entries[namespace] = {}

    async def count_entries(self, namespace: str) -> int:
        self._check_namespace(namespace)
        return len(self._entries[namespace])

    async def get_slot(self, slot: str) -> CacheEntry | None:
        self._check_slot(slot)
        entry = self._slots.get(slot)
        if entry is None:
            return None
        return CacheEntry(value=copy.deepcopy(entry.value), cached_at=entry.cached_at)

    async def replace_slot(self, slot: str, value: Any, stored_at: datetime) -> None:
        self._check_slot(slot)
        # Build the new entry fully before the single assignment swaps it in
        self._slots[slot] = CacheEntry(value=copy.deepcopy(value), cached_at=stored_at)

    async def clear_slot(self, slot: str) -> None:
        self._check_slot(slot)
        self._slots.pop(slot, None)

    async def upsert_engagement(self, record: EngagementRecord) -> None:
        self._engagements[record.id] = copy.deepcopy(record)

    async def list_engagements(self, parent_entity_id: str, limit: int = 10) -> list[EngagementRecord]:
        matching = [e for e in self._engagements.values() if e.parent_entity_id == parent_entity_id]
        matching.sort(key=lambda e: e.timestamp, reverse=True)
        return [copy.deepcopy(e) for e in matching[:limit]]

    async def latest_engagement_timestamp(self, parent_entity_id: str) -> datetime | None:
        timestamps = [
            e.timestamp for e in self._engagements.values() if e.parent_entity_id == parent_entity_id
        ]
        return max(timestamps) if timestamps else None

    async def get_suggestion(self, entity_id: str) -> SuggestionRecord | None:
        record = self._suggestions.get(entity_id)
        return copy.deepcopy(record) if record else None

    async def upsert_suggestion(self, record: SuggestionRecord) -> None:
        stored = copy.deepcopy(record)
        existing = self._suggestions.get(record.entity_id)
        if existing:
            stored.generated_at = existing.generated_at
        self._suggestions[record.entity_id] = stored

    async def list_suggestions(self) -> list[SuggestionRecord]:
        return [copy.deepcopy(r) for r in self._suggestions.values()]
