"""
Cache backing capability interface.

Every cache in the dashboard (per-key entity caches, single-slot caches,
the engagement log and the suggestion records) talks to storage through
CacheBacking. Two implementations exist, a process-local one and a
Postgres one, and both must honour identical read/write/age semantics so
callers never need to know which is active.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from dealboard.models.domain.deal_domain import CacheEntry, EngagementRecord, SuggestionRecord

# Per-key namespaces
NAMESPACE_COMPANY = "company"
NAMESPACE_CONTACT = "contact"
NAMESPACE_MEETING = "meeting"
NAMESPACES = (NAMESPACE_COMPANY, NAMESPACE_CONTACT, NAMESPACE_MEETING)

# Single-slot caches
SLOT_DEALS = "deals"
SLOT_STAGES = "stages"
SLOTS = (SLOT_DEALS, SLOT_STAGES)


class CacheBackingError(Exception):
    """Raised when a backing is asked for something it does not store."""


class CacheBacking(ABC):
    """Storage capability shared by all dashboard caches."""

    name: str = "abstract"

    async def initialize(self) -> None:
        """Prepare storage. Called once at startup."""

    async def close(self) -> None:
        """Release storage resources. Called once at shutdown."""

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Return a health dict with at least a `healthy` flag."""

    # Per-key entries ----------------------------------------------------

    @abstractmethod
    async def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        """Return the stored entry regardless of age, or None."""

    @abstractmethod
    async def put_entry(
        self, namespace: str, key: str, value: dict[str, Any], cached_at: datetime
    ) -> None:
        """Upsert an entry. Last write wins."""

    @abstractmethod
    async def clear_namespace(self, namespace: str) -> None:
        """Remove every entry in a namespace."""

    @abstractmethod
    async def count_entries(self, namespace: str) -> int:
        """Number of entries stored in a namespace."""

    # Single slots -------------------------------------------------------

    @abstractmethod
    async def get_slot(self, slot: str) -> CacheEntry | None:
        """Return the current slot value, or None if the slot is empty."""

    @abstractmethod
    async def replace_slot(self, slot: str, value: Any, stored_at: datetime) -> None:
        """Atomically replace the slot; readers see old or new, never a mix."""

    @abstractmethod
    async def clear_slot(self, slot: str) -> None:
        """Empty the slot."""

    # Engagement log -----------------------------------------------------

    @abstractmethod
    async def upsert_engagement(self, record: EngagementRecord) -> None:
        """Insert or update an engagement by id. Never duplicates."""

    @abstractmethod
    async def list_engagements(self, parent_entity_id: str, limit: int = 10) -> list[EngagementRecord]:
        """Most recent engagements for a parent, newest first."""

    @abstractmethod
    async def latest_engagement_timestamp(self, parent_entity_id: str) -> datetime | None:
        """MAX(timestamp) over a parent's engagements, or None."""

    # Suggestion records -------------------------------------------------

    @abstractmethod
    async def get_suggestion(self, entity_id: str) -> SuggestionRecord | None:
        """Stored suggestion for a deal, or None."""

    @abstractmethod
    async def upsert_suggestion(self, record: SuggestionRecord) -> None:
        """Overwrite a deal's suggestion, keeping the original generated_at."""

    @abstractmethod
    async def list_suggestions(self) -> list[SuggestionRecord]:
        """Every stored suggestion."""

    def _check_namespace(self, namespace: str) -> None:
        if namespace not in NAMESPACES:
            raise CacheBackingError(f"Unknown cache namespace '{namespace}'")

    def _check_slot(self, slot: str) -> None:
        if slot not in SLOTS:
            raise CacheBackingError(f"Unknown cache slot '{slot}'")
