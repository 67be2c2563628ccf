"""
Durable cache backing on Postgres.

Table layout is created by dealboard.db.schema. The pool must be
initialised before any method here is called; database failures surface
as DatabaseError to the caller of the specific operation.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from dealboard.cache.backing import (
    NAMESPACE_COMPANY,
    NAMESPACE_CONTACT,
    NAMESPACE_MEETING,
    SLOT_DEALS,
    SLOT_STAGES,
    CacheBacking,
)
from dealboard.db.helpers import execute_query, execute_transaction, fetch_all, fetch_one, fetch_val
from dealboard.db.pool import db_pool
from dealboard.db.schema import initialize_schema
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import (
    DIRECTION_NONE,
    CacheEntry,
    EngagementRecord,
    SuggestionRecord,
    parse_timestamp,
)

logger = get_logger(__name__)

# namespace -> (table, key column)
_ENTRY_TABLES = {
    NAMESPACE_COMPANY: ("cache_companies", "company_id"),
    NAMESPACE_CONTACT: ("cache_contacts", "contact_id"),
    NAMESPACE_MEETING: ("cache_meetings", "company_id"),
}

# slot -> (table, timestamp column)
_SLOT_TABLES = {
    SLOT_DEALS: ("cache_deals", "last_fetched"),
    SLOT_STAGES: ("cache_pipeline_stages", "cached_at"),
}


class PostgresCacheBacking(CacheBacking):
    """Cache storage in Postgres tables, surviving restarts."""

    name = "postgres"

    def __init__(self, conninfo: str | None = None):
        self._conninfo = conninfo

    async def initialize(self) -> None:
        await db_pool.initialize(self._conninfo)
        await initialize_schema()
        logger.info("Postgres cache backing initialized")

    async def close(self) -> None:
        await db_pool.close()

    async def health_check(self) -> dict[str, Any]:
        health = await db_pool.health_check()
        health["backing"] = self.name
        return health

    # Per-key entries ----------------------------------------------------

    async def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        self._check_namespace(namespace)
        table, key_column = _ENTRY_TABLES[namespace]

        if namespace == NAMESPACE_MEETING:
            row = await fetch_one(
                f"SELECT last_meeting_date, meeting_ids, cached_at FROM {table} WHERE {key_column} = %s",
                (key,),
            )
            if not row:
                return None
            last_meeting = row["last_meeting_date"]
            value = {
                "last_meeting_date": last_meeting.isoformat() if last_meeting else None,
                "meeting_ids": row["meeting_ids"],
            }
            return CacheEntry(value=value, cached_at=row["cached_at"])

        row = await fetch_one(
            f"SELECT data, cached_at FROM {table} WHERE {key_column} = %s",
            (key,),
        )
        if not row:
            return None
        return CacheEntry(value=row["data"], cached_at=row["cached_at"])

    async def put_entry(
        self, namespace: str, key: str, value: dict[str, Any], cached_at: datetime
    ) -> None:
        self._check_namespace(namespace)
        table, key_column = _ENTRY_TABLES[namespace]

        if namespace == NAMESPACE_MEETING:
            await execute_query(
                f"""
                INSERT INTO {table} ({key_column}, last_meeting_date, meeting_ids, cached_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT ({key_column})
                DO UPDATE SET
                    last_meeting_date = EXCLUDED.last_meeting_date,
                    meeting_ids = EXCLUDED.meeting_ids,
                    cached_at = EXCLUDED.cached_at
                """,
                (
                    key,
                    parse_timestamp(value.get("last_meeting_date")),
                    value.get("meeting_ids"),
                    cached_at,
                ),
            )
            return

        await execute_query(
            f"""
            INSERT INTO {table} ({key_column}, data, cached_at)
            VALUES (%s, %s, %s)
            ON CONFLICT ({key_column})
            DO UPDATE SET data = EXCLUDED.data, cached_at = EXCLUDED.cached_at
            """,
            (key, Jsonb(value), cached_at),
        )

    async def clear_namespace(self, namespace: str) -> None:
        self._check_namespace(namespace)
        table, _ = _ENTRY_TABLES[namespace]
        await execute_query(f"DELETE FROM {table}")

    async def count_entries(self, namespace: str) -> int:
        self._check_namespace(namespace)
        table, _ = _ENTRY_TABLES[namespace]
        return int(await fetch_val(f"SELECT COUNT(*) AS count FROM {table}") or 0)

    # Single slots -------------------------------------------------------

    async def get_slot(self, slot: str) -> CacheEntry | None:
        self._check_slot(slot)
        table, ts_column = _SLOT_TABLES[slot]
        row = await fetch_one(
            f"SELECT data, {ts_column} AS stored_at FROM {table} ORDER BY {ts_column} DESC LIMIT 1"
        )
        if not row:
            return None
        return CacheEntry(value=row["data"], cached_at=row["stored_at"])

    async def replace_slot(self, slot: str, value: Any, stored_at: datetime) -> None:
        self._check_slot(slot)
        table, ts_column = _SLOT_TABLES[slot]
        await execute_transaction(
            [
                (f"DELETE FROM {table}", ()),
                (
                    f"INSERT INTO {table} (data, {ts_column}) VALUES (%s, %s)",
                    (Jsonb(value), stored_at),
                ),
            ]
        )

    async def clear_slot(self, slot: str) -> None:
        self._check_slot(slot)
        table, _ = _SLOT_TABLES[slot]
        await execute_query(f"DELETE FROM {table}")

    # Engagement log -----------------------------------------------------

    async def upsert_engagement(self, record: EngagementRecord) -> None:
        metadata = {"subject": record.subject, "participants": record.participants}
        await execute_query(
            """
            INSERT INTO company_engagements (
                company_id, engagement_id, engagement_type, timestamp, direction, content, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (engagement_id) DO UPDATE
            SET company_id = EXCLUDED.company_id,
                engagement_type = EXCLUDED.engagement_type,
                timestamp = EXCLUDED.timestamp,
                direction = EXCLUDED.direction,
                content = EXCLUDED.content,
                metadata = EXCLUDED.metadata
            """,
            (
                record.parent_entity_id,
                record.id,
                record.kind,
                record.timestamp,
                record.direction,
                record.content,
                Jsonb(metadata),
            ),
        )

    async def list_engagements(self, parent_entity_id: str, limit: int = 10) -> list[EngagementRecord]:
        rows = await fetch_all(
            """
            SELECT engagement_id, company_id, engagement_type, timestamp, direction, content, metadata
            FROM company_engagements
            WHERE company_id = %s
            ORDER BY timestamp DESC
            LIMIT %s
            """,
            (parent_entity_id, limit),
        )
        return [self._engagement_from_row(row) for row in rows]

    async def latest_engagement_timestamp(self, parent_entity_id: str) -> datetime | None:
        return await fetch_val(
            "SELECT MAX(timestamp) AS last_timestamp FROM company_engagements WHERE company_id = %s",
            (parent_entity_id,),
        )

    @staticmethod
    def _engagement_from_row(row: dict[str, Any]) -> EngagementRecord:
        metadata = row.get("metadata") or {}
        return EngagementRecord(
            id=row["engagement_id"],
            parent_entity_id=row["company_id"],
            kind=row["engagement_type"],
            timestamp=row["timestamp"],
            direction=row.get("direction") or DIRECTION_NONE,
            content=row.get("content"),
            subject=metadata.get("subject"),
            participants=metadata.get("participants") or {},
        )

    # Suggestion records -------------------------------------------------

    async def get_suggestion(self, entity_id: str) -> SuggestionRecord | None:
        row = await fetch_one("SELECT * FROM deal_next_steps WHERE deal_id = %s", (entity_id,))
        return self._suggestion_from_row(row) if row else None

    async def upsert_suggestion(self, record: SuggestionRecord) -> None:
        await execute_query(
            """
            INSERT INTO deal_next_steps (
                deal_id, company_id, next_step, last_engagement_timestamp, generated_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (deal_id)
            DO UPDATE SET
                company_id = EXCLUDED.company_id,
                next_step = EXCLUDED.next_step,
                last_engagement_timestamp = EXCLUDED.last_engagement_timestamp,
                updated_at = EXCLUDED.updated_at
            """,
            (
                record.entity_id,
                record.parent_entity_id,
                record.text,
                record.last_engagement_at,
                record.generated_at,
                record.updated_at,
            ),
        )

    async def list_suggestions(self) -> list[SuggestionRecord]:
        rows = await fetch_all("SELECT * FROM deal_next_steps")
        return [self._suggestion_from_row(row) for row in rows]

    @staticmethod
    def _suggestion_from_row(row: dict[str, Any]) -> SuggestionRecord:
        return SuggestionRecord(
            entity_id=row["deal_id"],
            parent_entity_id=row["company_id"],
            text=row["next_step"],
            last_engagement_at=row.get("last_engagement_timestamp"),
            generated_at=row["generated_at"],
            updated_at=row["updated_at"],
        )
