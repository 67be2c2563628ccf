"""
Idempotent schema bootstrap for the durable cache backing.
"""

from dealboard.db.helpers import execute_transaction
from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS cache_deals (
        id SERIAL PRIMARY KEY,
        data JSONB NOT NULL,
        last_fetched TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_companies (
        company_id VARCHAR(255) PRIMARY KEY,
        data JSONB NOT NULL,
        cached_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_contacts (
        contact_id VARCHAR(255) PRIMARY KEY,
        data JSONB NOT NULL,
        cached_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_meetings (
        company_id VARCHAR(255) PRIMARY KEY,
        last_meeting_date TIMESTAMPTZ,
        meeting_ids TEXT,
        cached_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    # Older deployments created cache_meetings before identity tracking existed
    "ALTER TABLE cache_meetings ADD COLUMN IF NOT EXISTS meeting_ids TEXT",
    """
    CREATE TABLE IF NOT EXISTS cache_pipeline_stages (
        id SERIAL PRIMARY KEY,
        data JSONB NOT NULL,
        cached_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS company_engagements (
        id SERIAL PRIMARY KEY,
        company_id VARCHAR(255) NOT NULL,
        engagement_id VARCHAR(255) UNIQUE NOT NULL,
        engagement_type VARCHAR(50) NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        direction VARCHAR(20),
        content TEXT,
        metadata JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deal_next_steps (
        deal_id VARCHAR(255) PRIMARY KEY,
        company_id VARCHAR(255) NOT NULL,
        next_step TEXT NOT NULL,
        last_engagement_timestamp TIMESTAMPTZ,
        generated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_cache_companies_cached_at ON cache_companies(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_cache_contacts_cached_at ON cache_contacts(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_cache_meetings_cached_at ON cache_meetings(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_cache_deals_last_fetched ON cache_deals(last_fetched)",
    "CREATE INDEX IF NOT EXISTS idx_company_engagements_company_id ON company_engagements(company_id)",
    "CREATE INDEX IF NOT EXISTS idx_company_engagements_timestamp ON company_engagements(timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_deal_next_steps_company_id ON deal_next_steps(company_id)",
]


async def initialize_schema() -> None:
    """Create cache tables and indexes if they do not exist yet."""
    await execute_transaction([(statement, ()) for statement in SCHEMA_STATEMENTS])
    logger.info("Database schema initialized", statement_count=len(SCHEMA_STATEMENTS))
