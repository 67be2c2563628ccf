"""
Postgres connection pool for the durable cache backing.

Opened once at startup when DATABASE_URL is configured; every connection
handed out returns dict rows, runs in autocommit and speaks UTC.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "60s"


class DatabasePoolManager:
    """Owns one AsyncConnectionPool from open to close. Not reopenable."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._state = "new"

    def _require_open(self) -> AsyncConnectionPool:
        if self._state != "open" or self.pool is None:
            raise RuntimeError(f"Database pool is {self._state}, call initialize() first")
        return self.pool

    async def initialize(self, conninfo: str | None = None) -> None:
        if self._state == "open":
            logger.warning("Database pool already open")
            return
        if self._state == "closed":
            raise RuntimeError("Database pool was closed and cannot be reopened")

        pool_config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=conninfo or settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )

        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Could not open database pool", error=str(e), error_type=type(e).__name__)
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        self._state = "open"
        logger.info(
            "Database pool opened",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    @staticmethod
    async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(sql.Literal(f"dealboard-{settings.environment}"))
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT)))

    async def close(self) -> None:
        if self._state != "open":
            return

        self._state = "closed"
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout_seconds=CLOSE_TIMEOUT_SECONDS)

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection; it goes back to the pool on exit."""
        async with self._require_open().connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection inside a transaction: commit on success, roll back on error."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if self._state != "open":
            return {"healthy": False, "service": "database_pool", "error": f"Pool is {self._state}"}

        started = time.perf_counter()
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {key: stats.get(key, 0) for key in ("pool_size", "pool_available", "requests_waiting")},
        }


db_pool = DatabasePoolManager()
