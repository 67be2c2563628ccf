"""
Thin query helpers over the shared pool.

Every helper borrows one connection, runs its statement(s) and maps any
psycopg failure to DatabaseError naming the operation that failed.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from dealboard.db.pool import db_pool
from dealboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A cache backing query failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _database_errors(operation: str, query: str) -> AsyncGenerator[None, None]:
    try:
        yield
    except psycopg.Error as e:
        logger.error("Database query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"{operation} failed: {e}", operation=operation) from e


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None when the query returns nothing."""
    async with _database_errors("fetch_one", query), db_pool.connection() as conn:
        cursor = await conn.execute(query, params)
        return await cursor.fetchone()


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    async with _database_errors("fetch_all", query), db_pool.connection() as conn:
        cursor = await conn.execute(query, params)
        return await cursor.fetchall()


async def fetch_val(query: str, params: tuple = ()) -> Any:
    """First column of the first row, or None."""
    row = await fetch_one(query, params)
    return next(iter(row.values())) if row else None


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run one statement; returns the affected row count."""
    async with _database_errors("execute", query), db_pool.connection() as conn:
        cursor = await conn.execute(query, params)
        return cursor.rowcount


async def execute_transaction(statements: list[tuple[str, tuple]]) -> None:
    """
    Run (query, params) pairs atomically on one connection.

    Readers on other connections see either none or all of the changes.
    """
    summary = "; ".join(query.strip().split("\n")[0] for query, _ in statements)
    async with _database_errors("transaction", summary), db_pool.transaction() as conn:
        for query, params in statements:
            await conn.execute(query, params)
    logger.debug("Transaction committed", statement_count=len(statements))
