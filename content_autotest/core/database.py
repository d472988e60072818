"""
Async PostgreSQL connection pool management using asyncpg.

This module owns the single asyncpg pool used by the Postgres store adapters
in services/store.py. The pool is created once at application startup (see
main.py lifespan) and closed at shutdown.

JSON and JSONB columns are decoded to Python objects on every connection, so
variant payloads and run result details round-trip as dicts.

Usage:
    from content_autotest.core.database import init_db, close_db, execute_query

    await init_db()
    rows = await execute_query("SELECT * FROM ab_tests WHERE status = $1", "active")
    await close_db()

See Also:
    - content_autotest/core/config.py: DATABASE_URL
    - content_autotest/sql/automation_queries.py: the queries run through these helpers
"""

import json
from typing import Any, List, Optional

import asyncpg
from asyncpg import Connection, Pool

from content_autotest.core.config import get_settings


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


async def _init_connection(conn: Connection) -> None:
    """Register JSON codecs so json/jsonb columns decode to dicts and lists."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog',
        )


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: returns the existing pool if one was already created.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()

        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=2,
            max_size=10,
            command_timeout=60,
            init=_init_connection,
        )

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing it lazily if needed.

    Returns:
        Pool: The asyncpg connection pool instance.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Safe to call when the pool was never initialized.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# Query Execution Helpers
# =============================================================================

async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """
    Execute a query and return all rows.

    Args:
        query: SQL with $1, $2, ... placeholders.
        *args: Positional query parameters.

    Returns:
        List[asyncpg.Record]: Rows returned by the query.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_query_one(query: str, *args: Any) -> Optional[asyncpg.Record]:
    """
    Execute a query and return the first row, or None when nothing matches.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def execute_scalar(query: str, *args: Any) -> Any:
    """
    Execute a query and return the first column of the first row.

    Used for COUNT(*) style lookups.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetchval(query, *args)


async def execute_command(query: str, *args: Any) -> str:
    """
    Execute a command (INSERT/UPDATE/DELETE) and return the status string.

    Returns:
        str: The command status, e.g. 'UPDATE 1' or 'DELETE 3'.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


async def execute_many(query: str, args_list: List[tuple]) -> None:
    """
    Execute the same command for each tuple of arguments (batch insert of targets).
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        await conn.executemany(query, args_list)
