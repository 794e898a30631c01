# courier_dispatch/infra/db_async.py
"""
Async database connection using asyncpg.

One pool per process, created in the application lifespan
(``init_pool``) and closed on shutdown (``close_pool``).
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from courier_dispatch.config import settings
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={
            'application_name': 'courier_dispatch',
            'statement_timeout': str(settings.pg_statement_timeout_ms),
        }
    )

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


async def acquire_conn() -> asyncpg.Connection:
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    return await _pool.acquire()


async def release_conn(conn: asyncpg.Connection) -> None:
    if _pool is not None:
        await _pool.release(conn)


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Get database connection from pool (async).

    Usage:
        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM delivery_orders WHERE id = $1", delivery_id)

    Args:
        autocommit: If True (default), each statement commits on its own.
            If False, the block runs in one transaction that commits on
            normal exit and rolls back on any exception (cancellation included).
    """
    conn = await acquire_conn()

    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await release_conn(conn)


async def get_pool() -> asyncpg.Pool:
    """Get the connection pool directly (for health checks)"""
    if _pool is None:
        raise RuntimeError("Connection pool not initialized")
    return _pool
