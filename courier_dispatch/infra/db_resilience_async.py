# courier_dispatch/infra/db_resilience_async.py
"""
Async database resilience utilities.

Connection acquisition is retried on transient errors.  Statements are
not: a compare-and-set that reached the server must not run twice.
"""
from __future__ import annotations
import asyncio
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from courier_dispatch.infra.db_async import acquire_conn, release_conn
from courier_dispatch.infra.logging_config import get_logger
from courier_dispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors
    - Server closed connection
    - Too many connections
    """
    if isinstance(exc, (asyncpg.PostgresConnectionError, asyncpg.TooManyConnectionsError)):
        return True

    if isinstance(exc, (ConnectionError, OSError)):
        return True

    error_message = str(exc).lower()
    transient_patterns = [
        "connection reset",
        "server closed",
        "too many connections",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


async def acquire_with_retry(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
) -> asyncpg.Connection:
    """Acquire a pooled connection, retrying transient failures with backoff."""
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await acquire_conn()
        except Exception as exc:
            if not is_transient_error(exc):
                raise

            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                DispatchMetrics.database_error("acquire")
                raise

            logger.warning(
                f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                f"Retrying in {delay:.2f}s..."
            )

            await asyncio.sleep(delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("unreachable")


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Pooled connection with retry on acquisition.

    Usage:
        async with safe_db_conn(autocommit=False) as conn:
            await conn.execute(...)

    With ``autocommit=False`` the block is one transaction: it commits on
    normal exit and rolls back on any exception, including cancellation
    by an enclosing timeout.
    """
    conn = await acquire_with_retry()
    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await release_conn(conn)
