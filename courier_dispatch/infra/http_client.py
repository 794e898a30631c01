# courier_dispatch/infra/http_client.py
"""
Shared HTTP client sessions for the application.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **routing** – distance lookups  (total=10 s, connect=3 s, pool limit=20)
- **webhook** – earnings / notification posts (total=15 s, connect=5 s, pool limit=10)

Per-request timeouts from settings are applied on top of these ceilings.

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_routing_session() -> aiohttp.ClientSession:
    """Session for routing provider calls (many small requests while matching)."""
    return _get_or_create(
        "routing",
        aiohttp.ClientTimeout(total=10, connect=3),
        limit=20,
    )


def get_webhook_session() -> aiohttp.ClientSession:
    """Session for outbound webhooks (earnings, notifications)."""
    return _get_or_create(
        "webhook",
        aiohttp.ClientTimeout(total=15, connect=5),
        limit=10,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
