# courier_dispatch/infra/schema_validator.py
"""
Schema version check at startup.

Migrations run separately (``python -m courier_dispatch.infra.migrate``);
the application only refuses to start against a schema that does not
match ``settings.expected_schema_version``.
"""
from __future__ import annotations
from courier_dispatch.config import settings
from courier_dispatch.infra.db_async import db_conn
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_MIGRATE_HINT = "Run migrations first: python -m courier_dispatch.infra.migrate"


async def _latest_migration(conn):
    table_exists = await conn.fetchval("SELECT to_regclass('public.schema_migrations') IS NOT NULL")
    if not table_exists:
        return None
    return await conn.fetchrow(
        "SELECT version, applied_at FROM schema_migrations ORDER BY version DESC LIMIT 1"
    )


async def validate_schema_version() -> dict:
    """
    Raises:
        RuntimeError: schema missing or at a different version
    """
    async with db_conn() as conn:
        latest = await _latest_migration(conn)

    if latest is None:
        error = f"No migrations have been applied. {_MIGRATE_HINT}"
        logger.critical(error)
        raise RuntimeError(error)

    current_version = latest['version']
    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! Expected: {settings.expected_schema_version}, "
            f"Found: {current_version}. {_MIGRATE_HINT}"
        )
        logger.critical(error)
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current_version}")
    return {
        "ok": True,
        "current_version": current_version,
        "expected_version": settings.expected_schema_version,
    }


async def get_schema_info() -> dict:
    """Schema state for the readiness endpoint."""
    async with db_conn() as conn:
        latest = await _latest_migration(conn)

    latest_version = latest['version'] if latest else None
    return {
        "initialized": latest is not None,
        "latest_version": latest_version,
        "expected_version": settings.expected_schema_version,
        "is_compatible": latest_version == settings.expected_schema_version,
    }
