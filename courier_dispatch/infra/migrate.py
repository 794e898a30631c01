#!/usr/bin/env python3
# courier_dispatch/infra/migrate.py
"""
Standalone migration runner.

    python -m courier_dispatch.infra.migrate

Run it in CI/CD before deployment or as a one-off job.  The application
validates the schema version at startup but never migrates on its own.
"""
import asyncio
import sys

from courier_dispatch.config import settings
from courier_dispatch.infra.db_async import close_pool, init_pool
from courier_dispatch.infra.logging_config import get_logger, setup_logging
from courier_dispatch.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("=" * 60)
    logger.info("Courier dispatch migration runner")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")
    logger.info("=" * 60)

    try:
        await init_pool()
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    if result['applied']:
        for migration in result['applied']:
            logger.info(f"  ✓ {migration}")
    else:
        logger.info("No new migrations to apply")

    return 0 if result['ok'] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
