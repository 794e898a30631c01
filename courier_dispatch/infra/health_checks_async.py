# courier_dispatch/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Dict, Any
from enum import Enum

from courier_dispatch.infra.db_async import get_pool
from courier_dispatch.infra.logging_config import get_logger
from courier_dispatch.infra.schema_validator import get_schema_info

logger = get_logger(__name__)

REQUIRED_TABLES = ["courier_profiles", "delivery_orders", "pickup_points"]


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """Returns dict with 'status', 'details', and optionally 'error'"""
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Check database connectivity and the dispatch tables"""

    def __init__(self):
        super().__init__("database", critical=True)

    async def check(self) -> Dict[str, Any]:
        start = time.time()

        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

                missing_tables = [
                    table for table in REQUIRED_TABLES
                    if await conn.fetchval("SELECT to_regclass($1)", table) is None
                ]
                if missing_tables:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Missing required tables",
                        "error": f"Missing: {', '.join(missing_tables)}"
                    }

                pending = await conn.fetchval(
                    "SELECT COUNT(*) FROM delivery_orders WHERE status = 'PENDING' AND courier_id IS NULL"
                )

            duration = time.time() - start
            if duration > 1.0:
                return {
                    "status": HealthStatus.DEGRADED,
                    "details": f"Slow database response: {duration:.3f}s",
                    "response_time": duration
                }

            return {
                "status": HealthStatus.HEALTHY,
                "details": "Database operational",
                "response_time": duration,
                "pending_deliveries": pending,
            }

        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200]
            }


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(self, checks: list[AsyncHealthCheck] | None = None):
        self.checks = checks if checks is not None else [AsyncDatabaseHealthCheck()]

    async def run_checks(self) -> Dict[str, Any]:
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] == HealthStatus.DEGRADED and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        schema_info = None
        if overall_status != HealthStatus.UNHEALTHY:
            schema_info = await get_schema_info()

        return {
            "status": overall_status.value,
            "checks": results,
            "schema": schema_info,
            "timestamp": time.time()
        }


_async_health_checker = AsyncHealthChecker()


def get_async_health_checker() -> AsyncHealthChecker:
    return _async_health_checker
