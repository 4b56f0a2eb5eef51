"""
Health check utilities for monitoring service dependencies.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import text

from ..cache import get_cache
from ..database import get_session_factory
from ..services.payment_gateway import PaymentGatewayAdapter
from .circuit_breaker import CircuitState

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthCheckResult:
    """Result of a health check."""

    def __init__(self, service: str, healthy: bool, response_time: float, details: Optional[Dict[str, Any]] = None):
        self.service = service
        self.healthy = healthy
        self.response_time = response_time
        self.details = details or {}
        self.timestamp = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "healthy": self.healthy,
            "response_time": self.response_time,
            "details": self.details,
            "timestamp": self.timestamp
        }


async def check_database_health() -> HealthCheckResult:
    """Check database connectivity."""
    start_time = time.time()

    try:
        async with get_session_factory()() as session:
            result = await session.execute(text("SELECT 1"))
            healthy = result.scalar_one() == 1
        return HealthCheckResult("database", healthy, time.time() - start_time)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return HealthCheckResult(
            "database",
            False,
            time.time() - start_time,
            {"error": str(e), "error_type": type(e).__name__}
        )


async def check_redis_health() -> HealthCheckResult:
    """
    Check Redis connectivity.

    Redis is optional: without it the service runs uncached, so a missing
    client is reported but does not make the service unhealthy.
    """
    start_time = time.time()
    cache = get_cache()

    if cache.client is None:
        return HealthCheckResult("redis", True, 0.0, {"status": "disabled"})

    try:
        await cache.client.ping()
        return HealthCheckResult("redis", True, time.time() - start_time, {"status": "connected"})
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return HealthCheckResult(
            "redis",
            False,
            time.time() - start_time,
            {"error": str(e), "error_type": type(e).__name__}
        )


def check_payment_gateway_health(gateway: Optional[PaymentGatewayAdapter]) -> HealthCheckResult:
    """Report gateway configuration and circuit breaker state without calling out."""
    if gateway is None:
        return HealthCheckResult("payment_gateway", False, 0.0, {"error": "not initialized"})

    report = gateway.configuration_report()
    configured = report.get("integration_id") == "SET" and report.get("integration_key") == "SET"
    healthy = configured and report.get("circuit_state") != CircuitState.OPEN.value
    return HealthCheckResult("payment_gateway", healthy, 0.0, report)


async def get_health_status(gateway: Optional[PaymentGatewayAdapter] = None) -> Dict[str, Any]:
    """Get health status of all dependencies."""
    start_time = time.time()

    checks = list(await asyncio.gather(check_database_health(), check_redis_health()))
    checks.append(check_payment_gateway_health(gateway))

    results = [check.to_dict() for check in checks]
    overall_healthy = all(check.healthy for check in checks)

    return {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": _now(),
        "total_check_time": time.time() - start_time,
        "services": results,
    }
