"""
Health check endpoint.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import get_database, get_monitor_service
from src.api.models import ComponentHealth, HealthResponse
from src.monitor.service import MonitorService
from src.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database | None) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    if db is None:
        return ComponentHealth(status="unhealthy", details={"error": "not configured"})

    start = time.perf_counter()
    try:
        healthy = await db.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    monitor: MonitorService = Depends(get_monitor_service),
    db: Database | None = Depends(get_database),
) -> HealthResponse:
    """
    Liveness plus a monitor status snapshot.

    - healthy: monitor running and database reachable
    - degraded: one of the two is down
    - unhealthy: both are down
    """
    database = await _check_database(db)
    status = await monitor.get_status()

    problems = sum([database.status != "healthy", not status["running"]])
    overall = ("healthy", "degraded", "unhealthy")[problems]
    if problems:
        logger.warning(
            "Health check degraded",
            database=database.status,
            running=status["running"],
        )

    return HealthResponse(
        healthy=problems == 0,
        status=overall,
        components={
            "database": database,
            "monitor": ComponentHealth(status="healthy" if status["running"] else "unhealthy"),
        },
        monitor=status,
    )
