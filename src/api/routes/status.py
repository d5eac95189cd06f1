"""
Monitor status and manual circuit breaker overrides.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import get_monitor_service
from src.api.models import CircuitResetResponse, CircuitStatus
from src.monitor.service import MonitorService

router = APIRouter()
logger = structlog.get_logger(__name__)


def _circuits(monitor: MonitorService) -> list[CircuitStatus]:
    return [CircuitStatus(**s) for s in monitor.circuit_breaker.get_all_statuses()]


@router.get("/status")
async def get_status(
    monitor: MonitorService = Depends(get_monitor_service),
) -> dict[str, Any]:
    """Full monitor status: schedule, active hours, circuits and metrics."""
    return await monitor.get_status()


@router.post("/circuits/reset", response_model=CircuitResetResponse)
async def reset_all_circuits(
    monitor: MonitorService = Depends(get_monitor_service),
) -> CircuitResetResponse:
    """Close every circuit."""
    monitor.reset_all_circuits()
    return CircuitResetResponse(reset=["*"], circuits=_circuits(monitor))


@router.post("/circuits/{handle}/reset", response_model=CircuitResetResponse)
async def reset_circuit(
    handle: str,
    monitor: MonitorService = Depends(get_monitor_service),
) -> CircuitResetResponse:
    """Close one source's circuit so it is checked next cycle."""
    monitor.reset_circuit(handle)
    return CircuitResetResponse(reset=[handle], circuits=_circuits(monitor))
