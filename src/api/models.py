"""
Response models for the monitor API.
"""

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field


class ComponentHealth(BaseModel):
    """Health of a single infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(
        default=None,
        description="Probe latency in milliseconds",
    )
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response model for the health check."""

    healthy: bool = Field(..., description="True when every component is healthy")
    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    timestamp: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc),
    )
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    monitor: dict[str, Any] = Field(
        default_factory=dict,
        description="Monitor status snapshot (running, sources, circuits, metrics)",
    )


class CircuitStatus(BaseModel):
    """State of one source's circuit breaker."""

    key: str
    state: str
    failures: int
    remaining_reset_seconds: float


class CircuitResetResponse(BaseModel):
    """Result of a manual circuit reset."""

    reset: list[str] = Field(
        default_factory=list,
        description="Sources whose circuits were reset ('*' for all)",
    )
    circuits: list[CircuitStatus] = Field(default_factory=list)
