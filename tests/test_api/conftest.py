"""Shared fixtures for API tests."""

import random
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.dependencies import get_database, get_monitor_service
from src.ingestion.schemas import Source
from src.monitor.active_hours import ActiveHours
from src.monitor.config import MonitorConfig
from src.monitor.service import MonitorService
from src.resilience.circuit_breaker import CircuitBreaker
from tests.test_monitor.conftest import (
    InMemoryDestinations,
    InMemoryHistory,
    InMemorySources,
    RecordingDelivery,
    ScriptedFetcher,
)


def _mock_db(healthy: bool = True) -> AsyncMock:
    """Create a mock database."""
    db = AsyncMock()
    db.health_check = AsyncMock(return_value=healthy)
    return db


@pytest.fixture
def api_breaker() -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=3, reset_timeout=60.0, clock=lambda: 1000.0)


@pytest.fixture
def monitor_service(api_breaker, metrics) -> MonitorService:
    """A stopped MonitorService over in-memory collaborators."""
    return MonitorService(
        sources=InMemorySources(Source(id="someprofile"), Source(id="otherprofile")),
        destinations=InMemoryDestinations(),
        history=InMemoryHistory(),
        fetcher=ScriptedFetcher(),
        delivery=RecordingDelivery(),
        config=MonitorConfig(),
        circuit_breaker=api_breaker,
        active_hours=ActiveHours(),
        metrics=metrics,
        rng=random.Random(0),
    )


@pytest.fixture
def make_client(monitor_service):
    """Build a TestClient with the monitor and a mock database injected."""

    def _make(db_healthy: bool | None = True, running: bool = False) -> TestClient:
        app = create_app()
        monitor_service._running = running
        app.dependency_overrides[get_monitor_service] = lambda: monitor_service
        app.dependency_overrides[get_database] = (
            (lambda: None) if db_healthy is None else (lambda: _mock_db(db_healthy))
        )
        return TestClient(app)

    return _make
