"""In-memory collaborators for monitor service tests."""

import asyncio
import random
from datetime import datetime, timezone

import pytest

from src.ingestion.schemas import DeliveryResult, Destination, Item, Source
from src.monitor.active_hours import ActiveHours
from src.monitor.config import MonitorConfig
from src.monitor.service import MonitorService
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.errors import AllStrategiesExhausted, PersistenceError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemorySources:
    """Subscription registry backed by a dict."""

    def __init__(self, *sources: Source):
        self.sources = {s.id: s for s in sources}
        self.checked: list[str] = []
        self.fail = False

    def _guard(self) -> None:
        if self.fail:
            raise PersistenceError("registry unavailable")

    async def list_active_sources(self) -> list[Source]:
        self._guard()
        return [s for s in self.sources.values() if s.active]

    async def get_source(self, handle: str) -> Source | None:
        self._guard()
        return self.sources.get(handle)

    async def update_last_item_id(self, source_id: str, item_id: str | None) -> None:
        self._guard()
        self.sources[source_id] = self.sources[source_id].model_copy(
            update={"last_item_id": item_id, "last_checked_at": datetime.now(timezone.utc)}
        )

    async def update_last_checked(self, source_id: str) -> None:
        self._guard()
        self.checked.append(source_id)
        self.sources[source_id] = self.sources[source_id].model_copy(
            update={"last_checked_at": datetime.now(timezone.utc)}
        )

    def last_item_id(self, source_id: str) -> str | None:
        return self.sources[source_id].last_item_id


class InMemoryDestinations:
    def __init__(self, mapping: dict[str, list[Destination]] | None = None):
        self.mapping = mapping or {}

    async def list_for_source(self, source_id: str) -> list[Destination]:
        return list(self.mapping.get(source_id, []))


class InMemoryHistory:
    """History store; records are (source_id, item_id) pairs."""

    def __init__(self, *notified: tuple[str, str]):
        self.notified: set[tuple[str, str]] = set(notified)
        self.recorded: list[tuple[str, str, str | None]] = []
        self.prune_calls: list[int] = []

    async def has_been_notified(self, source_id: str, item_id: str) -> bool:
        return (source_id, item_id) in self.notified

    async def record_notified(self, source_id: str, item_id: str, url: str | None = None) -> None:
        self.notified.add((source_id, item_id))
        self.recorded.append((source_id, item_id, url))

    async def prune_older_than(self, retention_days: int) -> int:
        self.prune_calls.append(retention_days)
        return 0


class RecordingDelivery:
    """Delivery collaborator that records calls and reports success."""

    def __init__(self, error: Exception | None = None, fail_ids: set[str] | None = None):
        self.calls: list[tuple[Item, Source, list[Destination]]] = []
        self.error = error
        self.fail_ids = fail_ids or set()

    async def deliver(
        self, item: Item, source: Source, destinations: list[Destination]
    ) -> list[DeliveryResult]:
        self.calls.append((item, source, list(destinations)))
        if self.error is not None:
            raise self.error
        return [
            DeliveryResult(
                destination_id=d.id,
                success=d.id not in self.fail_ids,
                error="boom" if d.id in self.fail_ids else None,
            )
            for d in destinations
        ]


class ScriptedFetcher:
    """
    Fetcher returning scripted results per source.

    Each script entry is a list of items or an exception; the last entry
    repeats. Unknown sources are exhausted.
    """

    def __init__(self, scripts: dict[str, list] | None = None, yields: int = 0):
        self.scripts = scripts or {}
        self.calls: list[str] = []
        self.yields = yields
        self.in_flight = 0
        self.max_in_flight = 0

    async def require_latest_items(self, source: str) -> list[Item]:
        self.calls.append(source)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            for _ in range(self.yields):
                await asyncio.sleep(0)
            script = self.scripts.get(source)
            if not script:
                raise AllStrategiesExhausted(source, {"fake": "no script"})
            result = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(result, BaseException):
                raise result
            return list(result)
        finally:
            self.in_flight -= 1


class RecentMessages:
    def __init__(self, messages: dict[str, list[str]] | None = None):
        self.messages = messages or {}

    async def recent_messages(self, destination_id: str, limit: int) -> list[str]:
        return self.messages.get(destination_id, [])[:limit]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=3, reset_timeout=60.0, clock=clock)


@pytest.fixture
def monitor_config() -> MonitorConfig:
    return MonitorConfig(
        check_interval_minutes=5,
        concurrency=5,
        source_delay_min_seconds=2.0,
        source_delay_max_seconds=3.0,
        circuit_failure_threshold=3,
        circuit_reset_timeout_seconds=60.0,
        history_retention_days=30,
    )


@pytest.fixture
def make_service(monitor_config, breaker, metrics, sleep_calls):
    """Factory building a MonitorService over in-memory collaborators."""

    def _make(
        sources: InMemorySources,
        fetcher: ScriptedFetcher,
        destinations: InMemoryDestinations | None = None,
        history: InMemoryHistory | None = None,
        delivery: RecordingDelivery | None = None,
        **kwargs,
    ) -> MonitorService:
        kwargs.setdefault("config", monitor_config)
        kwargs.setdefault("circuit_breaker", breaker)
        kwargs.setdefault("metrics", metrics)
        kwargs.setdefault("sleep", sleep_calls.sleep)
        kwargs.setdefault("rng", random.Random(1234))
        kwargs.setdefault("active_hours", ActiveHours())
        return MonitorService(
            sources=sources,
            destinations=destinations or InMemoryDestinations(),
            history=history or InMemoryHistory(),
            fetcher=fetcher,
            delivery=delivery or RecordingDelivery(),
            **kwargs,
        )

    return _make
