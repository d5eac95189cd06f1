"""
Monitor service - periodic, concurrency-bounded checks of every source.

Each cycle:
1. Skips entirely outside the configured active hours
2. Loads all active sources
3. Checks them with at most ``concurrency`` checks in flight; each worker
   pauses for a randomized delay after every source
4. Prunes old notification history

Per-source check:
    circuit breaker -> fetch chain -> first-check suppression ->
    last-seen comparison -> duplicate detection -> delivery ->
    history record -> advance last-seen marker

Features:
- Per-source locks, so overlapping cycles and forced checks never
  process the same source concurrently
- Failure of one source never affects another
- Graceful shutdown (in-flight checks finish)
- Metrics, tracing spans and source-bound log context
"""

import asyncio
import enum
import random
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.ingestion.schemas import Destination, Item, Source
from src.monitor.active_hours import ActiveHours
from src.monitor.config import MonitorConfig
from src.monitor.duplicates import DuplicateDetector
from src.monitor.ports import (
    DeliveryService,
    DestinationRegistry,
    HistoryStore,
    ItemFetcher,
    RecentMessageReader,
    SourceRegistry,
)
from src.observability.logging import source_context
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.errors import PersistenceError, SourceNotFound

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class CheckOutcome(str, enum.Enum):
    """Result of one per-source check."""

    CIRCUIT_OPEN = "circuit_open"
    FETCH_FAILED = "fetch_failed"
    INITIALIZED = "initialized"
    NO_CHANGE = "no_change"
    DUPLICATE = "duplicate"
    NOTIFIED = "notified"
    ERROR = "error"


@dataclass
class CycleReport:
    """Summary of one check cycle."""

    skipped: bool = False
    outcomes: dict[str, CheckOutcome] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    pruned: int = 0
    duration_seconds: float = 0.0

    @property
    def sources_checked(self) -> int:
        return len(self.outcomes) + len(self.errors)

    def count(self, outcome: CheckOutcome) -> int:
        return sum(1 for o in self.outcomes.values() if o is outcome)


class MonitorService:
    """
    Scheduler and per-source check routine.

    Usage:
        service = MonitorService(sources, destinations, history, chain, notifier)
        await service.start()
        ...
        await service.shutdown()

    Args:
        sources: Subscription registry
        destinations: Destinations per source
        history: Notification history store
        fetcher: Fetch strategy chain
        delivery: Delivery collaborator
        config: Monitor configuration (defaults from MONITOR_* env)
        circuit_breaker: Shared breaker (built from config if omitted)
        recent_messages: Destination-side reader for duplicate scans
        duplicate_detector: Overrides the detector built from the above
        active_hours: Overrides the gate built from config
        metrics: Metrics collector (defaults to the global one)
        sleep: Sleep used for inter-source pacing
        timer_sleep: Sleep used between cycles
        rng: Random source for inter-source pacing
    """

    def __init__(
        self,
        sources: SourceRegistry,
        destinations: DestinationRegistry,
        history: HistoryStore,
        fetcher: ItemFetcher,
        delivery: DeliveryService,
        config: MonitorConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        recent_messages: RecentMessageReader | None = None,
        duplicate_detector: DuplicateDetector | None = None,
        active_hours: ActiveHours | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Sleep = asyncio.sleep,
        timer_sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._config = config or MonitorConfig()
        self._sources = sources
        self._destinations = destinations
        self._history = history
        self._fetcher = fetcher
        self._delivery = delivery

        self._breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self._config.circuit_failure_threshold,
            reset_timeout=self._config.circuit_reset_timeout_seconds,
        )
        self._duplicates = duplicate_detector or DuplicateDetector(
            history,
            recent_messages,
            scan_limit=self._config.duplicate_scan_limit,
        )
        self._active_hours = active_hours or ActiveHours(
            self._config.active_hours_start,
            self._config.active_hours_end,
            self._config.active_hours_timezone,
        )
        self._metrics = metrics or get_metrics()
        self._tracer = get_tracer(__name__)
        self._sleep = sleep
        self._timer_sleep = timer_sleep
        self._rng = rng or random.Random()

        self._running = False
        self._trigger_task: asyncio.Task | None = None
        self._cycle_tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(self._config.concurrency)
        self._source_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        logger.info(
            "Monitor service initialized",
            check_interval_minutes=self._config.check_interval_minutes,
            concurrency=self._config.concurrency,
            active_hours=self._active_hours.configured,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    # Lifecycle

    async def start(self) -> None:
        """
        Start periodic checking.

        The first cycle starts immediately; later cycles start every
        ``check_interval_minutes``. No-op when already running.
        """
        if self._running:
            logger.info("Monitor already running")
            return

        self._running = True
        self._metrics.set_running(True)
        self._trigger_task = asyncio.create_task(self._trigger_loop(), name="monitor_trigger")
        logger.info("Monitor started", check_interval_minutes=self._config.check_interval_minutes)

    async def stop(self) -> None:
        """
        Stop scheduling new cycles. Idempotent.

        Cycles already in flight are left to finish; use shutdown() to
        wait for them.
        """
        task, self._trigger_task = self._trigger_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._running:
            logger.info("Monitor stopped")
        self._running = False
        self._metrics.set_running(False)

    async def shutdown(self) -> None:
        """Stop scheduling and wait for in-flight cycles to finish."""
        await self.stop()
        if self._cycle_tasks:
            logger.info("Waiting for in-flight cycles", cycles=len(self._cycle_tasks))
            await asyncio.gather(*list(self._cycle_tasks), return_exceptions=True)

    async def _trigger_loop(self) -> None:
        interval = self._config.check_interval_seconds
        while self._running:
            self._spawn_cycle()
            await self._timer_sleep(interval)

    def _spawn_cycle(self) -> asyncio.Task:
        task = asyncio.create_task(self._run_cycle_safely(), name="monitor_cycle")
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)
        return task

    async def _run_cycle_safely(self) -> None:
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error("Check cycle failed", error=str(e), error_type=type(e).__name__)
            self._metrics.record_error(type(e).__name__)

    # Cycle

    async def run_cycle(self) -> CycleReport:
        """
        Run one check cycle over all active sources.

        Returns:
            CycleReport with per-source outcomes. ``skipped`` is set when
            the cycle fell outside active hours.
        """
        report = CycleReport()

        if not self._active_hours.is_active():
            logger.info(
                "Outside active hours, skipping cycle",
                hour=self._active_hours.local_hour(),
                start=self._active_hours.start,
                end=self._active_hours.end,
                timezone=self._active_hours.timezone,
            )
            self._metrics.record_cycle(skipped=True)
            report.skipped = True
            return report

        start = time.monotonic()
        sources = await self._sources.list_active_sources()
        if not sources:
            logger.info("No active sources to check")
            self._prune_source_locks(set())
            self._metrics.record_cycle()
            return report

        logger.info("Starting check cycle", sources=len(sources))

        results = await asyncio.gather(
            *(self._worker(source) for source in sources),
            return_exceptions=True,
        )

        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error checking source",
                    source=source.id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                self._metrics.record_error(type(result).__name__)
                report.errors[source.id] = f"{type(result).__name__}: {result}"
            else:
                report.outcomes[source.id] = result

        try:
            report.pruned = await self._history.prune_older_than(
                self._config.history_retention_days
            )
        except Exception as e:
            logger.error("History pruning failed", error=str(e))
            self._metrics.record_error(type(e).__name__)

        self._prune_source_locks({source.id for source in sources})

        report.duration_seconds = time.monotonic() - start
        self._metrics.record_cycle()
        logger.info(
            "Check cycle completed",
            sources=len(sources),
            notified=report.count(CheckOutcome.NOTIFIED),
            failed=report.count(CheckOutcome.FETCH_FAILED) + len(report.errors),
            pruned=report.pruned,
            duration_seconds=round(report.duration_seconds, 2),
        )
        return report

    def _prune_source_locks(self, active: set[str]) -> None:
        """Drop idle locks of handles that are no longer monitored."""
        stale = [
            handle
            for handle, lock in self._source_locks.items()
            if handle not in active and not lock.locked()
        ]
        for handle in stale:
            del self._source_locks[handle]

    async def _worker(self, source: Source) -> CheckOutcome:
        """Check one source inside the concurrency limit, then pause."""
        async with self._semaphore:
            try:
                return await self.check_source(source)
            finally:
                await self._sleep(
                    self._rng.uniform(
                        self._config.source_delay_min_seconds,
                        self._config.source_delay_max_seconds,
                    )
                )

    # Per-source check

    async def check_source(self, source: Source) -> CheckOutcome:
        """
        Check one source for a new item and notify if there is one.

        The registry copy of the source is re-read under the source's
        lock, so a stale ``source`` argument is harmless.
        """
        async with self._source_locks[source.id]:
            current = await self._sources.get_source(source.id)
            if current is None:
                logger.warning("Source disappeared from registry", source=source.id)
                return CheckOutcome.NO_CHANGE
            return await self._check_locked(current)

    async def force_check(self, handle: str) -> CheckOutcome:
        """
        Check a source immediately, bypassing first-check suppression.

        The newest item is treated as a candidate even when it matches the
        last-seen marker; duplicate detection still applies. The marker is
        only cleared on the local copy, so the stored marker changes only
        when the check advances it. Other processes polling the same
        registry never see it cleared.

        Raises:
            SourceNotFound: ``handle`` is not in the registry.
        """
        async with self._source_locks[handle]:
            source = await self._sources.get_source(handle)
            if source is None:
                raise SourceNotFound(handle)

            logger.info("Forcing check", source=handle, last_item_id=source.last_item_id)
            return await self._check_locked(
                source.model_copy(update={"last_item_id": None}),
                force=True,
            )

    async def _check_locked(self, source: Source, force: bool = False) -> CheckOutcome:
        if self._breaker.is_open(source.id):
            logger.info(
                "Circuit open, skipping source",
                source=source.id,
                remaining_seconds=round(self._breaker.get_remaining_reset_time(source.id), 1),
            )
            return CheckOutcome.CIRCUIT_OPEN

        start = time.monotonic()
        with source_context(source.id):
            try:
                with traced(self._tracer, "monitor.check_source", {"source": source.id}) as span:
                    outcome = await self._check_steps(source, force)
                    span.set_attribute("outcome", outcome.value)
                    return outcome
            except PersistenceError as e:
                logger.error("Storage error while checking source", error=str(e))
                self._metrics.record_error(type(e).__name__)
                try:
                    await self._sources.update_last_checked(source.id)
                except PersistenceError as inner:
                    logger.error("Could not record last check time", error=str(inner))
                return CheckOutcome.ERROR
            finally:
                self._metrics.record_check(time.monotonic() - start)

    async def _check_steps(self, source: Source, force: bool) -> CheckOutcome:
        try:
            items = await self._fetcher.require_latest_items(source.id)
        except PersistenceError:
            raise
        except Exception as e:
            items = []
            logger.warning(
                "Fetch failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            self._metrics.record_error(type(e).__name__)

        if not items:
            if self._breaker.record_failure(source.id):
                self._metrics.record_circuit_trip(source.id)
                logger.warning(
                    "Circuit tripped, suspending source",
                    failures=self._breaker.get_failure_count(source.id),
                    reset_timeout_seconds=self._breaker.reset_timeout,
                )
            await self._sources.update_last_checked(source.id)
            return CheckOutcome.FETCH_FAILED

        self._breaker.record_success(source.id)
        latest = items[0]

        if source.last_item_id is None and not force:
            await self._sources.update_last_item_id(source.id, latest.id)
            logger.info("First check, recording latest item without notifying", item_id=latest.id)
            return CheckOutcome.INITIALIZED

        if latest.id == source.last_item_id:
            await self._sources.update_last_checked(source.id)
            logger.debug("No new items", item_id=latest.id)
            return CheckOutcome.NO_CHANGE

        logger.info("New item detected", item_id=latest.id, url=latest.url)
        self._metrics.record_item_detected(source.id)

        destinations = await self._destinations.list_for_source(source.id)

        if await self._duplicates.is_already_notified(source.id, latest.url, destinations):
            self._metrics.record_duplicate_detected()
            await self._sources.update_last_item_id(source.id, latest.id)
            logger.info("Item already notified, skipping delivery", item_id=latest.id)
            return CheckOutcome.DUPLICATE

        if destinations:
            await self._deliver(latest, source, destinations)
        else:
            logger.info("No destinations configured, recording item only", item_id=latest.id)

        await self._history.record_notified(source.id, latest.id, latest.url)
        await self._sources.update_last_item_id(source.id, latest.id)
        return CheckOutcome.NOTIFIED

    async def _deliver(
        self, item: Item, source: Source, destinations: list[Destination]
    ) -> None:
        """Hand the item to delivery. Failures are logged, never raised."""
        try:
            results = await self._delivery.deliver(item, source, destinations)
        except Exception as e:
            logger.error("Delivery failed", item_id=item.id, error=str(e))
            self._metrics.record_error(type(e).__name__)
            return

        failed = [r for r in results if not r.success and not r.skipped]
        logger.info(
            "Notifications sent",
            item_id=item.id,
            destinations=len(destinations),
            delivered=sum(1 for r in results if r.success),
            failed=len(failed),
        )
        for result in failed:
            logger.warning(
                "Delivery to destination failed",
                item_id=item.id,
                destination=result.destination_id,
                error=result.error,
            )

    # Status and operations

    def reset_circuit(self, handle: str) -> None:
        self._breaker.reset(handle)
        logger.info("Circuit manually reset", source=handle)

    def reset_all_circuits(self) -> None:
        self._breaker.reset_all()
        logger.info("All circuits manually reset")

    async def get_status(self) -> dict[str, Any]:
        """
        Read-only snapshot for the health/status surfaces.

        ``sources_monitored`` is None when the registry is unreachable.
        """
        try:
            sources_monitored: int | None = len(await self._sources.list_active_sources())
        except PersistenceError as e:
            logger.warning("Could not count sources for status", error=str(e))
            sources_monitored = None

        return {
            "running": self._running,
            "check_interval_minutes": self._config.check_interval_minutes,
            "sources_monitored": sources_monitored,
            "active_hours": self._active_hours.describe(),
            "circuit_breaker_states": self._breaker.get_all_statuses(),
            "metrics": self._metrics.snapshot(),
        }
