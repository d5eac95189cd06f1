"""
Prometheus metrics for monitoring the profile-monitor engine.

Defines and exposes metrics for:
- Fetch attempts, successes and failures per source
- Strategy success counts and fetch latency
- New items, duplicates and notification outcomes
- Circuit breaker trips
- Check cycles (run vs. skipped outside active hours)

Metrics are exposed via HTTP endpoint for Prometheus scraping. Because
Prometheus client objects cannot be read back cheaply, the collector also
mirrors the counters in an in-process snapshot for the status surface.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from typing import Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)

# Rolling window for average durations in the snapshot
_DURATION_WINDOW = 100


class MetricsCollector:
    """
    Prometheus metrics collector for the profile-monitor engine.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_fetch_success("someprofile", "rss_bridge", 0.42)
        metrics.snapshot()["fetching"]["total_successes"]

    Args:
        registry: Prometheus registry. Tests pass a private
            ``CollectorRegistry()`` to avoid duplicate registration.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize Prometheus metrics."""
        self._registry = registry if registry is not None else REGISTRY

        # Fetch counters
        self.fetch_attempts = Counter(
            "profile_monitor_fetch_attempts_total",
            "Total fetch attempts per source",
            ["source"],
            registry=self._registry,
        )

        self.fetch_successes = Counter(
            "profile_monitor_fetch_successes_total",
            "Total successful fetches per source",
            ["source"],
            registry=self._registry,
        )

        self.fetch_failures = Counter(
            "profile_monitor_fetch_failures_total",
            "Total failed fetches (all strategies exhausted) per source",
            ["source"],
            registry=self._registry,
        )

        self.strategy_successes = Counter(
            "profile_monitor_strategy_successes_total",
            "Total non-empty results per fetch strategy",
            ["strategy"],
            registry=self._registry,
        )

        self.strategy_errors = Counter(
            "profile_monitor_strategy_errors_total",
            "Total errors raised by fetch strategies",
            ["strategy", "error_type"],
            registry=self._registry,
        )

        self.fetch_latency = Histogram(
            "profile_monitor_fetch_latency_seconds",
            "Time to fetch items for a source across the strategy chain",
            buckets=LATENCY_BUCKETS,
            registry=self._registry,
        )

        # Item detection
        self.items_detected = Counter(
            "profile_monitor_items_detected_total",
            "New items detected per source",
            ["source"],
            registry=self._registry,
        )

        self.duplicates_detected = Counter(
            "profile_monitor_duplicates_detected_total",
            "Candidate items suppressed as already notified",
            registry=self._registry,
        )

        # Notification outcomes
        self.notifications = Counter(
            "profile_monitor_notifications_total",
            "Notification outcomes per destination",
            ["status"],  # sent, failed, skipped
            registry=self._registry,
        )

        # Circuit breaker
        self.circuit_trips = Counter(
            "profile_monitor_circuit_trips_total",
            "Circuit breaker trips per source",
            ["source"],
            registry=self._registry,
        )

        # Errors
        self.errors = Counter(
            "profile_monitor_errors_total",
            "Errors raised while checking sources",
            ["error_type"],
            registry=self._registry,
        )

        # Cycles
        self.cycles = Counter(
            "profile_monitor_cycles_total",
            "Check cycles by outcome",
            ["status"],  # completed, skipped
            registry=self._registry,
        )

        self.check_latency = Histogram(
            "profile_monitor_check_latency_seconds",
            "Time to run the per-source check routine",
            buckets=LATENCY_BUCKETS,
            registry=self._registry,
        )

        self.monitor_running = Gauge(
            "profile_monitor_running",
            "Scheduler state (1=running, 0=stopped)",
            registry=self._registry,
        )

        self._lock = threading.Lock()
        self.reset_snapshot()

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=self._registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_fetch_attempt(self, source: str) -> None:
        """Record that the strategy chain was invoked for a source."""
        self.fetch_attempts.labels(source=source).inc()
        with self._lock:
            self._fetch_attempts[source] += 1

    def record_fetch_success(
        self,
        source: str,
        strategy: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a non-empty fetch result.

        Args:
            source: Source handle
            strategy: Name of the strategy that produced items
            latency: Optional fetch latency in seconds
        """
        self.fetch_successes.labels(source=source).inc()
        self.strategy_successes.labels(strategy=strategy).inc()
        if latency is not None:
            self.fetch_latency.observe(latency)

        with self._lock:
            self._fetch_successes[source] += 1
            self._strategy_successes[strategy] += 1
            if latency is not None:
                self._fetch_durations[source].append(latency)

    def record_fetch_failure(self, source: str) -> None:
        """Record that every strategy failed for a source."""
        self.fetch_failures.labels(source=source).inc()
        with self._lock:
            self._fetch_failures[source] += 1

    def record_strategy_error(self, strategy: str, error_type: str) -> None:
        """Record an error raised by a single strategy."""
        self.strategy_errors.labels(strategy=strategy, error_type=error_type).inc()

    def record_item_detected(self, source: str) -> None:
        """Record a new candidate item for a source."""
        self.items_detected.labels(source=source).inc()
        with self._lock:
            self._items_detected[source] += 1

    def record_duplicate_detected(self) -> None:
        """Record a candidate item suppressed as already notified."""
        self.duplicates_detected.inc()
        with self._lock:
            self._duplicates += 1

    def record_notification(self, status: str) -> None:
        """
        Record a per-destination notification outcome.

        Args:
            status: One of sent, failed, skipped
        """
        self.notifications.labels(status=status).inc()
        with self._lock:
            self._notifications[status] += 1

    def record_circuit_trip(self, source: str) -> None:
        """Record a circuit breaker trip for a source."""
        self.circuit_trips.labels(source=source).inc()
        with self._lock:
            self._circuit_trips[source] += 1

    def record_error(self, error_type: str) -> None:
        """Record an error by type name."""
        self.errors.labels(error_type=error_type).inc()
        with self._lock:
            self._errors[error_type] += 1

    def record_cycle(self, skipped: bool = False) -> None:
        """Record a check cycle, or one skipped by the active-hours gate."""
        status = "skipped" if skipped else "completed"
        self.cycles.labels(status=status).inc()
        with self._lock:
            self._cycles[status] += 1

    def record_check(self, latency: float) -> None:
        """Record the duration of one per-source check."""
        self.check_latency.observe(latency)
        with self._lock:
            self._checks += 1
            self._check_durations.append(latency)

    def set_running(self, running: bool) -> None:
        """Set scheduler state gauge."""
        self.monitor_running.set(1 if running else 0)

    # Snapshot for the status surface

    def reset_snapshot(self) -> None:
        """Clear the in-process snapshot. Prometheus counters are unaffected."""
        with self._lock:
            self._start_time = time.monotonic()
            self._fetch_attempts: dict[str, int] = defaultdict(int)
            self._fetch_successes: dict[str, int] = defaultdict(int)
            self._fetch_failures: dict[str, int] = defaultdict(int)
            self._fetch_durations: dict[str, deque[float]] = defaultdict(
                lambda: deque(maxlen=_DURATION_WINDOW)
            )
            self._strategy_successes: dict[str, int] = defaultdict(int)
            self._items_detected: dict[str, int] = defaultdict(int)
            self._duplicates = 0
            self._notifications: dict[str, int] = defaultdict(int)
            self._circuit_trips: dict[str, int] = defaultdict(int)
            self._errors: dict[str, int] = defaultdict(int)
            self._cycles: dict[str, int] = defaultdict(int)
            self._checks = 0
            self._check_durations: deque[float] = deque(maxlen=_DURATION_WINDOW)

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-serializable copy of the in-process counters."""
        with self._lock:
            by_source = []
            for source in sorted(self._fetch_attempts):
                attempts = self._fetch_attempts[source]
                successes = self._fetch_successes.get(source, 0)
                durations = self._fetch_durations.get(source) or ()
                by_source.append({
                    "source": source,
                    "attempts": attempts,
                    "successes": successes,
                    "failures": self._fetch_failures.get(source, 0),
                    "success_rate": successes / attempts if attempts else 0.0,
                    "avg_duration_seconds": (
                        sum(durations) / len(durations) if durations else 0.0
                    ),
                })

            sent = self._notifications.get("sent", 0)
            failed = self._notifications.get("failed", 0)

            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
                "fetching": {
                    "total_attempts": sum(self._fetch_attempts.values()),
                    "total_successes": sum(self._fetch_successes.values()),
                    "total_failures": sum(self._fetch_failures.values()),
                    "strategy_successes": dict(self._strategy_successes),
                    "by_source": by_source,
                },
                "notifications": {
                    "sent": sent,
                    "failed": failed,
                    "skipped": self._notifications.get("skipped", 0),
                    "success_rate": sent / (sent + failed) if sent + failed else 0.0,
                },
                "items": {
                    "detected": sum(self._items_detected.values()),
                    "duplicates": self._duplicates,
                    "by_source": dict(self._items_detected),
                },
                "monitoring": {
                    "total_checks": self._checks,
                    "avg_check_seconds": (
                        sum(self._check_durations) / len(self._check_durations)
                        if self._check_durations
                        else 0.0
                    ),
                    "cycles_completed": self._cycles.get("completed", 0),
                    "cycles_skipped": self._cycles.get("skipped", 0),
                },
                "circuit_breaker": {"trips": dict(self._circuit_trips)},
                "errors": dict(self._errors),
            }


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
