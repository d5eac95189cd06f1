"""Keyed circuit breaker for suppressing calls to chronically failing sources.

Provides the CLOSED → OPEN → HALF_OPEN → CLOSED state machine, tracked
independently per key (one circuit per monitored source). Unlike a
call-wrapping breaker, callers drive it explicitly:

Usage:
    breaker = CircuitBreaker(failure_threshold=5, reset_timeout=1800.0)
    if breaker.is_open("someprofile"):
        return  # skip this cycle
    try:
        items = await fetch("someprofile")
    except FetchError:
        breaker.record_failure("someprofile")
    else:
        breaker.record_success("someprofile")
"""

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _Circuit:
    failures: int = 0
    last_failure_at: float | None = None
    state: CircuitState = CircuitState.CLOSED
    trial_granted: bool = False


class CircuitBreaker:
    """Per-key circuit breaker with a concurrency-safe state table.

    - CLOSED: Calls allowed. Consecutive failures counted.
    - OPEN: Calls blocked until ``reset_timeout`` has elapsed since the
      last failure, then the next ``is_open`` moves to HALF_OPEN.
    - HALF_OPEN: Exactly one trial call is granted. Success → CLOSED,
      failure → OPEN.

    Circuits are created lazily and live only in memory.

    Args:
        failure_threshold: Consecutive failures before opening a circuit.
        reset_timeout: Seconds an open circuit blocks before a trial.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._circuits: dict[str, _Circuit] = {}
        self._lock = threading.Lock()

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def reset_timeout(self) -> float:
        return self._reset_timeout

    def is_open(self, key: str) -> bool:
        """Whether calls for ``key`` are currently blocked.

        An open circuit whose timeout has elapsed transitions to HALF_OPEN
        and returns False once; further polls return True until the trial
        reports back through record_success/record_failure.
        """
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None or circuit.state == CircuitState.CLOSED:
                return False

            if circuit.state == CircuitState.HALF_OPEN:
                return circuit.trial_granted

            elapsed = self._clock() - (circuit.last_failure_at or 0.0)
            if elapsed >= self._reset_timeout:
                circuit.state = CircuitState.HALF_OPEN
                circuit.trial_granted = True
                logger.info(
                    "Circuit %s: OPEN → HALF_OPEN (trial granted)", key,
                )
                return False
            return True

    def record_success(self, key: str) -> None:
        """Reset the failure count and close the circuit."""
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None:
                return
            if circuit.state != CircuitState.CLOSED:
                logger.info(
                    "Circuit %s: %s → CLOSED", key, circuit.state.name,
                )
            circuit.failures = 0
            circuit.state = CircuitState.CLOSED
            circuit.trial_granted = False

    def record_failure(self, key: str) -> bool:
        """Record a failure for ``key``.

        Returns:
            True if this call tripped the circuit into OPEN.
        """
        with self._lock:
            circuit = self._circuits.setdefault(key, _Circuit())
            circuit.failures += 1
            circuit.last_failure_at = self._clock()

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.state = CircuitState.OPEN
                circuit.trial_granted = False
                logger.warning("Circuit %s: HALF_OPEN → OPEN (trial failed)", key)
                return True

            if circuit.state == CircuitState.OPEN:
                return False

            if circuit.failures >= self._failure_threshold:
                circuit.state = CircuitState.OPEN
                logger.warning(
                    "Circuit %s: CLOSED → OPEN after %d failures",
                    key,
                    circuit.failures,
                )
                return True
            return False

    def get_state(self, key: str) -> CircuitState:
        """Stored state for ``key``. Never grants a trial."""
        with self._lock:
            circuit = self._circuits.get(key)
            return circuit.state if circuit else CircuitState.CLOSED

    def get_failure_count(self, key: str) -> int:
        """Consecutive failures recorded for ``key``."""
        with self._lock:
            circuit = self._circuits.get(key)
            return circuit.failures if circuit else 0

    def get_remaining_reset_time(self, key: str) -> float:
        """Seconds until an open circuit becomes eligible for a trial."""
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None or circuit.state != CircuitState.OPEN:
                return 0.0
            elapsed = self._clock() - (circuit.last_failure_at or 0.0)
            return max(0.0, self._reset_timeout - elapsed)

    def reset(self, key: str) -> None:
        """Manually forget everything about ``key``."""
        with self._lock:
            self._circuits.pop(key, None)
        logger.info("Circuit %s manually reset", key)

    def reset_all(self) -> None:
        """Manually forget every circuit."""
        with self._lock:
            self._circuits.clear()
        logger.info("All circuits manually reset")

    def get_all_statuses(self) -> list[dict[str, Any]]:
        """Snapshot of every known circuit, for status export."""
        with self._lock:
            keys = sorted(self._circuits)
        return [
            {
                "key": key,
                "state": self.get_state(key).value,
                "failures": self.get_failure_count(key),
                "remaining_reset_seconds": round(
                    self.get_remaining_reset_time(key), 1
                ),
            }
            for key in keys
        ]
