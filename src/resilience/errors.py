"""
Failure taxonomy for the monitoring engine.

Every error carries a ``retryable`` class attribute so the backoff
executor can classify failures without importing this module's
callers. Fetch errors decide retries within a cycle; the cycle-level
errors decide what gets recorded against a source.
"""


class MonitorError(Exception):
    """Base class for all monitoring-engine errors."""

    retryable = False


class FetchError(MonitorError):
    """A single fetch strategy failed to obtain items."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Network failure, timeout or 5xx. Worth retrying."""

    retryable = True


class PermanentFetchError(FetchError):
    """4xx or unparseable profile. Not retried within this cycle."""


class AllStrategiesExhausted(MonitorError):
    """Every fetch strategy failed or returned nothing for a source."""

    def __init__(self, source: str, errors: dict[str, str] | None = None):
        self.source = source
        self.errors = errors or {}
        detail = ", ".join(f"{k}: {v}" for k, v in self.errors.items())
        message = f"All fetch strategies exhausted for {source}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DeliveryError(MonitorError):
    """Delivery to one destination failed. Never fatal to a cycle."""

    def __init__(
        self,
        message: str,
        destination_id: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.destination_id = destination_id
        self.retryable = retryable


class PersistenceError(MonitorError):
    """The registry or history store could not be read or written."""


class SourceNotFound(MonitorError):
    """A handle was requested that is not in the registry."""

    def __init__(self, handle: str):
        super().__init__(f"Source {handle} not found")
        self.handle = handle
