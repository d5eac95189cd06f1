"""Resilience primitives - retry with backoff, keyed circuit breaking, error taxonomy."""

from src.resilience.backoff import (
    ExponentialBackoff,
    RetryPolicy,
    default_is_retryable,
    retry_with_backoff,
)
from src.resilience.circuit_breaker import CircuitBreaker, CircuitState
from src.resilience.errors import (
    AllStrategiesExhausted,
    DeliveryError,
    FetchError,
    MonitorError,
    PermanentFetchError,
    PersistenceError,
    SourceNotFound,
    TransientFetchError,
)

__all__ = [
    "AllStrategiesExhausted",
    "CircuitBreaker",
    "CircuitState",
    "DeliveryError",
    "ExponentialBackoff",
    "FetchError",
    "MonitorError",
    "PermanentFetchError",
    "PersistenceError",
    "RetryPolicy",
    "SourceNotFound",
    "TransientFetchError",
    "default_is_retryable",
    "retry_with_backoff",
]
