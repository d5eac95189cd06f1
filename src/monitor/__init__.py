"""Monitoring engine: scheduler, per-source checks and duplicate detection."""

from src.monitor.active_hours import ActiveHours
from src.monitor.config import MonitorConfig
from src.monitor.duplicates import DuplicateDetector
from src.monitor.service import CheckOutcome, CycleReport, MonitorService
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
    "ActiveHours",
    "MonitorConfig",
    "DuplicateDetector",
    "CheckOutcome",
    "CycleReport",
    "MonitorService",
    "MonitorError",
    "FetchError",
    "TransientFetchError",
    "PermanentFetchError",
    "AllStrategiesExhausted",
    "DeliveryError",
    "PersistenceError",
    "SourceNotFound",
]
