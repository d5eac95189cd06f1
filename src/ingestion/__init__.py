"""Data ingestion module - fetch strategies, schemas, and the strategy chain."""

from src.ingestion.schemas import (
    DeliveryResult,
    Destination,
    HistoryRecord,
    Item,
    Source,
)

__all__ = [
    "DeliveryResult",
    "Destination",
    "HistoryRecord",
    "Item",
    "Source",
]
