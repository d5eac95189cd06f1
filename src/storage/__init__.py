"""Storage layer for the subscription registry and notification history."""

from src.storage.database import Database, close_database, get_database
from src.storage.repository import (
    DestinationRepository,
    HistoryRepository,
    SourceRepository,
    create_tables,
)

__all__ = [
    "Database",
    "get_database",
    "close_database",
    "SourceRepository",
    "DestinationRepository",
    "HistoryRepository",
    "create_tables",
]
