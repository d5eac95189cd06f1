"""Collaborator interfaces the monitoring engine depends on.

The storage repositories and the Notifier satisfy these structurally;
tests substitute in-memory fakes.
"""

from typing import Protocol

from src.ingestion.schemas import DeliveryResult, Destination, Item, Source


class SourceRegistry(Protocol):
    async def list_active_sources(self) -> list[Source]: ...

    async def get_source(self, handle: str) -> Source | None: ...

    async def update_last_item_id(self, source_id: str, item_id: str | None) -> None: ...

    async def update_last_checked(self, source_id: str) -> None: ...


class DestinationRegistry(Protocol):
    async def list_for_source(self, source_id: str) -> list[Destination]: ...


class HistoryStore(Protocol):
    async def has_been_notified(self, source_id: str, item_id: str) -> bool: ...

    async def record_notified(
        self, source_id: str, item_id: str, url: str | None = None
    ) -> None: ...

    async def prune_older_than(self, retention_days: int) -> int: ...


class DeliveryService(Protocol):
    async def deliver(
        self, item: Item, source: Source, destinations: list[Destination]
    ) -> list[DeliveryResult]: ...


class RecentMessageReader(Protocol):
    async def recent_messages(self, destination_id: str, limit: int) -> list[str]: ...


class ItemFetcher(Protocol):
    async def require_latest_items(self, source: str) -> list[Item]: ...
