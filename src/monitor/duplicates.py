"""
Duplicate detection for candidate new items.

Two layers, checked in order:
1. Notification history (authoritative, survives restarts)
2. The last few messages of each destination (catches items that were
   posted by hand or by another process)

Any error while checking counts as "not a duplicate": an occasional
repeated notification is preferred over silently losing a real one.
"""

from collections.abc import Sequence

import structlog

from src.ingestion.base_strategy import extract_item_id
from src.ingestion.schemas import Destination
from src.monitor.ports import HistoryStore, RecentMessageReader

logger = structlog.get_logger(__name__)


class DuplicateDetector:
    """
    Decides whether an item has already been reported.

    Args:
        history: Notification history store
        recent_messages: Reader for destination-side history; None
            disables the second layer
        scan_limit: Number of recent messages scanned per destination
    """

    def __init__(
        self,
        history: HistoryStore,
        recent_messages: RecentMessageReader | None = None,
        scan_limit: int = 4,
    ):
        self._history = history
        self._recent = recent_messages
        self._scan_limit = scan_limit

    async def is_already_notified(
        self,
        source_id: str,
        item_url: str,
        destinations: Sequence[Destination] = (),
    ) -> bool:
        item_id = extract_item_id(item_url)
        if not item_id:
            logger.warning("Could not extract item id", source=source_id, url=item_url)
            return False

        try:
            if await self._history.has_been_notified(source_id, item_id):
                logger.info("Item found in notification history", source=source_id, item_id=item_id)
                return True

            if self._recent is None or self._scan_limit <= 0:
                return False

            for destination in destinations:
                messages = await self._recent.recent_messages(destination.id, self._scan_limit)
                for text in messages:
                    if item_url in text or item_id in text:
                        logger.info(
                            "Item found in recent destination messages",
                            source=source_id,
                            item_id=item_id,
                            destination=destination.id,
                        )
                        return True
        except Exception as e:
            logger.error(
                "Duplicate check failed, treating item as new",
                source=source_id,
                item_id=item_id,
                error=str(e),
            )
            return False

        return False
