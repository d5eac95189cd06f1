"""
Repositories for the subscription registry and notification history.

- SourceRepository: monitored profiles and their last-seen item marker
- DestinationRepository: channels subscribed to a profile
- HistoryRepository: durable record of items already handed to delivery

All three share one Database and one schema (create_tables()).
"""

import logging
from typing import Any

from src.ingestion.schemas import Destination, Source
from src.storage.database import Database

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id TEXT PRIMARY KEY,
    display_name TEXT,
    last_item_id TEXT,
    last_checked_at TIMESTAMPTZ,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sources_active ON sources(active) WHERE active;

CREATE TABLE IF NOT EXISTS destinations (
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    channel_id TEXT NOT NULL,
    guild_id TEXT,
    custom_message TEXT,
    mention_role_id TEXT,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source_id, channel_id)
);

CREATE TABLE IF NOT EXISTS notification_history (
    id BIGSERIAL PRIMARY KEY,
    source_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    url TEXT,
    notified_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_history_notified_at
    ON notification_history(notified_at);
"""


async def create_tables(database: Database) -> None:
    """Create all tables and indexes if they don't exist."""
    await database.execute(SCHEMA_SQL)
    logger.info("Database tables created/verified")


def _affected_rows(status: str | None) -> int:
    """Parse the row count out of an asyncpg status string ('DELETE 3')."""
    if not status:
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class SourceRepository:
    """
    Subscription registry backed by the ``sources`` table.

    ``last_item_id`` and ``last_checked_at`` are written only by the
    monitor; ``active`` is flipped by the subscription commands.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        await create_tables(self._db)

    async def list_active_sources(self) -> list[Source]:
        """All sources flagged active, oldest subscription first."""
        rows = await self._db.fetch(
            "SELECT * FROM sources WHERE active ORDER BY created_at, id"
        )
        return [_row_to_source(row) for row in rows]

    async def get_source(self, handle: str) -> Source | None:
        """Get a source by handle, active or not."""
        row = await self._db.fetchrow("SELECT * FROM sources WHERE id = $1", handle)
        if row is None:
            return None
        return _row_to_source(row)

    async def update_last_item_id(self, source_id: str, item_id: str | None) -> None:
        """Advance the last-seen marker. Also stamps last_checked_at."""
        await self._db.execute(
            """
            UPDATE sources
            SET last_item_id = $2, last_checked_at = NOW()
            WHERE id = $1
            """,
            source_id,
            item_id,
        )

    async def update_last_checked(self, source_id: str) -> None:
        await self._db.execute(
            "UPDATE sources SET last_checked_at = NOW() WHERE id = $1",
            source_id,
        )

    async def add_source(self, handle: str, display_name: str | None = None) -> Source:
        """
        Register a source, reactivating it if it already exists.

        The last-seen marker is kept on reactivation, so a returning
        subscription does not replay old posts.
        """
        row = await self._db.fetchrow(
            """
            INSERT INTO sources (id, display_name)
            VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET
                active = TRUE,
                display_name = COALESCE(EXCLUDED.display_name, sources.display_name)
            RETURNING *
            """,
            handle,
            display_name,
        )
        return _row_to_source(row)

    async def deactivate_source(self, handle: str) -> bool:
        """
        Stop monitoring a source without deleting it.

        Returns:
            True if the source existed and was active.
        """
        result = await self._db.fetchval(
            """
            UPDATE sources SET active = FALSE
            WHERE id = $1 AND active
            RETURNING id
            """,
            handle,
        )
        return result is not None


class DestinationRepository:
    """Channels subscribed to sources (``destinations`` table)."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def list_for_source(self, source_id: str) -> list[Destination]:
        rows = await self._db.fetch(
            """
            SELECT * FROM destinations
            WHERE source_id = $1 AND active
            ORDER BY created_at, channel_id
            """,
            source_id,
        )
        return [_row_to_destination(row) for row in rows]

    async def add_destination(
        self,
        source_id: str,
        channel_id: str,
        *,
        guild_id: str | None = None,
        custom_message: str | None = None,
        mention_role_id: str | None = None,
    ) -> Destination:
        """Subscribe a channel to a source (upsert)."""
        row = await self._db.fetchrow(
            """
            INSERT INTO destinations (
                source_id, channel_id, guild_id, custom_message, mention_role_id
            ) VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (source_id, channel_id) DO UPDATE SET
                active = TRUE,
                guild_id = EXCLUDED.guild_id,
                custom_message = EXCLUDED.custom_message,
                mention_role_id = EXCLUDED.mention_role_id
            RETURNING *
            """,
            source_id,
            channel_id,
            guild_id,
            custom_message,
            mention_role_id,
        )
        return _row_to_destination(row)


class HistoryRepository:
    """
    Notification history (``notification_history`` table).

    One row per (source, item) ever handed to delivery. Read before
    delivery to prevent duplicates; pruned after a retention window.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def has_been_notified(self, source_id: str, item_id: str) -> bool:
        result = await self._db.fetchval(
            """
            SELECT 1 FROM notification_history
            WHERE source_id = $1 AND item_id = $2
            """,
            source_id,
            item_id,
        )
        return result is not None

    async def record_notified(
        self,
        source_id: str,
        item_id: str,
        url: str | None = None,
    ) -> None:
        """Record a notified item. Recording the same pair twice is a no-op."""
        await self._db.execute(
            """
            INSERT INTO notification_history (source_id, item_id, url)
            VALUES ($1, $2, $3)
            ON CONFLICT (source_id, item_id) DO NOTHING
            """,
            source_id,
            item_id,
            url,
        )

    async def prune_older_than(self, retention_days: int) -> int:
        """
        Delete history rows older than the retention window.

        Returns:
            Number of rows deleted.
        """
        status = await self._db.execute(
            """
            DELETE FROM notification_history
            WHERE notified_at < NOW() - make_interval(days => $1)
            """,
            retention_days,
        )
        deleted = _affected_rows(status)
        if deleted:
            logger.info(
                "Pruned %d history records older than %d days", deleted, retention_days,
            )
        return deleted


def _row_to_source(row: Any) -> Source:
    """Convert an asyncpg Record to a Source."""
    return Source(
        id=row["id"],
        display_name=row.get("display_name"),
        last_item_id=row.get("last_item_id"),
        last_checked_at=row.get("last_checked_at"),
        active=row.get("active", True),
        created_at=row["created_at"],
    )


def _row_to_destination(row: Any) -> Destination:
    """Convert an asyncpg Record to a Destination."""
    return Destination(
        id=row["channel_id"],
        source_id=row["source_id"],
        guild_id=row.get("guild_id"),
        custom_message=row.get("custom_message"),
        mention_role_id=row.get("mention_role_id"),
        active=row.get("active", True),
    )
