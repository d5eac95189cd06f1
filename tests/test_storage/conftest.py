"""Shared fixtures for storage tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 1")
    return db


@pytest.fixture
def source_row() -> dict:
    """A dict mimicking an asyncpg Record for a source."""
    return {
        "id": "someprofile",
        "display_name": "Some Profile",
        "last_item_id": "Bprev000",
        "last_checked_at": datetime(2026, 3, 1, 11, 55, tzinfo=timezone.utc),
        "active": True,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def destination_row() -> dict:
    """A dict mimicking an asyncpg Record for a destination."""
    return {
        "source_id": "someprofile",
        "channel_id": "1234567890",
        "guild_id": "42",
        "custom_message": "New from {username}",
        "mention_role_id": None,
        "active": True,
        "created_at": datetime(2026, 1, 2, tzinfo=timezone.utc),
    }
