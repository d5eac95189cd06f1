"""
Canonical schemas for the profile-monitor pipeline.

Every fetch strategy MUST output ``Item`` instances; the registry and
history store exchange ``Source`` and ``HistoryRecord``; the delivery
layer consumes ``Destination`` and returns ``DeliveryResult``.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class Item(BaseModel):
    """
    One piece of remote content (a post) observed on a source.

    Immutable once produced. ``id`` is assigned by the upstream platform
    and is stable across refetches and across strategies.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Platform-assigned post id (shortcode)")
    url: str = Field(..., description="Canonical post URL")
    title: str = ""
    description: str = ""
    published_at: datetime | None = Field(
        default=None,
        description="Best-effort publish time; absent when a strategy cannot see it",
    )
    thumbnail_url: str | None = None
    is_pinned: bool = False


class Source(BaseModel):
    """
    A monitored profile.

    ``last_item_id`` and ``last_checked_at`` are written only by the
    monitoring engine. ``active`` is owned by the subscription surface.
    """

    id: str = Field(..., min_length=1, description="Profile handle")
    display_name: str | None = None
    last_item_id: str | None = None
    last_checked_at: datetime | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=_utc_now)


class Destination(BaseModel):
    """A channel subscribed to a source's new items."""

    id: str = Field(..., description="Destination (channel) id")
    source_id: str
    guild_id: str | None = None
    custom_message: str | None = None
    mention_role_id: str | None = None
    active: bool = True


class HistoryRecord(BaseModel):
    """Durable proof that an item was handed to delivery."""

    source_id: str
    item_id: str
    url: str | None = None
    notified_at: datetime = Field(default_factory=_utc_now)


class DeliveryResult(BaseModel):
    """Outcome of delivering one item to one destination."""

    destination_id: str
    success: bool
    error: str | None = None
    skipped: bool = False
