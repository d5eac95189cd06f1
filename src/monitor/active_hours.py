"""Active-hours gate for polling cycles."""

from collections.abc import Callable
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActiveHours:
    """
    Time-of-day window in a given timezone.

    ``start`` is inclusive and ``end`` exclusive. ``start > end`` wraps
    midnight (22 -> 6 means 22:00-05:59). ``start == end`` is the
    degenerate wrap where the window covers the whole day. With no bounds
    configured the gate is always open.
    """

    def __init__(
        self,
        start: int | None = None,
        end: int | None = None,
        tz: str = "Asia/Tokyo",
        now: Callable[[], datetime] = _utc_now,
    ):
        self.start = start
        self.end = end
        self.timezone = tz
        self._zone = ZoneInfo(tz)
        self._now = now

    @property
    def configured(self) -> bool:
        return self.start is not None and self.end is not None

    def local_hour(self) -> int:
        return self._now().astimezone(self._zone).hour

    def contains(self, hour: int) -> bool:
        """Whether ``hour`` (0-23) falls inside the window."""
        if not self.configured or self.start == self.end:
            return True
        if self.start < self.end:
            return self.start <= hour < self.end
        return hour >= self.start or hour < self.end

    def is_active(self) -> bool:
        return self.contains(self.local_hour())

    def describe(self) -> dict:
        return {
            "configured": self.configured,
            "start": self.start,
            "end": self.end,
            "timezone": self.timezone,
            "currently_active": self.is_active(),
        }
