"""
Base fetch strategy interface and shared functionality.

Each strategy is one way of obtaining the recent items of a profile
(JSON endpoint, HTML scrape, RSS feed...). Subclasses implement
_fetch_raw() and _transform(); the base class provides:
- Rate limiting
- Retry with exponential backoff (per-strategy RetryPolicy)
- Per-item error isolation during transformation
- Stats and logging
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.ingestion.schemas import Item
from src.resilience.backoff import RetryPolicy

logger = logging.getLogger(__name__)

# /p/<code>/ for posts, /reel/<code>/ for reels
_ITEM_ID_PATTERN = re.compile(r"/(?:p|reel)/([A-Za-z0-9_-]+)")


@dataclass
class RateLimiter:
    """
    Simple token bucket rate limiter.

    Allows `rate` requests per minute with burst capacity.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """
        Wait until a token is available, then consume it.

        Tokens refill continuously rather than in bursts.
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug(f"Rate limited, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


@dataclass
class StrategyStats:
    """Cumulative statistics for a strategy."""

    calls: int = 0
    items_fetched: int = 0
    items_filtered: int = 0
    errors: int = 0
    last_duration: float = 0.0


class BaseStrategy(ABC):
    """
    Abstract base class for fetch strategies.

    Subclasses must implement:
        - name: Stable identifier used for method memory and metrics
        - _fetch_raw(): Fetch raw records for a handle (one request per attempt)
        - _transform(): Convert one raw record to an Item

    Raises from fetch():
        TransientFetchError / PermanentFetchError after the retry policy
        gives up. Strategies never swallow their own failures; the chain
        decides what a failed strategy means.
    """

    def __init__(
        self,
        rate_limit: int = 30,
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Initialize strategy.

        Args:
            rate_limit: Maximum requests per minute for this strategy
            retry_policy: Retry settings (defaults to 3 attempts, 1s base, 10s cap)
        """
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._retry_policy = retry_policy or RetryPolicy()
        self._stats = StrategyStats()

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy identifier (e.g. 'rss_bridge')."""
        ...

    @abstractmethod
    async def _fetch_raw(self, handle: str) -> list[Any]:
        """
        Fetch raw records for a profile.

        Called once per retry attempt. Subclasses MUST call
        ``await self._rate_limiter.acquire()`` before each HTTP request.
        """
        ...

    @abstractmethod
    def _transform(self, raw: Any, handle: str) -> Item | None:
        """
        Transform one raw record to an Item.

        Return None for records that should be dropped. May raise;
        the base class isolates per-record failures.
        """
        ...

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def stats(self) -> StrategyStats:
        """Get cumulative strategy statistics."""
        return self._stats

    async def fetch(self, handle: str) -> list[Item]:
        """
        Fetch the recent items of ``handle``, newest first.

        This is the entry point called by the strategy chain. The raw
        fetch is retried under this strategy's RetryPolicy.
        """
        start = time.monotonic()
        self._stats.calls += 1

        try:
            raws = await self._retry_policy.run(
                lambda: self._fetch_raw(handle),
                name=f"{self.name}:{handle}",
            )
        except Exception:
            self._stats.errors += 1
            raise
        finally:
            self._stats.last_duration = time.monotonic() - start

        items: list[Item] = []
        for raw in raws:
            try:
                item = self._transform(raw, handle)
            except Exception as e:
                self._stats.errors += 1
                logger.warning(
                    "Error transforming record in %s for %s: %s", self.name, handle, e,
                )
                continue
            if item is None:
                self._stats.items_filtered += 1
                continue
            items.append(item)

        self._stats.items_fetched += len(items)
        logger.debug(
            "%s fetched %d items for %s in %.2fs",
            self.name, len(items), handle, self._stats.last_duration,
        )
        return sort_newest_first(items)


# Common utilities used across strategies

def extract_item_id(url_or_guid: str | None) -> str | None:
    """
    Extract the post id from a post URL or feed GUID.

    ``https://www.instagram.com/p/ABC123/`` and ``.../reel/ABC123/`` both
    yield ``ABC123``. Anything else is returned unchanged; empty input
    yields None.
    """
    if not url_or_guid:
        return None
    match = _ITEM_ID_PATTERN.search(url_or_guid)
    return match.group(1) if match else url_or_guid


def sort_newest_first(items: list[Item]) -> list[Item]:
    """
    Stable sort by published_at descending.

    Items without a timestamp go last and keep their relative order.
    """
    dated = [i for i in items if i.published_at is not None]
    undated = [i for i in items if i.published_at is None]
    dated.sort(key=lambda i: i.published_at, reverse=True)
    return dated + undated


def from_unix(ts: int | float | None) -> datetime | None:
    """Convert a unix timestamp to an aware UTC datetime."""
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def clean_text(text: str) -> str:
    """
    Clean text content by removing excessive whitespace and control characters.

    Args:
        text: Raw text content

    Returns:
        Cleaned text
    """
    text = " ".join(text.split())
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()
