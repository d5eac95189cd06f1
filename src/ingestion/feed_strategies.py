"""
Feed-based fetch strategies.

- RssBridgeStrategy: Atom feed rendered by an RSS-Bridge instance. Slower
  to reflect new posts than the platform itself but rarely blocked.
- BibliogramStrategy: RSS from community mirrors, tried in order. Most
  mirrors are gone, so this is the last resort.

Feed entries are parsed with feedparser; HTML summaries are reduced to
text with BeautifulSoup.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import feedparser
from bs4 import BeautifulSoup

from src.config.settings import get_settings
from src.ingestion.base_strategy import BaseStrategy, clean_text, extract_item_id
from src.ingestion.http_client import HTTPClient
from src.ingestion.schemas import Item
from src.resilience.backoff import RetryPolicy
from src.resilience.errors import FetchError, TransientFetchError

logger = logging.getLogger(__name__)


def _entry_datetime(entry: Any) -> datetime | None:
    """Best-effort publish time from a feedparser entry."""
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _entry_thumbnail(entry: Any) -> str | None:
    """First media:content or media:thumbnail URL, if any."""
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key) or []:
            url = media.get("url")
            if url:
                return url
    return None


def _html_to_text(value: str) -> str:
    if not value:
        return ""
    return clean_text(BeautifulSoup(value, "html.parser").get_text(" "))


def item_from_feed_entry(
    entry: Any,
    rewrite_host: tuple[str, str] | None = None,
    with_thumbnail: bool = True,
) -> Item | None:
    """
    Build an Item from a feedparser entry.

    Args:
        entry: feedparser entry (dict-like)
        rewrite_host: Optional (mirror_base, canonical_base) URL rewrite
        with_thumbnail: Whether to read media thumbnails
    """
    link = entry.get("link") or ""
    item_id = extract_item_id(link or entry.get("id"))
    if not item_id:
        return None

    url = link or entry.get("id") or ""
    if rewrite_host and url.startswith(rewrite_host[0]):
        url = rewrite_host[1] + url[len(rewrite_host[0]):]

    return Item(
        id=item_id,
        url=url,
        title=clean_text(entry.get("title") or ""),
        description=_html_to_text(entry.get("summary") or entry.get("description") or ""),
        published_at=_entry_datetime(entry),
        thumbnail_url=_entry_thumbnail(entry) if with_thumbnail else None,
    )


def parse_feed(body: str) -> list[Any]:
    """
    Parse an RSS/Atom document into entries.

    A document feedparser cannot read at all (bozo with no entries) is
    treated as a transient failure: bridges commonly return HTML error
    pages with a 200 status while overloaded.
    """
    feed = feedparser.parse(body)
    if feed.bozo and not feed.entries:
        raise TransientFetchError(f"Unparseable feed: {feed.get('bozo_exception')}")
    return list(feed.entries)


class RssBridgeStrategy(BaseStrategy):
    """
    Fetches the profile as an Atom feed from an RSS-Bridge instance.

    Endpoint:
        GET {bridge_url}/?action=display&bridge=Instagram&context=Username
            &u=<handle>&media_type=all&format=Atom
    """

    def __init__(
        self,
        http: HTTPClient,
        bridge_url: str | None = None,
        rate_limit: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        super().__init__(
            rate_limit=rate_limit or settings.strategy_rate_limit,
            retry_policy=retry_policy,
        )
        self._http = http
        self._bridge_url = (bridge_url or settings.rss_bridge_url).rstrip("/")

    @property
    def name(self) -> str:
        return "rss_bridge"

    async def _fetch_raw(self, handle: str) -> list[Any]:
        await self._rate_limiter.acquire()
        body = await self._http.get_text(
            f"{self._bridge_url}/",
            params={
                "action": "display",
                "bridge": "Instagram",
                "context": "Username",
                "u": handle,
                "media_type": "all",
                "format": "Atom",
            },
        )
        return parse_feed(body)

    def _transform(self, raw: Any, handle: str) -> Item | None:
        return item_from_feed_entry(raw)


class BibliogramStrategy(BaseStrategy):
    """
    Fetches the profile RSS from Bibliogram mirrors.

    Mirrors are tried in order within a single attempt; the first one with
    entries wins. Mirror URLs are rewritten to the canonical profile host.
    """

    def __init__(
        self,
        http: HTTPClient,
        instances: list[str] | None = None,
        web_url: str | None = None,
        rate_limit: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        super().__init__(
            rate_limit=rate_limit or settings.strategy_rate_limit,
            # Mirrors already give us several tries per attempt
            retry_policy=retry_policy or RetryPolicy(max_attempts=1),
        )
        self._http = http
        self._instances = (
            instances if instances is not None else settings.bibliogram_instance_list
        )
        self._web_url = (web_url or settings.profile_web_url).rstrip("/")
        self._served_by: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "bibliogram"

    async def _fetch_raw(self, handle: str) -> list[Any]:
        last_error: FetchError | None = None
        for instance in self._instances:
            await self._rate_limiter.acquire()
            try:
                body = await self._http.get_text(f"{instance}/u/{handle}/rss.xml")
                entries = parse_feed(body)
            except FetchError as e:
                logger.debug("Bibliogram instance %s failed for %s: %s", instance, handle, e)
                last_error = e
                continue
            if entries:
                logger.info(
                    "Fetched %d entries for %s via Bibliogram %s",
                    len(entries), handle, instance,
                )
                self._served_by[handle] = instance
                return entries

        if last_error is not None:
            raise last_error
        return []

    def _transform(self, raw: Any, handle: str) -> Item | None:
        instance = self._served_by.get(handle)
        rewrite = (instance, self._web_url) if instance else None
        return item_from_feed_entry(raw, rewrite_host=rewrite, with_thumbnail=False)
