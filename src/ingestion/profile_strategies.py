"""
Fetch strategies that talk to the profile platform directly.

- ProfileApiStrategy: the public web-profile JSON endpoint. Real-time and
  cheap, but the first thing to get rate limited.
- WebScrapeStrategy: the profile HTML page. Reads the embedded
  ``window._sharedData`` payload when present, otherwise falls back to
  collecting post shortcodes from links (no timestamps or captions).

Both return at most MAX_TIMELINE_ITEMS items, matching what the
platform embeds in a profile page.
"""

import json
import logging
import re
from typing import Any

from bs4 import BeautifulSoup

from src.config.settings import get_settings
from src.ingestion.base_strategy import BaseStrategy, clean_text, from_unix
from src.ingestion.http_client import HTTPClient
from src.ingestion.schemas import Item
from src.resilience.backoff import RetryPolicy
from src.resilience.errors import PermanentFetchError

logger = logging.getLogger(__name__)

MAX_TIMELINE_ITEMS = 12

_SHARED_DATA_PATTERN = re.compile(r"window\._sharedData\s*=\s*({.+?});\s*$", re.DOTALL)
_SHORTCODE_PATTERN = re.compile(r"/(?:p|reel)/([A-Za-z0-9_-]+)/")


def _timeline_edges(user: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Pull the timeline node list out of a profile user object."""
    if not user:
        return []
    edges = (user.get("edge_owner_to_timeline_media") or {}).get("edges") or []
    return [e["node"] for e in edges[:MAX_TIMELINE_ITEMS] if e.get("node")]


def item_from_timeline_node(node: dict[str, Any], web_url: str) -> Item | None:
    """
    Build an Item from a profile timeline node.

    Shared by the JSON endpoint and the ``_sharedData`` scrape, which
    embed the same node shape.
    """
    shortcode = node.get("shortcode")
    if not shortcode:
        return None

    caption_edges = (node.get("edge_media_to_caption") or {}).get("edges") or []
    caption = ""
    if caption_edges:
        caption = (caption_edges[0].get("node") or {}).get("text") or ""

    return Item(
        id=shortcode,
        url=f"{web_url}/p/{shortcode}/",
        description=clean_text(caption),
        published_at=from_unix(node.get("taken_at_timestamp")),
        thumbnail_url=node.get("thumbnail_src") or node.get("display_url"),
        is_pinned=bool(node.get("pinned_for_users")),
    )


class ProfileApiStrategy(BaseStrategy):
    """
    Fetches the profile timeline from the web-profile JSON endpoint.

    Endpoint:
        GET {api_url}/users/web_profile_info/?username=<handle>
        Headers: X-IG-App-ID, X-Requested-With
    """

    def __init__(
        self,
        http: HTTPClient,
        api_url: str | None = None,
        web_url: str | None = None,
        app_id: str | None = None,
        rate_limit: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        super().__init__(
            rate_limit=rate_limit or settings.strategy_rate_limit,
            retry_policy=retry_policy,
        )
        self._http = http
        self._api_url = (api_url or settings.profile_api_url).rstrip("/")
        self._web_url = (web_url or settings.profile_web_url).rstrip("/")
        self._app_id = app_id or settings.profile_app_id

    @property
    def name(self) -> str:
        return "direct_api"

    async def _fetch_raw(self, handle: str) -> list[dict[str, Any]]:
        await self._rate_limiter.acquire()
        payload = await self._http.get_json(
            f"{self._api_url}/users/web_profile_info/",
            params={"username": handle},
            headers={
                "X-IG-App-ID": self._app_id,
                "X-Requested-With": "XMLHttpRequest",
            },
        )
        user = ((payload or {}).get("data") or {}).get("user")
        return _timeline_edges(user)

    def _transform(self, raw: dict[str, Any], handle: str) -> Item | None:
        return item_from_timeline_node(raw, self._web_url)


class WebScrapeStrategy(BaseStrategy):
    """
    Scrapes the public profile HTML.

    Extraction order:
        1. ``window._sharedData`` JSON (full metadata)
        2. Post/reel shortcodes from anchor hrefs and raw markup
           (id + URL only, no timestamp)
    """

    def __init__(
        self,
        http: HTTPClient,
        web_url: str | None = None,
        rate_limit: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        super().__init__(
            rate_limit=rate_limit or settings.strategy_rate_limit,
            retry_policy=retry_policy,
        )
        self._http = http
        self._web_url = (web_url or settings.profile_web_url).rstrip("/")

    @property
    def name(self) -> str:
        return "web_scrape"

    async def _fetch_raw(self, handle: str) -> list[dict[str, Any]]:
        await self._rate_limiter.acquire()
        html = await self._http.get_text(f"{self._web_url}/{handle}/")
        return self.parse_profile_html(html)

    @staticmethod
    def parse_profile_html(html: str) -> list[dict[str, Any]]:
        """Extract timeline nodes (or bare shortcodes) from profile HTML."""
        soup = BeautifulSoup(html, "html.parser")

        for script in soup.find_all("script"):
            text = script.string or ""
            if "window._sharedData" not in text:
                continue
            match = _SHARED_DATA_PATTERN.search(text.strip())
            if not match:
                continue
            try:
                shared = json.loads(match.group(1))
            except json.JSONDecodeError:
                logger.debug("Failed to parse _sharedData, trying shortcodes")
                break
            pages = (shared.get("entry_data") or {}).get("ProfilePage") or []
            user = ((pages[0] if pages else {}).get("graphql") or {}).get("user")
            nodes = _timeline_edges(user)
            if nodes:
                return nodes
            break

        shortcodes: list[str] = []
        hrefs = [a.get("href") or "" for a in soup.find_all("a")]
        for text in [*hrefs, html]:
            for code in _SHORTCODE_PATTERN.findall(text):
                if code not in shortcodes:
                    shortcodes.append(code)
                if len(shortcodes) >= MAX_TIMELINE_ITEMS:
                    break
            if len(shortcodes) >= MAX_TIMELINE_ITEMS:
                break

        if not shortcodes and "loginForm" in html:
            raise PermanentFetchError("Profile page is behind a login wall")

        return [{"shortcode": code} for code in shortcodes]

    def _transform(self, raw: dict[str, Any], handle: str) -> Item | None:
        return item_from_timeline_node(raw, self._web_url)
