"""
HTTP infrastructure layer for fetch strategies.

Provides:
- HTTPClient: Async HTTP client with browser-like headers, pooled
  connections, a hard per-request timeout, and failure classification

Retries are NOT performed here. Each strategy wraps its calls in the
backoff executor, so this layer only has to say whether a failure is
transient (TransientFetchError) or permanent (PermanentFetchError).
"""

import logging
from typing import Any

import httpx

from src.config.settings import get_settings
from src.resilience.errors import PermanentFetchError, TransientFetchError

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Cache-Control": "max-age=0",
}


def is_retryable_status(status_code: int) -> bool:
    """
    Check if an HTTP status code is a transient upstream failure.

    Only 5xx server errors are retried. Any 4xx, 429 included, is the
    upstream refusing the request, and repeating it burns quota.
    """
    return status_code >= 500


class HTTPClient:
    """
    Async HTTP client shared by all fetch strategies.

    Features:
    - Hard timeout on every request (timeouts are transient failures)
    - Keep-alive connection pool
    - Realistic browser headers
    - Status/transport errors mapped onto the fetch error taxonomy

    Example:
        async with HTTPClient() as client:
            html = await client.get_text("https://example.com/profile/")
    """

    def __init__(
        self,
        timeout: float | None = None,
        max_connections: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize HTTP client.

        Args:
            timeout: Request timeout in seconds (default from settings)
            max_connections: Pool size (default from settings)
            user_agent: User-Agent header (default from settings)
            transport: Optional transport override (tests)
        """
        settings = get_settings()
        self.timeout = timeout or settings.http_timeout_seconds
        self._max_connections = max_connections or settings.http_max_connections
        self._headers = {
            **BROWSER_HEADERS,
            "User-Agent": user_agent or settings.user_agent,
        }
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        """Enter async context manager, create client."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        await self.close()

    async def open(self) -> None:
        """Create the underlying client if it does not exist yet."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers,
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=self._max_connections,
                    max_keepalive_connections=self._max_connections,
                ),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform a single GET request.

        Args:
            url: Request URL
            params: Query parameters
            headers: Extra request headers

        Returns:
            httpx.Response with a 2xx/3xx status

        Raises:
            TransientFetchError: Timeout, connection error or 5xx
            PermanentFetchError: Any other 4xx
        """
        if self._client is None:
            await self.open()

        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timeout fetching {url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(
                f"{type(e).__name__} fetching {url}: {e}"
            ) from e

        if response.status_code >= 400:
            message = f"Request to {url} failed with status {response.status_code}"
            if is_retryable_status(response.status_code):
                raise TransientFetchError(message, status_code=response.status_code)
            raise PermanentFetchError(message, status_code=response.status_code)

        return response

    async def get_text(self, url: str, **kwargs: Any) -> str:
        """GET and return the decoded body."""
        response = await self.get(url, **kwargs)
        return response.text

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """
        GET and decode a JSON body.

        A body that is not JSON (often a login wall served with 200) is a
        permanent failure for this cycle.
        """
        response = await self.get(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentFetchError(
                f"Non-JSON response from {url}", status_code=response.status_code
            ) from e
