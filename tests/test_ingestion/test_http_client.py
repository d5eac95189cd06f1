"""Tests for HTTP client infrastructure layer."""

import httpx
import pytest
import respx

from src.ingestion.http_client import BROWSER_HEADERS, HTTPClient, is_retryable_status
from src.resilience.backoff import RetryPolicy
from src.resilience.errors import PermanentFetchError, TransientFetchError

URL = "https://profiles.example.com/someprofile/"


class TestIsRetryableStatus:
    """Tests for is_retryable_status()."""

    @pytest.mark.parametrize("code", [500, 502, 503, 504])
    def test_retryable(self, code):
        assert is_retryable_status(code)

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 410, 429])
    def test_not_retryable(self, code):
        assert not is_retryable_status(code)


class TestHTTPClient:
    """Tests for HTTPClient request handling and error mapping."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_text(self):
        respx.get(URL).mock(return_value=httpx.Response(200, text="<html>ok</html>"))

        async with HTTPClient(timeout=5.0) as client:
            body = await client.get_text(URL)

        assert body == "<html>ok</html>"

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_browser_headers_and_extra_headers(self):
        route = respx.get(URL).mock(return_value=httpx.Response(200, text=""))

        async with HTTPClient(timeout=5.0, user_agent="TestAgent/1.0") as client:
            await client.get(URL, headers={"X-IG-App-ID": "123"})

        request = route.calls.last.request
        assert request.headers["User-Agent"] == "TestAgent/1.0"
        assert request.headers["Accept-Language"] == BROWSER_HEADERS["Accept-Language"]
        assert request.headers["X-IG-App-ID"] == "123"

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_json_with_params(self):
        route = respx.get("https://api.example.com/users/web_profile_info/").mock(
            return_value=httpx.Response(200, json={"data": {"user": None}})
        )

        async with HTTPClient(timeout=5.0) as client:
            payload = await client.get_json(
                "https://api.example.com/users/web_profile_info/",
                params={"username": "someprofile"},
            )

        assert payload == {"data": {"user": None}}
        assert route.calls.last.request.url.params["username"] == "someprofile"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body_is_permanent(self):
        respx.get(URL).mock(return_value=httpx.Response(200, text="<html>login</html>"))

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(PermanentFetchError):
                await client.get_json(URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_404_is_permanent(self):
        respx.get(URL).mock(return_value=httpx.Response(404))

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(PermanentFetchError) as exc_info:
                await client.get(URL)

        assert exc_info.value.status_code == 404
        assert not exc_info.value.retryable

    @pytest.mark.parametrize("code", [500, 503])
    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_is_transient(self, code):
        respx.get(URL).mock(return_value=httpx.Response(code))

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(TransientFetchError) as exc_info:
                await client.get(URL)

        assert exc_info.value.status_code == code
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_is_not_retried(self, sleep_calls):
        route = respx.get(URL).mock(return_value=httpx.Response(429))
        policy = RetryPolicy(max_attempts=3, sleep=sleep_calls.sleep)

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(PermanentFetchError) as exc_info:
                await policy.run(lambda: client.get(URL))

        assert exc_info.value.status_code == 429
        assert route.call_count == 1
        assert sleep_calls == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_is_transient(self):
        respx.get(URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(TransientFetchError, match="Timeout"):
                await client.get(URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connect_error_is_transient(self):
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))

        async with HTTPClient(timeout=5.0) as client:
            with pytest.raises(TransientFetchError, match="ConnectError"):
                await client.get(URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_opens_lazily_and_closes(self):
        respx.get(URL).mock(return_value=httpx.Response(200, text="ok"))

        client = HTTPClient(timeout=5.0)
        assert await client.get_text(URL) == "ok"
        assert client._client is not None
        await client.close()
        assert client._client is None
        # Closing twice is harmless
        await client.close()
