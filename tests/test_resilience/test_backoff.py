"""Tests for exponential backoff and the retry executor."""

import httpx
import pytest

from src.resilience.backoff import (
    ExponentialBackoff,
    RetryPolicy,
    default_is_retryable,
    retry_with_backoff,
)
from src.resilience.errors import (
    AllStrategiesExhausted,
    DeliveryError,
    PermanentFetchError,
    TransientFetchError,
)


class TestExponentialBackoff:
    """Tests for ExponentialBackoff delay calculation."""

    def test_first_delay_is_base(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter_ratio=0.0)
        assert backoff.next_delay() == 1.0

    def test_delay_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter_ratio=0.0)
        assert [backoff.next_delay() for _ in range(3)] == [1.0, 2.0, 4.0]

    def test_caps_at_max_delay(self):
        backoff = ExponentialBackoff(base_delay=4.0, max_delay=10.0, jitter_ratio=0.0)
        assert [backoff.next_delay() for _ in range(3)] == [4.0, 8.0, 10.0]

    def test_jitter_is_zero_to_thirty_percent(self):
        """Jitter only ever adds, by at most 30% of the capped delay."""
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
        for attempt in range(6):
            base = min(2.0 ** attempt, 10.0)
            for _ in range(50):
                delay = backoff.delay_for(attempt)
                assert base <= delay <= base * 1.3

    def test_reset(self):
        backoff = ExponentialBackoff(base_delay=1.0, jitter_ratio=0.0)
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.attempt == 2
        backoff.reset()
        assert backoff.attempt == 0
        assert backoff.next_delay() == 1.0


class TestDefaultIsRetryable:
    """Tests for the default error classification."""

    def test_transient_fetch_error_is_retryable(self):
        assert default_is_retryable(TransientFetchError("503", status_code=503))

    def test_permanent_fetch_error_is_not(self):
        assert not default_is_retryable(PermanentFetchError("404", status_code=404))

    def test_exhausted_is_not(self):
        assert not default_is_retryable(AllStrategiesExhausted("someprofile"))

    def test_delivery_error_flag_is_per_instance(self):
        assert default_is_retryable(DeliveryError("429", retryable=True))
        assert not default_is_retryable(DeliveryError("403"))

    def test_transport_errors_are_retryable(self):
        assert default_is_retryable(httpx.ConnectError("refused"))
        assert default_is_retryable(httpx.ReadTimeout("slow"))
        assert default_is_retryable(TimeoutError())
        assert default_is_retryable(ConnectionResetError())

    def test_http_status_errors(self):
        request = httpx.Request("GET", "https://example.com")
        server = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(502, request=request)
        )
        client = httpx.HTTPStatusError(
            "nope", request=request, response=httpx.Response(404, request=request)
        )
        assert default_is_retryable(server)
        assert not default_is_retryable(client)

    def test_other_errors_are_not(self):
        assert not default_is_retryable(ValueError("bad"))
        assert not default_is_retryable(KeyError("x"))


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self, sleep_calls):
        calls = []

        async def op():
            calls.append(1)
            return "ok"

        result = await retry_with_backoff(op, sleep=sleep_calls.sleep)
        assert result == "ok"
        assert len(calls) == 1
        assert sleep_calls == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, sleep_calls):
        outcomes = [TransientFetchError("503"), TransientFetchError("503"), "ok"]

        async def op():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await retry_with_backoff(
            op, max_attempts=3, base_delay=1.0, max_delay=10.0, sleep=sleep_calls.sleep,
        )
        assert result == "ok"
        assert len(sleep_calls) == 2
        assert 1.0 <= sleep_calls[0] <= 1.3
        assert 2.0 <= sleep_calls[1] <= 2.6

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, sleep_calls):
        calls = []

        async def op():
            calls.append(1)
            raise PermanentFetchError("404", status_code=404)

        with pytest.raises(PermanentFetchError):
            await retry_with_backoff(op, max_attempts=5, sleep=sleep_calls.sleep)
        assert len(calls) == 1
        assert sleep_calls == []

    @pytest.mark.asyncio
    async def test_raises_last_error_after_exhaustion(self, sleep_calls):
        errors = [TransientFetchError(f"attempt {i}") for i in range(3)]
        seen = list(errors)

        async def op():
            raise seen.pop(0)

        with pytest.raises(TransientFetchError) as exc_info:
            await retry_with_backoff(op, max_attempts=3, sleep=sleep_calls.sleep)
        assert exc_info.value is errors[-1]
        # No sleep after the final attempt
        assert len(sleep_calls) == 2

    @pytest.mark.asyncio
    async def test_max_attempts_clamped_to_one(self, sleep_calls):
        calls = []

        async def op():
            calls.append(1)
            raise TransientFetchError("503")

        with pytest.raises(TransientFetchError):
            await retry_with_backoff(op, max_attempts=0, sleep=sleep_calls.sleep)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_custom_classifier(self, sleep_calls):
        calls = []

        async def op():
            calls.append(1)
            raise ValueError("flaky")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                op,
                max_attempts=3,
                is_retryable=lambda e: isinstance(e, ValueError),
                sleep=sleep_calls.sleep,
            )
        assert len(calls) == 3


class TestRetryPolicy:
    """Tests for the RetryPolicy bundle."""

    @pytest.mark.asyncio
    async def test_run_uses_policy_settings(self, sleep_calls):
        policy = RetryPolicy(max_attempts=2, base_delay=0.5, sleep=sleep_calls.sleep)
        calls = []

        async def op():
            calls.append(1)
            raise TransientFetchError("timeout")

        with pytest.raises(TransientFetchError):
            await policy.run(op, name="test")
        assert len(calls) == 2
        assert len(sleep_calls) == 1
        assert 0.5 <= sleep_calls[0] <= 0.65

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0
