"""
Exponential backoff utility and retry executor.

Computes delays as min(base * multiplier^attempt, max_delay) plus an
additive jitter of 0-30% of that delay, and runs an async operation
with bounded attempts, giving up immediately on non-retryable errors.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    Computes delays as: min(base * multiplier^attempt, max_delay) + jitter,
    where jitter is drawn uniformly from [0, jitter_ratio * delay].
    Call reset() after a successful operation to zero the attempt counter.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
        while True:
            try:
                await do_work()
                backoff.reset()
            except Exception:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        multiplier: float = 2.0,
        jitter_ratio: float = 0.3,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_ratio = jitter_ratio
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Current attempt count."""
        return self._attempt

    def delay_for(self, attempt: int) -> float:
        """Delay for a given 0-indexed attempt, without touching the counter."""
        delay = min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )
        return delay + delay * random.uniform(0, self.jitter_ratio)

    def next_delay(self) -> float:
        """Calculate and return the next backoff delay, incrementing the attempt counter."""
        delay = self.delay_for(self._attempt)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        """Reset the attempt counter after a successful operation."""
        self._attempt = 0


def default_is_retryable(exc: BaseException) -> bool:
    """
    Default retry policy.

    Retryable:
    - Errors flagged ``retryable`` (TransientFetchError: network, 5xx)
    - httpx transport errors, including timeouts
    - asyncio/OS level timeouts and connection errors

    Everything else, including PermanentFetchError (4xx), fails fast.
    """
    flag = getattr(exc, "retryable", None)
    if flag is not None:
        return bool(flag)
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(
        exc,
        (httpx.TransportError, TimeoutError, ConnectionError),
    )


async def retry_with_backoff(
    op: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    *,
    sleep: Sleep = asyncio.sleep,
    name: str = "operation",
) -> T:
    """
    Run ``op`` with bounded retries and exponential backoff.

    Args:
        op: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first (clamped to >= 1)
        base_delay: Delay in seconds before the second attempt
        max_delay: Cap on the exponential component
        is_retryable: Classifier; a False verdict re-raises immediately
        sleep: Awaitable sleep, injectable for tests
        name: Label used in log lines

    Returns:
        Result of the first successful attempt

    Raises:
        The first non-retryable error, or the last error after all
        attempts are exhausted.
    """
    attempts = max(1, max_attempts)
    backoff = ExponentialBackoff(base_delay=base_delay, max_delay=max_delay)

    for attempt in range(attempts):
        try:
            return await op()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt == attempts - 1:
                logger.debug(
                    "%s failed after %d attempts: %s", name, attempts, e,
                )
                raise
            delay = backoff.next_delay()
            logger.debug(
                "%s attempt %d/%d failed (%s), retrying in %.2fs",
                name, attempt + 1, attempts, type(e).__name__, delay,
            )
            await sleep(delay)

    raise AssertionError("unreachable")


@dataclass
class RetryPolicy:
    """
    Bundled retry settings for one kind of operation.

    Each fetch strategy and the notifier carry their own policy so that,
    for example, a scrape and a delivery can retry differently.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = field(
        default=default_is_retryable, repr=False
    )
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    async def run(self, op: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        """Execute ``op`` under this policy."""
        return await retry_with_backoff(
            op,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            is_retryable=self.is_retryable,
            sleep=self.sleep,
            name=name,
        )
