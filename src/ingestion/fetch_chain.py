"""
Fetch strategy chain - ordered fallback across fetch strategies.

For each source the chain:
1. Tries the strategy that last succeeded for that source (if any).
   A non-empty result there ends the fetch.
2. Otherwise runs the remaining strategies in static preference order,
   pausing briefly between them, and pools every non-empty result.
3. Collapses items with the same id across strategies (first strategy
   to report an id wins), then sorts by published_at descending.
4. Remembers the first strategy that produced items.

An empty pooled result means every strategy failed or came back empty.
Callers must treat that as a fetch failure, not as "no new posts".
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Sequence

import structlog

from src.config.settings import Settings, get_settings
from src.ingestion.base_strategy import BaseStrategy, sort_newest_first
from src.ingestion.feed_strategies import BibliogramStrategy, RssBridgeStrategy
from src.ingestion.http_client import HTTPClient
from src.ingestion.profile_strategies import ProfileApiStrategy, WebScrapeStrategy
from src.ingestion.schemas import Item
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.resilience.backoff import RetryPolicy
from src.resilience.errors import AllStrategiesExhausted

logger = structlog.get_logger(__name__)


class MethodMemory:
    """
    Per-source record of the strategy that last produced items.

    Advisory only: losing it (e.g. on restart) just means the next fetch
    starts from the static order.
    """

    def __init__(self) -> None:
        self._methods: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, source: str) -> str | None:
        with self._lock:
            return self._methods.get(source)

    def remember(self, source: str, strategy: str) -> None:
        with self._lock:
            self._methods[source] = strategy

    def forget(self, source: str) -> None:
        with self._lock:
            self._methods.pop(source, None)

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._methods)


def merge_items(results: Sequence[list[Item]]) -> list[Item]:
    """
    Pool per-strategy results, keeping the first copy of each item id.

    Returns:
        Deduplicated items, newest first (undated items last).
    """
    seen: set[str] = set()
    merged: list[Item] = []
    for items in results:
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            merged.append(item)
    return sort_newest_first(merged)


class FetchStrategyChain:
    """
    Runs fetch strategies in fallback order for one source at a time.

    Usage:
        chain = FetchStrategyChain([api, scrape, rss, bibliogram])
        items = await chain.fetch_latest_items("someprofile")

    Args:
        strategies: Strategies in static preference order (most
            real-time first, most degraded last)
        memory: Shared last-successful-method memory
        strategy_delay: Seconds to pause between successive strategies
        metrics: Metrics collector (defaults to the global one)
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        strategies: Sequence[BaseStrategy],
        memory: MethodMemory | None = None,
        strategy_delay: float = 0.5,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not strategies:
            raise ValueError("FetchStrategyChain needs at least one strategy")
        names = [s.name for s in strategies]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate strategy names: {names}")

        self._strategies = list(strategies)
        self._memory = memory or MethodMemory()
        self._strategy_delay = strategy_delay
        self._metrics = metrics or get_metrics()
        self._sleep = sleep
        self._tracer = get_tracer(__name__)

    @property
    def strategies(self) -> list[BaseStrategy]:
        return list(self._strategies)

    @property
    def memory(self) -> MethodMemory:
        return self._memory

    def attempt_order(self, source: str) -> list[BaseStrategy]:
        """Static order with the remembered strategy (if any) hoisted first."""
        remembered = self._memory.get(source)
        if remembered is None:
            return list(self._strategies)
        first = [s for s in self._strategies if s.name == remembered]
        rest = [s for s in self._strategies if s.name != remembered]
        return first + rest

    async def _attempt(
        self,
        strategy: BaseStrategy,
        source: str,
        errors: dict[str, str],
    ) -> list[Item]:
        """Run one strategy, converting any failure into an empty result."""
        with traced(
            self._tracer, "fetch.strategy", {"source": source, "strategy": strategy.name}
        ) as span:
            try:
                items = await strategy.fetch(source)
            except Exception as e:
                errors[strategy.name] = f"{type(e).__name__}: {e}"
                self._metrics.record_strategy_error(strategy.name, type(e).__name__)
                logger.warning(
                    "Strategy failed",
                    source=source,
                    strategy=strategy.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                span.set_attribute("error", True)
                return []
            span.set_attribute("items", len(items))

        if not items:
            errors.setdefault(strategy.name, "empty result")
            logger.debug("Strategy returned no items", source=source, strategy=strategy.name)
        return items

    async def require_latest_items(self, source: str) -> list[Item]:
        """
        Fetch the latest items for ``source``, newest first.

        Raises:
            AllStrategiesExhausted: Every strategy failed or came back empty.
        """
        start = time.monotonic()
        self._metrics.record_fetch_attempt(source)

        order = self.attempt_order(source)
        errors: dict[str, str] = {}
        results: list[list[Item]] = []
        winner: str | None = None

        remembered = self._memory.get(source)
        if remembered is not None and order[0].name == remembered:
            items = await self._attempt(order[0], source, errors)
            if items:
                results.append(items)
                winner = remembered
            order = order[1:]
            if not results and order:
                logger.info(
                    "Remembered strategy came back empty, running full chain",
                    source=source,
                    strategy=remembered,
                )
                await self._sleep(self._strategy_delay)

        if not results:
            for index, strategy in enumerate(order):
                if index > 0:
                    await self._sleep(self._strategy_delay)
                items = await self._attempt(strategy, source, errors)
                if items:
                    results.append(items)
                    if winner is None:
                        winner = strategy.name

        merged = merge_items(results)
        elapsed = time.monotonic() - start

        if not merged:
            self._metrics.record_fetch_failure(source)
            raise AllStrategiesExhausted(source, errors)

        self._memory.remember(source, winner)
        self._metrics.record_fetch_success(source, winner, elapsed)
        logger.info(
            "Fetched items",
            source=source,
            strategy=winner,
            strategies_succeeded=len(results),
            items=len(merged),
            latest_item=merged[0].id,
            elapsed_seconds=round(elapsed, 2),
        )
        return merged

    async def fetch_latest_items(self, source: str) -> list[Item]:
        """
        Fetch the latest items for ``source``, newest first.

        Returns an empty list when every strategy failed or came back
        empty; use require_latest_items() to get the per-strategy errors.
        """
        try:
            return await self.require_latest_items(source)
        except AllStrategiesExhausted as e:
            logger.warning("All strategies exhausted", source=source, errors=e.errors)
            return []


def create_default_strategies(
    http: HTTPClient,
    settings: Settings | None = None,
    retry_policy: RetryPolicy | None = None,
) -> list[BaseStrategy]:
    """
    Build the production strategy list in preference order.

    Args:
        http: Shared HTTP client
        settings: Application settings (defaults to cached settings)
        retry_policy: Retry policy for the single-endpoint strategies
    """
    settings = settings or get_settings()
    return [
        ProfileApiStrategy(http, retry_policy=retry_policy),
        WebScrapeStrategy(http, retry_policy=retry_policy),
        RssBridgeStrategy(http, retry_policy=retry_policy),
        BibliogramStrategy(http, instances=settings.bibliogram_instance_list),
    ]
