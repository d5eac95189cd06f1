"""Notifier delivering new items to every subscribed destination.

Each destination gets its own retried send. Failures are converted into
DeliveryResult records and never raised, so a dead channel cannot block
history recording or the last-seen marker.
"""

import logging

from src.config.settings import get_settings
from src.delivery.channels import DeliveryChannel
from src.delivery.messages import build_payload
from src.ingestion.schemas import DeliveryResult, Destination, Item, Source
from src.observability.metrics import MetricsCollector, get_metrics
from src.resilience.backoff import RetryPolicy

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers items through a DeliveryChannel with per-destination retries.

    Also serves as the recent-message reader for the duplicate detector,
    since both go through the same channel.
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        retry_policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        web_url: str | None = None,
    ) -> None:
        self._channel = channel
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self._metrics = metrics or get_metrics()
        self._web_url = web_url or get_settings().profile_web_url

    @property
    def channel(self) -> DeliveryChannel:
        return self._channel

    async def deliver(
        self,
        item: Item,
        source: Source,
        destinations: list[Destination],
    ) -> list[DeliveryResult]:
        """Send ``item`` to each destination in order.

        Returns:
            One DeliveryResult per destination. Inactive destinations are
            reported as skipped.
        """
        results: list[DeliveryResult] = []

        for destination in destinations:
            if not destination.active:
                self._metrics.record_notification("skipped")
                results.append(
                    DeliveryResult(destination_id=destination.id, success=False, skipped=True)
                )
                continue

            payload = build_payload(item, source, destination, self._web_url)
            try:
                await self._retry_policy.run(
                    lambda: self._channel.send(destination.id, payload),
                    name=f"deliver:{destination.id}",
                )
            except Exception as e:
                logger.warning(
                    "Failed to deliver %s/%s to %s: %s",
                    source.id, item.id, destination.id, e,
                )
                self._metrics.record_notification("failed")
                self._metrics.record_error(type(e).__name__)
                results.append(
                    DeliveryResult(destination_id=destination.id, success=False, error=str(e))
                )
                continue

            logger.info("Delivered %s/%s to %s", source.id, item.id, destination.id)
            self._metrics.record_notification("sent")
            results.append(DeliveryResult(destination_id=destination.id, success=True))

        return results

    async def recent_messages(self, destination_id: str, limit: int) -> list[str]:
        """Last ``limit`` messages of a destination (for duplicate scans)."""
        return await self._channel.recent_messages(destination_id, limit)
