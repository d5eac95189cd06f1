"""Delivery channel implementations.

Provides an ABC for chat destinations plus the Discord REST implementation.
A channel does two things: post a rendered payload to a destination, and
read back the last few messages of a destination for the duplicate scan.
Channels raise DeliveryError; retries live in the Notifier.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.config.settings import get_settings
from src.resilience.errors import DeliveryError

logger = logging.getLogger(__name__)


class DeliveryChannel(ABC):
    """Abstract base for notification destinations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel type (e.g. 'discord')."""

    @abstractmethod
    async def send(self, destination_id: str, payload: dict[str, Any]) -> None:
        """Post a message to a destination.

        Raises:
            DeliveryError: With ``retryable`` set for rate limits, 5xx
                and transport failures.
        """

    @abstractmethod
    async def recent_messages(self, destination_id: str, limit: int) -> list[str]:
        """Return the text of the last ``limit`` messages, newest first."""


class DiscordChannel(DeliveryChannel):
    """Delivers notifications through the Discord REST API with a bot token.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._token = token or settings.discord_bot_token
        self._api_url = (api_url or settings.discord_api_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout_seconds
        if not self._token:
            raise ValueError("Discord bot token is not configured")

    @property
    def name(self) -> str:
        return "discord"

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bot {self._token}",
            "User-Agent": "DiscordBot (profile-monitor, 0.1.0)",
        }

    def _messages_url(self, destination_id: str) -> str:
        return f"{self._api_url}/channels/{destination_id}/messages"

    def _raise_for_status(self, resp: httpx.Response, destination_id: str) -> None:
        if resp.is_success:
            return
        raise DeliveryError(
            f"Discord returned {resp.status_code} for channel {destination_id}",
            destination_id=destination_id,
            retryable=resp.status_code == 429 or resp.status_code >= 500,
        )

    async def send(self, destination_id: str, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._messages_url(destination_id),
                    json=payload,
                    headers=self._headers,
                )
        except httpx.TransportError as e:
            raise DeliveryError(
                f"{type(e).__name__} posting to channel {destination_id}: {e}",
                destination_id=destination_id,
                retryable=True,
            ) from e
        self._raise_for_status(resp, destination_id)

    async def recent_messages(self, destination_id: str, limit: int) -> list[str]:
        """Message content plus any embed URLs, newest first."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(
                    self._messages_url(destination_id),
                    params={"limit": limit},
                    headers=self._headers,
                )
        except httpx.TransportError as e:
            raise DeliveryError(
                f"{type(e).__name__} reading channel {destination_id}: {e}",
                destination_id=destination_id,
                retryable=True,
            ) from e
        self._raise_for_status(resp, destination_id)

        texts: list[str] = []
        for message in resp.json():
            parts = [message.get("content") or ""]
            for embed in message.get("embeds") or []:
                parts.append(embed.get("url") or "")
            texts.append("\n".join(p for p in parts if p))
        return texts
