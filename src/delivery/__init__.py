"""Delivery of new-item notifications to chat destinations."""

from src.delivery.channels import DeliveryChannel, DiscordChannel
from src.delivery.messages import DEFAULT_TEMPLATE, build_message, build_payload
from src.delivery.notifier import Notifier

__all__ = [
    "DeliveryChannel",
    "DiscordChannel",
    "DEFAULT_TEMPLATE",
    "build_message",
    "build_payload",
    "Notifier",
]
