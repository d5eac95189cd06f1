"""Notification message rendering.

Templates are plain strings with a fixed set of named placeholders:
``{username}``, ``{display_name}``, ``{url}`` and ``{title}``. Any other
brace text is left alone, so a template can never fail to render.
"""

from typing import Any

from src.ingestion.schemas import Destination, Item, Source

DEFAULT_TEMPLATE = "Hey **@{username}** just posted a new shot! Go check it out!"

PLACEHOLDERS = ("username", "display_name", "url", "title")

EMBED_COLOR = 0xE1306C
EMBED_DESCRIPTION_LIMIT = 4096


def build_message(template: str | None = None, **fields: str | None) -> str:
    """Fill the known placeholders of ``template``.

    ``display_name`` falls back to ``username``; missing fields render
    as empty strings.

    Example:
        >>> build_message("New from {username}: {url}", username="a", url="u")
        'New from a: u'
    """
    template = template or DEFAULT_TEMPLATE
    values = {key: fields.get(key) or "" for key in PLACEHOLDERS}
    if not values["display_name"]:
        values["display_name"] = values["username"]

    message = template
    for key, value in values.items():
        message = message.replace("{" + key + "}", value)
    return message


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def build_payload(
    item: Item,
    source: Source,
    destination: Destination,
    web_url: str,
) -> dict[str, Any]:
    """Build the chat message payload for one destination.

    The content line always ends with the item URL, which is what the
    destination-side duplicate scan looks for.
    """
    message = build_message(
        destination.custom_message,
        username=source.id,
        display_name=source.display_name,
        url=item.url,
        title=item.title,
    )
    mention = f"<@&{destination.mention_role_id}> " if destination.mention_role_id else ""

    display = source.display_name or source.id
    embed: dict[str, Any] = {
        "color": EMBED_COLOR,
        "url": item.url,
        "author": {
            "name": f"{display} (@{source.id})",
            "url": f"{web_url.rstrip('/')}/{source.id}/",
        },
        "footer": {"text": "Instagram"},
    }
    if item.title:
        embed["title"] = _truncate(item.title, 256)
    if item.description:
        embed["description"] = _truncate(item.description, EMBED_DESCRIPTION_LIMIT)
    if item.published_at is not None:
        embed["timestamp"] = item.published_at.isoformat()
    if item.thumbnail_url:
        embed["image"] = {"url": item.thumbnail_url}

    return {
        "content": f"{mention}{message}\n{item.url}",
        "embeds": [embed],
    }
