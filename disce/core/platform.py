"""Chat-platform contract consumed by the engine, correlator, and annotator.

Architectural role:
    The Discord adapter (`disce.api.discord_bot.DiscordPlatform`) implements
    this protocol; tests implement it in memory. The core never imports
    `discord` directly.

Concurrency:
    One platform instance is shared by all in-flight pipelines. Each call
    addresses a distinct message/channel id, and the underlying transport
    serializes wire writes.
"""

from typing import Protocol

from disce.core.request_types import ChatMessage


class ChatPlatform(Protocol):
    """Minimal async interface required by the request pipeline."""

    async def fetch_message(self, channel_id: int, message_id: int) -> ChatMessage:
        """Return a message by id; raise if it cannot be fetched."""
        ...

    async def send_text(self, channel_id: int, text: str, reply_to: int | None = None) -> ChatMessage:
        """Post a text message and return it."""
        ...

    async def send_image(
        self,
        channel_id: int,
        text: str,
        filename: str,
        data: bytes,
        reply_to: int | None = None,
    ) -> ChatMessage:
        """Post a text message with one image attachment and return it."""
        ...

    async def add_marker(self, channel_id: int, message_id: int, emoji: str) -> None:
        """Attach a marker to a message."""
        ...

    async def remove_marker(self, channel_id: int, message_id: int, emoji: str) -> None:
        """Remove our marker from a message; raise `MarkerNotFound` if absent."""
        ...
