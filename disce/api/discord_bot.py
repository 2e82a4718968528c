"""
Discord adapter and bot entrypoint for DISC-E.

Architectural role:
- Implements `disce.core.platform.ChatPlatform` over `discord.py`.
- Converts gateway events into `ChatMessage` / `ReactionEvent` views.
- Runs every trigger on its own task through `disce.core.engine.BotEngine`.

Event handling:
- `on_message`: command messages (`/dalle <prompt>`).
- `on_raw_reaction_add`: regenerate gestures. The raw event is used so that
  reactions on messages outside the client cache are still seen.

Guild filter:
- When `SERVER_NAMES` is configured, events from other guilds are dropped
  before they reach the engine. A guild missing from the client cache counts
  as not served. Direct messages are always handled.

Error handling strategy:
- The engine handles pipeline failures itself. Anything that still escapes a
  task is logged with its traceback by the task done-callback.

Side effects:
- Opens the gateway connection; posts messages and reactions.
- Configures root logging at startup.
"""

import asyncio
import io
import logging

import discord

from disce.config import BotConfig, load_config
from disce.core.engine import BotEngine
from disce.core.errors import MarkerNotFound
from disce.core.request_types import ChatMessage, ReactionEvent
from disce.image.client import GenerationClient
from disce.image.compositor import ImageCompositor


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def to_chat_message(message: discord.Message) -> ChatMessage:
    """Return the platform-neutral view of a Discord message."""
    reference_id = None
    if message.reference is not None:
        reference_id = message.reference.message_id

    return ChatMessage(
        id=message.id,
        channel_id=message.channel.id,
        guild_id=message.guild.id if message.guild else None,
        author_id=message.author.id,
        author_name=message.author.display_name,
        content=message.content or "",
        reference_id=reference_id,
    )


class DiscordPlatform:
    """`ChatPlatform` implementation backed by a connected `discord.Client`."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def _channel(self, channel_id):
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        return channel

    async def fetch_message(self, channel_id, message_id) -> ChatMessage:
        channel = await self._channel(channel_id)
        message = await channel.fetch_message(message_id)
        return to_chat_message(message)

    async def send_text(self, channel_id, text, reply_to=None) -> ChatMessage:
        channel = await self._channel(channel_id)
        reference = channel.get_partial_message(reply_to) if reply_to else None
        message = await channel.send(text, reference=reference, mention_author=False)
        return to_chat_message(message)

    async def send_image(self, channel_id, text, filename, data, reply_to=None) -> ChatMessage:
        channel = await self._channel(channel_id)
        reference = channel.get_partial_message(reply_to) if reply_to else None
        file = discord.File(io.BytesIO(data), filename=filename)
        message = await channel.send(text, file=file, reference=reference, mention_author=False)
        return to_chat_message(message)

    async def add_marker(self, channel_id, message_id, emoji) -> None:
        channel = await self._channel(channel_id)
        await channel.get_partial_message(message_id).add_reaction(emoji)

    async def remove_marker(self, channel_id, message_id, emoji) -> None:
        # Discord accepts removal of an absent reaction silently, so presence
        # is checked first.
        channel = await self._channel(channel_id)
        message = await channel.fetch_message(message_id)
        if not any(r.me and str(r.emoji) == emoji for r in message.reactions):
            raise MarkerNotFound(f"no {emoji} marker of ours on message {message_id}")
        await message.remove_reaction(emoji, self.client.user)


class DiscEClient(discord.Client):
    """Gateway client that feeds message and reaction events to the engine."""

    def __init__(self, config: BotConfig, **kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.reactions = True
        super().__init__(intents=intents, **kwargs)
        self.config = config
        self.engine: BotEngine | None = None
        self._tasks: set[asyncio.Task] = set()

    async def setup_hook(self) -> None:
        self.engine = BotEngine(
            config=self.config,
            platform=DiscordPlatform(self),
            client=GenerationClient(self.config),
            compositor=ImageCompositor(self.config.scratch_dir, quality=self.config.jpeg_quality),
            bot_user_id=self.user.id,
        )

    async def on_ready(self):
        logger.info("DISC-E is listening as %s (provider: %s)", self.user, self.config.provider)

    def _serves_guild(self, guild_id) -> bool:
        if not self.config.server_names or not guild_id:
            return True
        guild = self.get_guild(guild_id)
        return guild is not None and guild.name in self.config.server_names

    def _spawn(self, coro, label) -> None:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled error in %s", task.get_name(), exc_info=exc)

    async def on_message(self, message: discord.Message):
        if self.engine is None:
            return
        if message.guild is not None and not self._serves_guild(message.guild.id):
            return
        self._spawn(self.engine.process_message(to_chat_message(message)), f"message-{message.id}")

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if self.engine is None:
            return
        if not self._serves_guild(payload.guild_id):
            return

        event = ReactionEvent(
            user_id=payload.user_id,
            emoji=str(payload.emoji),
            channel_id=payload.channel_id,
            message_id=payload.message_id,
            guild_id=payload.guild_id,
        )
        self._spawn(self.engine.process_reaction(event), f"reaction-{payload.message_id}")


# =========================================================
# MAIN
# =========================================================

def main():
    """Load configuration, configure logging, and run the bot until interrupted."""
    config = load_config()
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    if not config.discord_token:
        raise SystemExit("DISCORD_TOKEN is not set")

    client = DiscEClient(config)
    client.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
