"""Command grammar and trigger parsing for `/dalle <prompt>` messages.

Parsing rules:
    1. Content must start with the configured prefix (case-insensitive) and be
       longer than it.
    2. Messages from the bot itself are rejected (no self-trigger loops).
    3. Under restricted-access mode (`allowed_user_id`), only that author is
       admitted.
    4. The remainder after the prefix, trimmed, is the prompt. Casing is kept;
       lower-casing is used for matching only.
    5. A prompt equal to `help` short-circuits to the informational reply.

Failure handling:
    Every rejection raises `ParseRejection` with a short reason. The engine
    treats it as "not applicable" and logs at debug level only.

Determinism:
    Pure function of the message, bot id, and configuration.
"""

from dataclasses import dataclass

from disce.config import BotConfig
from disce.core.errors import ParseRejection
from disce.core.request_types import ChatMessage, GenerationRequest

HELP_LITERAL = "help"

HELP_TEXT = (
    "**DISC-E** generates images from text.\n"
    "Usage: `{prefix}<prompt>`, for example `{prefix}a corgi astronaut`.\n"
    "React with {retry} on one of my replies to generate the same prompt again."
)


@dataclass(frozen=True)
class CommandTrigger:
    """Outcome of a successful parse.

    Exactly one of `request` / `is_help` is meaningful: a help trigger carries
    no request and must not reach the generation client.
    """

    message: ChatMessage
    request: GenerationRequest | None = None
    is_help: bool = False


def matches_command(text: str | None, prefix: str) -> bool:
    """Return whether `text` is prefix + non-empty remainder."""
    if not text:
        return False
    if len(text) <= len(prefix):
        return False
    if text[:len(prefix)].lower() != prefix.lower():
        return False
    return bool(text[len(prefix):].strip())


def extract_prompt(text: str, prefix: str) -> str:
    """Return the trimmed remainder after `prefix`, keeping its casing."""
    return text[len(prefix):].strip()


def is_help(prompt: str) -> bool:
    """Return whether `prompt` is the help literal, case-insensitively."""
    return prompt.lower() == HELP_LITERAL


def is_admitted(user_id, config: BotConfig) -> bool:
    """Apply restricted-access mode; every user is admitted when it is off."""
    return config.allowed_user_id is None or user_id == config.allowed_user_id


def help_text(config: BotConfig) -> str:
    return HELP_TEXT.format(prefix=config.command_prefix, retry=config.retry_emoji)


def parse_command(message: ChatMessage, bot_user_id, config: BotConfig) -> CommandTrigger:
    """Turn an inbound message into a command trigger.

    Args:
        message: Inbound message view.
        bot_user_id: Identity of the bot account.
        config: Process configuration (prefix, restricted-access user).

    Returns:
        `CommandTrigger` holding either a `GenerationRequest` draft or the
        help flag.

    Raises:
        ParseRejection: The message is not a command for us.
    """
    if message.author_id == bot_user_id:
        raise ParseRejection("message authored by the bot")

    if not matches_command(message.content, config.command_prefix):
        raise ParseRejection("message does not match the command grammar")

    if not is_admitted(message.author_id, config):
        raise ParseRejection(f"author {message.author_id} is not admitted")

    prompt = extract_prompt(message.content, config.command_prefix)

    if is_help(prompt):
        return CommandTrigger(message=message, is_help=True)

    request = GenerationRequest(
        id=message.id,
        prompt=prompt,
        author_id=message.author_id,
        author_name=message.author_name,
        channel_id=message.channel_id,
        guild_id=message.guild_id,
        reply_to=message.id,
    )
    return CommandTrigger(message=message, request=request)
