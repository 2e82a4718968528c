"""Recover the original command behind a "regenerate" reaction.

Walk model:
    A reaction on one of the bot's replies asks to run the same prompt again.
    The reacted-to message's reply parent is the first node. Bot-authored nodes
    (acknowledgements and earlier results) must themselves have a parent and
    are stepped over. The first user-authored node must match the command
    grammar; it is the origin. Any other user message ends the walk. An origin
    that asks for help yields no request.

Bounds:
    The walk stops after `config.max_reply_hops` fetched nodes or when a
    message id repeats. Both fail closed.

Failure handling:
    Every rejection raises `CorrelationFailure`. Platform errors while fetching
    a parent (deleted message, missing permissions) are converted into
    `CorrelationFailure` as well; the engine ignores them silently.
"""

import logging

from disce.commands.trigger_parser import extract_prompt, is_admitted, is_help, matches_command
from disce.config import BotConfig
from disce.core.errors import CorrelationFailure
from disce.core.platform import ChatPlatform
from disce.core.request_types import ChatMessage, GenerationRequest, ReactionEvent


logger = logging.getLogger(__name__)


async def _fetch(platform: ChatPlatform, channel_id, message_id) -> ChatMessage:
    try:
        return await platform.fetch_message(channel_id, message_id)
    except Exception as exc:
        raise CorrelationFailure(f"could not fetch message {message_id}: {exc}") from exc


async def find_origin(
    start: ChatMessage,
    platform: ChatPlatform,
    bot_user_id,
    config: BotConfig,
) -> ChatMessage:
    """Follow reply parents from `start` to the command message.

    Args:
        start: The reacted-to message. It must have a reply parent.
        platform: Chat platform used to fetch parents.
        bot_user_id: Identity of the bot account.
        config: Supplies the command prefix and the hop bound.

    Returns:
        The user-authored message that matches the command grammar.

    Raises:
        CorrelationFailure: Dangling bot node, non-command user node, cycle,
            hop bound exceeded, or fetch error.
    """
    if start.reference_id is None:
        raise CorrelationFailure("reacted message is not a reply")

    seen = {start.id}
    next_id = start.reference_id

    for _ in range(config.max_reply_hops):
        if next_id in seen:
            raise CorrelationFailure(f"reply chain loops back to {next_id}")
        seen.add(next_id)

        node = await _fetch(platform, start.channel_id, next_id)

        if node.author_id == bot_user_id:
            if node.reference_id is None:
                raise CorrelationFailure(f"bot message {node.id} has no parent")
            next_id = node.reference_id
            continue

        if matches_command(node.content, config.command_prefix):
            return node

        raise CorrelationFailure(f"message {node.id} is not a command")

    raise CorrelationFailure(f"reply chain longer than {config.max_reply_hops} hops")


async def correlate(
    event: ReactionEvent,
    platform: ChatPlatform,
    bot_user_id,
    config: BotConfig,
) -> GenerationRequest:
    """Turn a retry reaction into a fresh `GenerationRequest`.

    The new request takes its prompt from the recovered origin, its channel and
    guild from the reacted-to message, and its identity from the reacted-to
    message id. The requester is the origin's author, as in the command path.

    Raises:
        CorrelationFailure: The reaction is not a retry gesture or the chain is
            invalid.
    """
    if event.user_id == bot_user_id:
        raise CorrelationFailure("reaction added by the bot")

    if event.emoji != config.retry_emoji:
        raise CorrelationFailure(f"emoji {event.emoji!r} is not the retry symbol")

    if not is_admitted(event.user_id, config):
        raise CorrelationFailure(f"user {event.user_id} is not admitted")

    reacted = await _fetch(platform, event.channel_id, event.message_id)
    if reacted.reference_id is None:
        raise CorrelationFailure("reacted message has no reply parent")

    origin = await find_origin(reacted, platform, bot_user_id, config)
    prompt = extract_prompt(origin.content, config.command_prefix)
    if is_help(prompt):
        raise CorrelationFailure(f"command {origin.id} asked for help, not an image")

    logger.debug("[%s] Correlated reaction with command %s", reacted.id, origin.id)

    return GenerationRequest(
        id=reacted.id,
        prompt=prompt,
        author_id=origin.author_id,
        author_name=origin.author_name,
        channel_id=reacted.channel_id,
        guild_id=reacted.guild_id if reacted.guild_id is not None else event.guild_id,
        reply_to=reacted.id,
    )
