"""Per-trigger request orchestration.

Architectural role:
    Runs one generation pipeline per accepted trigger, from parsing or
    correlation through delivery, and keeps the status marker in step.

Control-flow model (command message):
    1. `parse_command`; `help` gets the informational reply and stops.
    2. Markers on the command message: none -> queued -> working.
    3. Generation client call (worker thread).
    4. Marker -> preparing; composite fragments (worker thread) if needed.
    5. Deliver the result as a reply to the command message.
    6. Marker -> succeeded, or -> failed plus an error reply.

Control-flow model (retry reaction):
    1. `correlate` the reaction with its command message.
    2. Post an acknowledgement reply to the reacted message. It is bot-authored
       and has a parent, so later reactions can walk through it.
    3. Markers on the acknowledgement: none -> working, then as above, with the
       result posted as a reply to the acknowledgement.

Error handling strategy:
    - `ParseRejection` / `CorrelationFailure`: ignored, debug log.
    - `AnnotationFailure` before delivery: logged, the pipeline stops. After
      delivery: logged only, the image is already posted.
    - `GenerationFailure` / `CompositionFailure` / delivery errors: logged,
      failed marker, error reply.
    No exception escapes `process_message` / `process_reaction`.

Concurrency:
    Each trigger is expected to run on its own task. The only state shared
    between pipelines is the in-flight id set that keeps a message from being
    the target of two pipelines at once. Blocking calls (HTTP, Pillow) run in
    `asyncio.to_thread`.
"""

import asyncio
import dataclasses
import logging
from contextlib import contextmanager

from disce.commands.correlator import correlate
from disce.commands.trigger_parser import help_text, parse_command
from disce.config import BotConfig
from disce.core.errors import (
    AnnotationFailure,
    CompositionFailure,
    CorrelationFailure,
    GenerationFailure,
    ParseRejection,
)
from disce.core.platform import ChatPlatform
from disce.core.request_types import (
    ChatMessage,
    FragmentResult,
    GenerationRequest,
    GenerationResult,
    ReactionEvent,
    SingleImageResult,
)
from disce.image.client import GenerationClient
from disce.image.compositor import ImageCompositor
from disce.status.annotator import StatusAnnotator, StatusMarker


logger = logging.getLogger(__name__)


class PipelineBusy(Exception):
    """The target message already has a pipeline in flight."""


class BotEngine:
    """Request-lifecycle engine shared by the Discord adapter and tests.

    Args:
        config: Read-only process configuration.
        platform: Chat platform implementation.
        client: Generation client.
        compositor: Fragment compositor.
        bot_user_id: Identity of the bot account on the platform.
    """

    def __init__(
        self,
        config: BotConfig,
        platform: ChatPlatform,
        client: GenerationClient,
        compositor: ImageCompositor,
        bot_user_id,
    ):
        self.config = config
        self.platform = platform
        self.client = client
        self.compositor = compositor
        self.bot_user_id = bot_user_id
        self._in_flight: set = set()

    @contextmanager
    def _claim(self, message_id):
        if message_id in self._in_flight:
            raise PipelineBusy(message_id)
        self._in_flight.add(message_id)
        try:
            yield
        finally:
            self._in_flight.discard(message_id)

    def is_in_flight(self, message_id) -> bool:
        return message_id in self._in_flight

    # =========================================================
    # TRIGGERS
    # =========================================================

    async def process_message(self, message: ChatMessage) -> None:
        """Handle one message-created event."""
        try:
            trigger = parse_command(message, self.bot_user_id, self.config)
        except ParseRejection as exc:
            logger.debug("[%s] Ignored message: %s", message.id, exc)
            return

        if trigger.is_help:
            await self._send_help(message)
            return

        request = trigger.request
        logger.info(
            "[%s] From %s in channel %s (guild %s)",
            request.id, request.author_name or request.author_id,
            request.channel_id, request.guild_id,
        )

        try:
            with self._claim(message.id):
                annotator = StatusAnnotator(self.platform, message.channel_id, message.id)
                await self._run(request, annotator, StatusMarker.QUEUED)
        except PipelineBusy:
            logger.warning("[%s] Pipeline already in flight, ignoring trigger", message.id)

    async def process_reaction(self, event: ReactionEvent) -> None:
        """Handle one reaction-added event."""
        try:
            request = await correlate(event, self.platform, self.bot_user_id, self.config)
        except CorrelationFailure as exc:
            logger.debug("[%s] Ignored reaction: %s", event.message_id, exc)
            return

        logger.info(
            "[%s] Regenerate requested by %s for prompt %r",
            request.id, event.user_id, request.prompt,
        )

        try:
            with self._claim(event.message_id):
                await self._regenerate(request)
        except PipelineBusy:
            logger.warning("[%s] Pipeline already in flight, ignoring reaction", event.message_id)

    async def _regenerate(self, request: GenerationRequest) -> None:
        try:
            ack = await self.platform.send_text(
                request.channel_id,
                f"Regenerating *{request.prompt}*",
                reply_to=request.reply_to,
            )
        except Exception:
            logger.exception("[%s] Failed to post acknowledgement", request.id)
            return

        request = dataclasses.replace(request, reply_to=ack.id)
        annotator = StatusAnnotator(self.platform, ack.channel_id, ack.id)
        await self._run(request, annotator, StatusMarker.WORKING)

    # =========================================================
    # PIPELINE
    # =========================================================

    async def _run(
        self,
        request: GenerationRequest,
        annotator: StatusAnnotator,
        initial: StatusMarker,
    ) -> None:
        try:
            await annotator.start(initial)
            if annotator.current is not StatusMarker.WORKING:
                await annotator.swap(StatusMarker.WORKING)
        except AnnotationFailure:
            logger.exception("[%s] Could not mark request as started", request.id)
            return

        try:
            result = await asyncio.to_thread(self.client.generate, request)
        except GenerationFailure as exc:
            logger.error("[%s] %s", request.id, exc)
            await self._fail(request, annotator, f"Failed to generate *{request.prompt}*: {exc}")
            return

        try:
            await annotator.swap(StatusMarker.PREPARING)
        except AnnotationFailure:
            logger.exception("[%s] Could not mark request as preparing", request.id)
            return

        try:
            await self._deliver(request, result)
        except CompositionFailure as exc:
            logger.error("[%s] %s", request.id, exc)
            await self._fail(request, annotator, f"Failed to assemble images for *{request.prompt}*")
            return
        except Exception:
            logger.exception("[%s] Failed to deliver result", request.id)
            await self._fail(request, annotator, None)
            return

        logger.info("[%s] Successfully sent message to channel", request.id)

        try:
            await annotator.swap(StatusMarker.SUCCEEDED)
        except AnnotationFailure:
            logger.exception("[%s] Could not mark request as succeeded", request.id)

    async def _fail(self, request: GenerationRequest, annotator: StatusAnnotator, text) -> None:
        try:
            await annotator.swap(StatusMarker.FAILED)
        except AnnotationFailure:
            logger.exception("[%s] Could not mark request as failed", request.id)

        if text is None:
            return
        try:
            await self.platform.send_text(request.channel_id, text, reply_to=request.reply_to)
        except Exception:
            logger.exception("[%s] Failed to send error reply", request.id)

    async def _send_help(self, message: ChatMessage) -> None:
        try:
            await self.platform.send_text(message.channel_id, help_text(self.config), reply_to=message.id)
        except Exception:
            logger.exception("[%s] Failed to send help reply", message.id)

    # =========================================================
    # DELIVERY
    # =========================================================

    def caption(self, request: GenerationRequest) -> str:
        """Return the text posted with a result."""
        text = f"*{request.prompt}*"
        if (
            self.config.special_user_text
            and self.config.special_user_id is not None
            and request.author_id == self.config.special_user_id
        ):
            text = f"{self.config.special_user_text} {text}"
        if request.duration is not None:
            text = f"{text} ({request.duration:.1f}s)"
        return text

    async def _deliver(self, request: GenerationRequest, result: GenerationResult) -> None:
        caption = self.caption(request)

        if isinstance(result, FragmentResult):
            data = await asyncio.to_thread(self.compositor.compose, request.id, result.fragments)
            await self.platform.send_image(
                request.channel_id, caption, f"{request.id}.jpg", data, reply_to=request.reply_to
            )
            return

        if isinstance(result, SingleImageResult) and result.url:
            await self.platform.send_text(
                request.channel_id, f"{caption}\n{result.url}", reply_to=request.reply_to
            )
            return

        if isinstance(result, SingleImageResult) and result.data:
            await self.platform.send_image(
                request.channel_id, caption, f"{request.id}.png", result.data, reply_to=request.reply_to
            )
            return

        raise GenerationFailure("Result carries no image", result.duration, result.attempts)
