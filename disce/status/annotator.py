"""Reaction-marker state machine for one message.

States:
    none -> queued | working                (start)
    queued -> working | failed              (swap)
    working -> preparing | succeeded | failed
    preparing -> succeeded | failed
    succeeded, failed                       (terminal)

Swap model:
    A swap is two platform calls: remove the visible marker, then add the new
    one. It is not atomic. If removal fails the state is unchanged. If removal
    succeeds and addition fails the message is left without a marker, which is
    observable through `markerless`, and `AnnotationFailure` is raised. Nothing
    is retried here; the engine decides what to do next.

Concurrency:
    One annotator per message and one in-flight pipeline per message. The
    annotator does not synchronize concurrent callers.
"""

import enum
import logging

from disce.core.errors import AnnotationFailure
from disce.core.platform import ChatPlatform


logger = logging.getLogger(__name__)


class StatusMarker(enum.Enum):
    """Visible lifecycle markers and the emoji each one is shown as."""

    QUEUED = "\N{CARD FILE BOX}\N{VARIATION SELECTOR-16}"
    WORKING = "\N{HAMMER AND PICK}\N{VARIATION SELECTOR-16}"
    PREPARING = "\N{OUTBOX TRAY}"
    SUCCEEDED = "\N{WHITE HEAVY CHECK MARK}"
    FAILED = "\N{CROSS MARK}"

    @property
    def emoji(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (StatusMarker.SUCCEEDED, StatusMarker.FAILED)


INITIAL_MARKERS = frozenset({StatusMarker.QUEUED, StatusMarker.WORKING})

TRANSITIONS = {
    StatusMarker.QUEUED: frozenset({StatusMarker.WORKING, StatusMarker.FAILED}),
    StatusMarker.WORKING: frozenset({
        StatusMarker.PREPARING, StatusMarker.SUCCEEDED, StatusMarker.FAILED,
    }),
    StatusMarker.PREPARING: frozenset({StatusMarker.SUCCEEDED, StatusMarker.FAILED}),
    StatusMarker.SUCCEEDED: frozenset(),
    StatusMarker.FAILED: frozenset(),
}


class StatusAnnotator:
    """Tracks and mutates the single visible marker on one message."""

    def __init__(self, platform: ChatPlatform, channel_id, message_id):
        self.platform = platform
        self.channel_id = channel_id
        self.message_id = message_id
        self.current: StatusMarker | None = None
        self.markerless = False

    @property
    def is_terminal(self) -> bool:
        return self.current is not None and self.current.is_terminal

    async def start(self, marker: StatusMarker) -> None:
        """Add the first marker to an unannotated message.

        Raises:
            AnnotationFailure: The annotator was already started, `marker` is
                not an initial marker, or the platform call failed.
        """
        if self.current is not None or self.markerless:
            raise AnnotationFailure(
                f"[{self.message_id}] annotation already started ({self.current})"
            )
        if marker not in INITIAL_MARKERS:
            raise AnnotationFailure(f"[{self.message_id}] {marker.name} is not an initial marker")

        try:
            await self.platform.add_marker(self.channel_id, self.message_id, marker.emoji)
        except Exception as exc:
            raise AnnotationFailure(
                f"[{self.message_id}] failed to add {marker.name}: {exc}"
            ) from exc

        self.current = marker

    async def swap(self, marker: StatusMarker) -> None:
        """Replace the visible marker with `marker` in two steps.

        Raises:
            AnnotationFailure: Illegal transition, removal failure (state kept),
                or addition failure (state becomes markerless).
        """
        previous = self.current
        if previous is None:
            state = "markerless" if self.markerless else "unannotated"
            raise AnnotationFailure(f"[{self.message_id}] cannot swap from {state} message")
        if marker not in TRANSITIONS[previous]:
            raise AnnotationFailure(
                f"[{self.message_id}] illegal transition {previous.name} -> {marker.name}"
            )

        try:
            await self.platform.remove_marker(self.channel_id, self.message_id, previous.emoji)
        except Exception as exc:
            raise AnnotationFailure(
                f"[{self.message_id}] failed to remove {previous.name}: {exc}"
            ) from exc

        self.current = None
        self.markerless = True

        try:
            await self.platform.add_marker(self.channel_id, self.message_id, marker.emoji)
        except Exception as exc:
            logger.warning("[%s] Message left without marker after removing %s",
                           self.message_id, previous.name)
            raise AnnotationFailure(
                f"[{self.message_id}] removed {previous.name} but failed to add {marker.name}: {exc}"
            ) from exc

        self.current = marker
        self.markerless = False
