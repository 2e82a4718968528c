"""Data contracts shared by the parser, correlator, client, and engine.

Architectural role:
    Defines the platform-neutral message and reaction views produced by chat
    adapters, the `GenerationRequest` built for one accepted trigger, and the
    tagged `GenerationResult` variants returned by the generation client.

Lifetime:
    A `GenerationRequest` is created once per accepted trigger and discarded
    after delivery completes or fails. Only `duration` changes after creation,
    and only once.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChatMessage:
    """Minimal view of a chat message.

    Attributes:
        id: Platform message id.
        channel_id: Channel the message lives in.
        author_id: Author identity.
        author_name: Display name used in logs and captions.
        content: Raw message text.
        guild_id: Guild/server id, `None` for direct messages.
        reference_id: Id of the message this one replies to, if any.
    """

    id: int
    channel_id: int
    author_id: int
    author_name: str = ""
    content: str = ""
    guild_id: int | None = None
    reference_id: int | None = None


@dataclass(frozen=True)
class ReactionEvent:
    """A reaction added to a message."""

    user_id: int
    emoji: str
    channel_id: int
    message_id: int
    guild_id: int | None = None


@dataclass(frozen=True)
class GenerationRequest:
    """One prompt to generate, bound to the message that triggered it.

    Every field except `duration` is fixed at creation. `duration` is written
    once by the generation client through `record_duration`; a second write
    raises `ValueError`.

    Attributes:
        id: Identity of the triggering message; also keys scratch files.
        prompt: Trimmed prompt text with its original casing.
        author_id: Requesting user.
        channel_id: Conversation the result is posted to.
        author_name: Display name for logs and captions.
        guild_id: Guild/server id, `None` for direct messages.
        reply_to: Message the result is posted under; defaults to `id`.
        duration: Elapsed seconds of the generation call.
    """

    id: int
    prompt: str
    author_id: int
    channel_id: int
    author_name: str = ""
    guild_id: int | None = None
    reply_to: int | None = None
    duration: float | None = field(default=None, compare=False)

    def __post_init__(self):
        prompt = (self.prompt or "").strip()
        if not prompt:
            raise ValueError("GenerationRequest prompt must not be empty")
        object.__setattr__(self, "prompt", prompt)
        if self.reply_to is None:
            object.__setattr__(self, "reply_to", self.id)

    def record_duration(self, seconds: float) -> None:
        if self.duration is not None:
            raise ValueError(f"[{self.id}] duration already recorded")
        object.__setattr__(self, "duration", seconds)


@dataclass
class GenerationResult:
    """Common fields of both provider response shapes."""

    duration: float
    attempts: int


@dataclass
class SingleImageResult(GenerationResult):
    """One image reference: either a URL or the decoded image bytes."""

    url: str | None = None
    data: bytes | None = None


@dataclass
class FragmentResult(GenerationResult):
    """Ordered base64 fragments that still need compositing."""

    fragments: list[str] = field(default_factory=list)
