import base64
import io
import itertools

import pytest
from PIL import Image

from disce.config import BotConfig
from disce.core.errors import MarkerNotFound
from disce.core.request_types import ChatMessage


BOT_ID = 1
USER_ID = 42


class FakePlatform:
    """In-memory chat platform recording every call."""

    def __init__(self, bot_id=BOT_ID):
        self.bot_id = bot_id
        self.messages: dict[int, ChatMessage] = {}
        self.markers: dict[int, list[str]] = {}
        self.sent: list[dict] = []
        self.calls: list[tuple] = []
        self.fail_add: set[str] = set()
        self.fail_fetch: set[int] = set()
        self._ids = itertools.count(9000)

    def add(self, message: ChatMessage) -> ChatMessage:
        self.messages[message.id] = message
        return message

    async def fetch_message(self, channel_id, message_id):
        self.calls.append(("fetch", message_id))
        if message_id in self.fail_fetch or message_id not in self.messages:
            raise LookupError(f"unknown message {message_id}")
        return self.messages[message_id]

    def _post(self, channel_id, text, reply_to, **extra):
        message = self.add(ChatMessage(
            id=next(self._ids),
            channel_id=channel_id,
            author_id=self.bot_id,
            author_name="DISC-E",
            content=text,
            reference_id=reply_to,
        ))
        self.sent.append({"message": message, "text": text, "reply_to": reply_to, **extra})
        return message

    async def send_text(self, channel_id, text, reply_to=None):
        return self._post(channel_id, text, reply_to)

    async def send_image(self, channel_id, text, filename, data, reply_to=None):
        return self._post(channel_id, text, reply_to, filename=filename, data=data)

    async def add_marker(self, channel_id, message_id, emoji):
        self.calls.append(("add", message_id, emoji))
        if emoji in self.fail_add:
            raise RuntimeError(f"cannot add {emoji}")
        self.markers.setdefault(message_id, []).append(emoji)

    async def remove_marker(self, channel_id, message_id, emoji):
        self.calls.append(("remove", message_id, emoji))
        present = self.markers.get(message_id, [])
        if emoji not in present:
            raise MarkerNotFound(f"{emoji} not on {message_id}")
        present.remove(emoji)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """`requests.Session` stand-in; replays responses or raises exceptions."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StepClock:
    """Monotonic clock advancing by `step` seconds per reading."""

    def __init__(self, step=1.0):
        self.step = step
        self.now = 0.0

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def make_fragment(color=(255, 0, 0), size=(32, 32), fmt="JPEG") -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def config(tmp_path):
    return BotConfig(
        provider="dalle_mini",
        max_attempts=5,
        generation_timeout=None,
        scratch_dir=str(tmp_path / "scratch"),
    )


@pytest.fixture
def platform():
    return FakePlatform()
