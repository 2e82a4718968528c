import asyncio
import dataclasses
import io
import os

import pytest
from PIL import Image

from disce.core.engine import BotEngine
from disce.core.errors import GenerationFailure
from disce.core.request_types import ChatMessage, FragmentResult, ReactionEvent, SingleImageResult
from disce.image.compositor import ImageCompositor
from disce.status.annotator import StatusMarker

from conftest import BOT_ID, USER_ID, make_fragment


CHANNEL = 7


class FakeClient:
    """Generation client stand-in returning a fixed outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        request.record_duration(2.5)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def fragments_result():
    return FragmentResult(duration=2.5, attempts=2, fragments=[make_fragment()] * 4)


def command(content="/dalle A Red Fox", id=100, author_id=USER_ID):
    return ChatMessage(
        id=id, channel_id=CHANNEL, guild_id=3, author_id=author_id,
        author_name="alice", content=content,
    )


def make_engine(config, platform, outcome):
    client = FakeClient(outcome)
    engine = BotEngine(
        config=config,
        platform=platform,
        client=client,
        compositor=ImageCompositor(config.scratch_dir, quality=config.jpeg_quality),
        bot_user_id=BOT_ID,
    )
    return engine, client


def marker_trace(platform, message_id):
    return [(kind, emoji) for kind, mid, *rest in platform.calls
            if kind in ("add", "remove") and mid == message_id
            for emoji in rest]


def test_command_runs_full_lifecycle(config, platform):
    engine, client = make_engine(config, platform, fragments_result())
    message = platform.add(command())

    asyncio.run(engine.process_message(message))

    assert [r.prompt for r in client.requests] == ["A Red Fox"]
    assert marker_trace(platform, 100) == [
        ("add", StatusMarker.QUEUED.emoji),
        ("remove", StatusMarker.QUEUED.emoji),
        ("add", StatusMarker.WORKING.emoji),
        ("remove", StatusMarker.WORKING.emoji),
        ("add", StatusMarker.PREPARING.emoji),
        ("remove", StatusMarker.PREPARING.emoji),
        ("add", StatusMarker.SUCCEEDED.emoji),
    ]
    assert platform.markers[100] == [StatusMarker.SUCCEEDED.emoji]

    [sent] = platform.sent
    assert sent["reply_to"] == 100
    assert sent["filename"] == "100.jpg"
    assert sent["text"] == "*A Red Fox* (2.5s)"
    assert Image.open(io.BytesIO(sent["data"])).format == "JPEG"
    assert os.listdir(config.scratch_dir) == []
    assert not engine.is_in_flight(100)


def test_help_makes_no_generation_call_and_no_markers(config, platform):
    engine, client = make_engine(config, platform, fragments_result())

    asyncio.run(engine.process_message(platform.add(command("/dalle HELP"))))

    assert client.requests == []
    assert platform.markers == {}
    [sent] = platform.sent
    assert "Usage" in sent["text"]
    assert sent["reply_to"] == 100


@pytest.mark.parametrize("message", [
    command("just chatting"),
    command("/dalle a cat", author_id=BOT_ID),
])
def test_ignored_messages_touch_nothing(config, platform, message):
    engine, client = make_engine(config, platform, fragments_result())

    asyncio.run(engine.process_message(message))

    assert client.requests == []
    assert platform.calls == []
    assert platform.sent == []


def test_generation_failure_marks_failed_and_replies(config, platform):
    failure = GenerationFailure("Failed to get images for request", duration=12.0, attempts=5)
    engine, _ = make_engine(config, platform, failure)

    asyncio.run(engine.process_message(platform.add(command())))

    assert platform.markers[100] == [StatusMarker.FAILED.emoji]
    [sent] = platform.sent
    assert "Failed to generate *A Red Fox*" in sent["text"]
    assert "5 attempt(s)" in sent["text"]
    assert "data" not in sent


def test_composition_failure_marks_failed_and_cleans_scratch(config, platform):
    broken = FragmentResult(duration=1.0, attempts=1, fragments=[make_fragment(), "%%%"])
    engine, _ = make_engine(config, platform, broken)

    asyncio.run(engine.process_message(platform.add(command())))

    assert platform.markers[100] == [StatusMarker.FAILED.emoji]
    assert [s.get("data") for s in platform.sent] == [None]
    assert os.listdir(config.scratch_dir) == []


def test_url_result_is_posted_as_text(config, platform):
    result = SingleImageResult(duration=3.0, attempts=1, url="https://img/fox.png")
    engine, _ = make_engine(config, platform, result)

    asyncio.run(engine.process_message(platform.add(command())))

    [sent] = platform.sent
    assert sent["text"] == "*A Red Fox* (2.5s)\nhttps://img/fox.png"
    assert platform.markers[100] == [StatusMarker.SUCCEEDED.emoji]


def test_special_user_caption(config, platform):
    special = dataclasses.replace(config, special_user_id=USER_ID, special_user_text="For you:")
    engine, _ = make_engine(special, platform, fragments_result())

    asyncio.run(engine.process_message(platform.add(command())))

    assert platform.sent[0]["text"] == "For you: *A Red Fox* (2.5s)"


def test_annotation_failure_at_start_aborts_before_generation(config, platform):
    engine, client = make_engine(config, platform, fragments_result())
    platform.fail_add.add(StatusMarker.QUEUED.emoji)

    asyncio.run(engine.process_message(platform.add(command())))

    assert client.requests == []
    assert platform.sent == []


def test_annotation_failure_after_delivery_keeps_result(config, platform):
    engine, _ = make_engine(config, platform, fragments_result())
    platform.fail_add.add(StatusMarker.SUCCEEDED.emoji)

    asyncio.run(engine.process_message(platform.add(command())))

    assert len(platform.sent) == 1
    assert platform.markers[100] == []


def test_message_with_pipeline_in_flight_is_not_processed_again(config, platform):
    engine, client = make_engine(config, platform, fragments_result())
    engine._in_flight.add(100)

    asyncio.run(engine.process_message(platform.add(command())))

    assert client.requests == []
    assert platform.calls == []


# =========================================================
# REGENERATE
# =========================================================

def seed_chain(platform):
    platform.add(command("/dalle A Red Fox", id=100))
    return platform.add(ChatMessage(
        id=200, channel_id=CHANNEL, guild_id=3, author_id=BOT_ID,
        content="*A Red Fox*", reference_id=100,
    ))


def test_retry_reaction_regenerates_under_an_acknowledgement(config, platform):
    seed_chain(platform)
    engine, client = make_engine(config, platform, fragments_result())
    event = ReactionEvent(user_id=USER_ID, emoji=config.retry_emoji,
                          channel_id=CHANNEL, message_id=200, guild_id=3)

    asyncio.run(engine.process_reaction(event))

    assert [r.prompt for r in client.requests] == ["A Red Fox"]
    ack, result = platform.sent
    assert ack["reply_to"] == 200
    assert ack["text"] == "Regenerating *A Red Fox*"
    ack_id = ack["message"].id
    assert result["reply_to"] == ack_id
    assert result["filename"] == "200.jpg"

    assert marker_trace(platform, ack_id)[0] == ("add", StatusMarker.WORKING.emoji)
    assert platform.markers[ack_id] == [StatusMarker.SUCCEEDED.emoji]
    assert 200 not in platform.markers


def test_regenerated_reply_can_be_regenerated_again(config, platform):
    seed_chain(platform)
    engine, client = make_engine(config, platform, fragments_result())

    first = ReactionEvent(USER_ID, config.retry_emoji, CHANNEL, 200, 3)
    asyncio.run(engine.process_reaction(first))
    second_target = platform.sent[-1]["message"].id
    asyncio.run(engine.process_reaction(ReactionEvent(USER_ID, config.retry_emoji, CHANNEL, second_target, 3)))

    assert [r.prompt for r in client.requests] == ["A Red Fox", "A Red Fox"]


def test_retry_reaction_on_help_reply_touches_nothing(config, platform):
    engine, client = make_engine(config, platform, fragments_result())
    asyncio.run(engine.process_message(platform.add(command("/dalle help"))))
    [help_reply] = platform.sent

    asyncio.run(engine.process_reaction(ReactionEvent(
        USER_ID, config.retry_emoji, CHANNEL, help_reply["message"].id, 3
    )))

    assert client.requests == []
    assert platform.markers == {}
    assert len(platform.sent) == 1


def test_other_reactions_are_ignored(config, platform):
    seed_chain(platform)
    engine, client = make_engine(config, platform, fragments_result())

    asyncio.run(engine.process_reaction(
        ReactionEvent(USER_ID, "\N{THUMBS UP SIGN}", CHANNEL, 200, 3)
    ))

    assert client.requests == []
    assert platform.sent == []
