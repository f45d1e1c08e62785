from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from chaincord.core.config import (
    EMBED_COLOR_COMPLETE,
    EMBED_COLOR_ERROR,
    MAX_MESSAGE_LENGTH,
    STREAMING_INDICATOR,
    BotConfig,
)
from chaincord.logic import discord_ui
from chaincord.logic.discord_ui import STREAM_ERROR_TITLE
from chaincord.logic.generation import _append_stream_content, generate_response
from chaincord.logic.generation_types import GenerationContext
from chaincord.services.llm import StreamChunk
from chaincord.services.node_store import NodeStore

from ._fakes import FakeBot, FakeChannel, FakeMessage, FakeUser, InMemoryNodeDB

FALLBACK_MODEL = "gemini/gemini-2.5-flash"
FALLBACK_FIELD = f"⚠️ Fallback to {FALLBACK_MODEL} (original model failed)"


class _Overloaded(RuntimeError):
    status_code = 503


class _ScriptedStream:
    """Each call plays the next script: an exception, or chunks and sleeps."""

    def __init__(self, *attempts: BaseException | list[StreamChunk | float]) -> None:
        self.attempts = list(attempts)
        self.models: list[str] = []

    def __call__(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        config: BotConfig,
    ) -> AsyncGenerator[StreamChunk, None]:
        self.models.append(model)
        return self._play(self.attempts.pop(0))

    async def _play(
        self,
        attempt: BaseException | list[StreamChunk | float],
    ) -> AsyncGenerator[StreamChunk, None]:
        if isinstance(attempt, BaseException):
            raise attempt
        for item in attempt:
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            yield item


def _text_chunks(body: str, size: int) -> list[StreamChunk | float]:
    return [StreamChunk(content=body[i : i + size]) for i in range(0, len(body), size)]


class _Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _TickingStream:
    """Streams one chunk per tick, advancing the clock after each one."""

    def __init__(self, clock: _Clock, chunks: list[str], tick: float) -> None:
        self.clock = clock
        self.chunks = chunks
        self.tick = tick

    async def __call__(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        config: BotConfig,
    ) -> AsyncGenerator[StreamChunk, None]:
        for chunk in self.chunks:
            yield StreamChunk(content=chunk)
            self.clock.now += self.tick


def _context(
    config: BotConfig,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
    stream_fn: _ScriptedStream,
    warnings: list[str] | None = None,
) -> GenerationContext:
    bot = FakeBot()
    channel = FakeChannel()
    new_msg = FakeMessage(id=1, content="hi", author=FakeUser(1234), mentions=[bot.user])
    processing_msg = FakeMessage(id=2, content="", author=bot.user)
    channel.add(new_msg, processing_msg)
    return GenerationContext(
        new_msg=new_msg,  # type: ignore[arg-type]
        processing_msg=processing_msg,  # type: ignore[arg-type]
        node_store=node_store,
        node_db=node_db,
        messages=[{"role": "user", "content": "hi"}],
        warnings=warnings or [],
        model=config.default_model,
        config=config,
        stream_fn=stream_fn,
    )


def test_append_splits_at_length_limit() -> None:
    contents: list[str] = []

    decisions = list(
        _append_stream_content(
            response_contents=contents,
            delta_content="a" * 25,
            max_message_length=10,
        ),
    )

    assert [d.start_next_msg for d in decisions] == [True, True, True]
    assert contents == ["a" * 10, "a" * 10, "a" * 5]


def test_append_fills_current_message_first() -> None:
    contents = ["a" * 8]

    decisions = list(
        _append_stream_content(
            response_contents=contents,
            delta_content="b" * 4,
            max_message_length=10,
        ),
    )

    assert [d.start_next_msg for d in decisions] == [False, True]
    assert contents == ["a" * 8 + "bb", "bb"]


@pytest.mark.asyncio
async def test_long_response_is_split_across_messages(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    body = "".join(chr(ord("a") + i % 26) for i in range(9000))
    stream = _ScriptedStream(_text_chunks(body, 1000))
    context = _context(make_config(), node_store, node_db, stream)
    placeholder = context.processing_msg

    assert await generate_response(context) is True

    first_reply = placeholder.replies[0]
    second_reply = first_reply.replies[0]
    response_msgs = [placeholder, first_reply, second_reply]
    finals = [msg.last_description for msg in response_msgs]

    assert "".join(finals) == body
    limit = MAX_MESSAGE_LENGTH - len(STREAMING_INDICATOR)
    assert [len(text) for text in finals] == [limit, limit, 9000 - 2 * limit]
    for msg in response_msgs:
        assert all(len(edit["description"]) <= MAX_MESSAGE_LENGTH for edit in msg.edits)
        assert msg.edits[-1]["color"] == EMBED_COLOR_COMPLETE
    assert second_reply.replies == []
    assert "🤖 Model: openai/gpt-4o" in second_reply.edits[-1]["footer"]
    assert second_reply.edits[-1]["view"] is not None


@pytest.mark.asyncio
async def test_small_chunks_within_edit_delay_only_render_first_and_final(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = _Clock()
    monkeypatch.setattr(discord_ui, "_now", clock)
    stream = _TickingStream(clock, ["a"] * 500, tick=0.0)
    context = _context(make_config(), node_store, node_db, stream)  # type: ignore[arg-type]
    placeholder = context.processing_msg

    assert await generate_response(context) is True

    assert [edit["description"] for edit in placeholder.edits] == [
        "a" + STREAMING_INDICATOR,
        "a" * 500,
    ]
    assert placeholder.edits[-1]["view"] is not None
    assert placeholder.replies == []


@pytest.mark.asyncio
async def test_stream_edits_once_per_edit_delay(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = _Clock()
    monkeypatch.setattr(discord_ui, "_now", clock)
    stream = _TickingStream(clock, ["x"] * 10, tick=0.5)
    context = _context(make_config(), node_store, node_db, stream)  # type: ignore[arg-type]

    await generate_response(context)

    descriptions = [edit["description"] for edit in context.processing_msg.edits]
    assert descriptions == [
        *("x" * count + STREAMING_INDICATOR for count in (1, 3, 5, 7, 9)),
        "x" * 10,
    ]


@pytest.mark.asyncio
async def test_split_inside_edit_delay_still_finalises_and_posts(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = _Clock()
    monkeypatch.setattr(discord_ui, "_now", clock)
    limit = MAX_MESSAGE_LENGTH - len(STREAMING_INDICATOR)
    body = "a" * limit + "b" * (5000 - limit)
    chunks = [body[i : i + 1000] for i in range(0, len(body), 1000)]
    stream = _TickingStream(clock, chunks, tick=0.0)
    context = _context(make_config(), node_store, node_db, stream)  # type: ignore[arg-type]
    placeholder = context.processing_msg

    assert await generate_response(context) is True

    assert [edit["description"] for edit in placeholder.edits] == [
        "a" * 1000 + STREAMING_INDICATOR,
        "a" * limit,
    ]
    assert placeholder.edits[-1]["color"] == EMBED_COLOR_COMPLETE
    assert placeholder.edits[-1]["view"] is None
    assert len(placeholder.replies) == 1
    continuation = placeholder.replies[0]
    assert [edit["description"] for edit in continuation.edits] == [body[limit:]]
    assert continuation.edits[-1]["view"] is not None


@pytest.mark.asyncio
async def test_completed_response_is_cached_and_persisted(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream([StreamChunk(content="Hello "), StreamChunk(content="there")])
    context = _context(make_config(), node_store, node_db, stream)

    await generate_response(context)

    node = await node_store.get(context.processing_msg.id)
    assert node is not None
    assert node.text == "Hello there"
    assert node.role == "assistant"
    assert node.parent_id == context.new_msg.id
    assert not node.lock.locked()
    assert node_db.saves == [context.processing_msg.id]
    assert node_db.records[context.processing_msg.id]["text"] == "Hello there"


@pytest.mark.asyncio
async def test_warnings_are_rendered_as_fields(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream([StreamChunk(content="ok")])
    context = _context(
        make_config(),
        node_store,
        node_db,
        stream,
        warnings=["⚠️ Only using last 3 messages"],
    )

    await generate_response(context)

    assert context.processing_msg.edits[-1]["fields"] == ["⚠️ Only using last 3 messages"]


@pytest.mark.asyncio
async def test_overloaded_model_falls_back_once(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream(_Overloaded("busy"), [StreamChunk(content="from fallback")])
    context = _context(
        make_config(fallback_model=FALLBACK_MODEL),
        node_store,
        node_db,
        stream,
    )

    assert await generate_response(context) is True

    final = context.processing_msg.edits[-1]
    assert stream.models == ["openai/gpt-4o", FALLBACK_MODEL]
    assert final["description"] == "from fallback"
    assert FALLBACK_FIELD in final["fields"]
    assert f"🤖 Model: {FALLBACK_MODEL}" in final["footer"]


@pytest.mark.asyncio
async def test_second_failure_after_fallback_is_terminal(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream(_Overloaded("busy"), _Overloaded("also busy"))
    context = _context(
        make_config(fallback_model=FALLBACK_MODEL),
        node_store,
        node_db,
        stream,
    )

    assert await generate_response(context) is False

    final = context.processing_msg.edits[-1]
    assert stream.models == ["openai/gpt-4o", FALLBACK_MODEL]
    assert final["color"] == EMBED_COLOR_ERROR
    assert final["fields"] == [FALLBACK_FIELD, STREAM_ERROR_TITLE]
    assert not final["description"].endswith(STREAMING_INDICATOR)
    assert node_db.saves == []
    node = await node_store.get(context.processing_msg.id)
    assert node is not None
    assert not node.lock.locked()


@pytest.mark.asyncio
async def test_empty_stream_triggers_fallback(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream(
        [StreamChunk(content="", finish_reason="stop")],
        [StreamChunk(content="second try")],
    )
    context = _context(
        make_config(fallback_model=FALLBACK_MODEL),
        node_store,
        node_db,
        stream,
    )

    assert await generate_response(context) is True
    assert context.processing_msg.last_description == "second try"


@pytest.mark.asyncio
async def test_non_retryable_error_shows_error_without_fallback(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream(ValueError("invalid request"))
    context = _context(
        make_config(fallback_model=FALLBACK_MODEL),
        node_store,
        node_db,
        stream,
    )

    assert await generate_response(context) is False

    final = context.processing_msg.edits[-1]
    assert stream.models == ["openai/gpt-4o"]
    assert final["fields"] == [STREAM_ERROR_TITLE]


@pytest.mark.asyncio
async def test_partial_content_survives_a_stream_error(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    class _BrokenStream(_ScriptedStream):
        async def _play(self, attempt):  # type: ignore[override]
            yield StreamChunk(content="partial answer")
            raise ValueError("connection reset by provider")

    context = _context(make_config(), node_store, node_db, _BrokenStream([]))

    assert await generate_response(context) is False

    final = context.processing_msg.edits[-1]
    assert final["description"] == "partial answer"
    assert final["color"] == EMBED_COLOR_ERROR


@pytest.mark.asyncio
async def test_silent_stream_hits_watchdog_without_fallback(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream([5.0, StreamChunk(content="too late")])
    context = _context(
        make_config(fallback_model=FALLBACK_MODEL, response_timeout_seconds=0.05),
        node_store,
        node_db,
        stream,
    )

    assert await generate_response(context) is False

    final = context.processing_msg.edits[-1]
    assert stream.models == ["openai/gpt-4o"]
    assert final["fields"] == [STREAM_ERROR_TITLE]
    embed = final["embed"]
    assert "(timeout)" in embed.fields[-1].value


@pytest.mark.asyncio
async def test_image_only_response_attaches_files(
    make_config,
    node_store: NodeStore,
    node_db: InMemoryNodeDB,
) -> None:
    stream = _ScriptedStream(
        [StreamChunk(image_data=b"\x89PNG", image_mime_type="image/png")],
    )
    context = _context(make_config(), node_store, node_db, stream)

    assert await generate_response(context) is True

    final = context.processing_msg.edits[-1]
    assert [file.filename for file in final["attachments"]] == ["generated_1.png"]
    record = node_db.records[context.processing_msg.id]
    assert record["generated_images"][0]["filename"] == "generated_1.png"
