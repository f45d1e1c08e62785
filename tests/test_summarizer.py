from __future__ import annotations

from typing import Any

import pytest

from chaincord.core.exceptions import (
    EmptyResponseError,
    FailureKind,
    SummarizationError,
)
from chaincord.logic import summarizer as summarizer_mod
from chaincord.logic.summarizer import (
    TRUNCATION_MARKER,
    ContextSummarizer,
    identify_conversation_pairs,
    render_transcript,
    truncate_query,
)
from chaincord.logic.tokens import CharacterEstimator


class _ScriptedCompletion:
    """Raises the queued errors in order, then returns ``text``."""

    def __init__(self, *errors: BaseException, text: str = "they agreed on X") -> None:
        self.errors = list(errors)
        self.text = text
        self.calls: list[dict[str, Any]] = []

    async def __call__(
        self,
        model: str,
        messages: list[dict[str, Any]],
        **kwargs: Any,
    ) -> str:
        self.calls.append({"model": model, "messages": messages, **kwargs})
        if self.errors:
            raise self.errors.pop(0)
        return self.text


class _RateLimited(RuntimeError):
    status_code = 429


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    attempts: list[int] = []

    async def _fake_wait(attempt: int, **_kwargs: object) -> float:
        attempts.append(attempt)
        return 0.0

    monkeypatch.setattr(summarizer_mod, "wait_before_retry", _fake_wait)
    return attempts


def _pairs(count: int = 2):
    messages = []
    for index in range(count):
        messages.append({"role": "user", "content": f"question {index}"})
        messages.append({"role": "assistant", "content": f"answer {index}"})
    return identify_conversation_pairs(messages, CharacterEstimator())


def test_pairs_skip_system_and_trailing_user() -> None:
    messages = [
        {"role": "system", "content": "be nice"},
        {"role": "user", "content": "u1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "u2"},
        {"role": "assistant", "content": "a2"},
        {"role": "user", "content": "u3"},
    ]

    pairs = identify_conversation_pairs(messages, CharacterEstimator())

    assert [(p.user_message["content"], p.assistant_message["content"]) for p in pairs] == [
        ("u1", "a1"),
        ("u2", "a2"),
    ]
    assert all(pair.original_tokens > 0 for pair in pairs)


def test_superseded_user_message_stays_unpaired() -> None:
    messages = [
        {"role": "user", "content": "first try"},
        {"role": "user", "content": "second try"},
        {"role": "assistant", "content": "reply"},
    ]

    pairs = identify_conversation_pairs(messages, CharacterEstimator())

    assert len(pairs) == 1
    assert pairs[0].user_message["content"] == "second try"


def test_transcript_marks_images() -> None:
    pairs = identify_conversation_pairs(
        [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "what is this?"},
                    {"type": "image_url", "image_url": {"url": "data:x"}},
                ],
            },
            {"role": "assistant", "content": "a cat"},
        ],
        CharacterEstimator(),
    )

    assert render_transcript(pairs) == (
        "User: what is this? [Image attachment]\n\nAssistant: a cat"
    )


def test_truncate_query_keeps_short_text() -> None:
    assert truncate_query("short", 100, CharacterEstimator()) == "short"


def test_truncate_query_cuts_on_word_boundary() -> None:
    query = " ".join(f"word{index}" for index in range(200))

    truncated = truncate_query(query, 50, CharacterEstimator())

    assert truncated.endswith(TRUNCATION_MARKER)
    kept = truncated.removesuffix(TRUNCATION_MARKER)
    assert query.startswith(kept)
    assert not kept.endswith(" ")
    assert query[len(kept)] == " "
    assert len(truncated) < len(query)


def test_truncate_query_with_tiny_budget_returns_marker() -> None:
    assert truncate_query("x" * 400, 3, CharacterEstimator()) == TRUNCATION_MARKER


@pytest.mark.asyncio
async def test_summary_message_wraps_model_output(make_config) -> None:
    completion = _ScriptedCompletion(text="They discussed two questions.")
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(),
        estimator=CharacterEstimator(),
        completion_fn=completion,
    )

    result = await summarizer.summarize_pairs(_pairs())

    assert result.summary_message == {
        "role": "system",
        "content": "[Summary of earlier conversation: They discussed two questions.]",
    }
    assert result.original_tokens > 0
    assert result.tokens_saved == result.original_tokens - result.summary_tokens
    request = completion.calls[0]["messages"]
    assert request[0]["role"] == "system"
    assert "User: question 0\n\nAssistant: answer 0" in request[1]["content"]


@pytest.mark.asyncio
async def test_transient_errors_are_retried(make_config, no_sleep: list[int]) -> None:
    completion = _ScriptedCompletion(_RateLimited("slow down"), TimeoutError())
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(context={"max_attempts": 3}),
        completion_fn=completion,
    )

    result = await summarizer.summarize_pairs(_pairs(1))

    assert len(completion.calls) == 3
    assert no_sleep == [0, 1]
    assert "they agreed on X" in result.summary_message["content"]


@pytest.mark.asyncio
async def test_retries_stop_after_max_attempts(make_config, no_sleep: list[int]) -> None:
    completion = _ScriptedCompletion(*(TimeoutError() for _ in range(5)))
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(context={"max_attempts": 2}),
        completion_fn=completion,
    )

    with pytest.raises(SummarizationError) as exc_info:
        await summarizer.summarize_pairs(_pairs(1))

    assert exc_info.value.kind is FailureKind.TIMEOUT
    assert exc_info.value.attempts == 2
    assert len(completion.calls) == 2


@pytest.mark.asyncio
async def test_non_transient_error_fails_immediately(
    make_config,
    no_sleep: list[int],
) -> None:
    completion = _ScriptedCompletion(ValueError("invalid api key"))
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(),
        completion_fn=completion,
    )

    with pytest.raises(SummarizationError) as exc_info:
        await summarizer.summarize_pairs(_pairs(1))

    assert exc_info.value.kind is FailureKind.OTHER
    assert exc_info.value.attempts == 1
    assert no_sleep == []


@pytest.mark.asyncio
async def test_empty_summary_is_not_retried(
    make_config,
    no_sleep: list[int],
) -> None:
    completion = _ScriptedCompletion(EmptyResponseError("no text"))
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(context={"max_attempts": 3}),
        completion_fn=completion,
    )

    with pytest.raises(SummarizationError) as exc_info:
        await summarizer.summarize_pairs(_pairs(1))

    assert exc_info.value.kind is FailureKind.EMPTY_STREAM
    assert exc_info.value.attempts == 1
    assert len(completion.calls) == 1
    assert no_sleep == []


@pytest.mark.asyncio
async def test_given_config_snapshot_is_used_instead_of_provider(make_config) -> None:
    completion = _ScriptedCompletion(text="short")
    config = make_config(context={"summarizer_model": "ollama/llama3.2"})

    def _reloaded_config() -> Any:
        raise AssertionError("config must not be re-read mid-turn")

    summarizer = ContextSummarizer(
        config_provider=_reloaded_config,
        estimator=CharacterEstimator(),
        completion_fn=completion,
    )

    await summarizer.summarize_pairs(_pairs(1), config=config)

    assert completion.calls[0]["model"] == "ollama/llama3.2"
    assert completion.calls[0]["config"] is config


@pytest.mark.asyncio
async def test_empty_pairs_are_rejected(make_config) -> None:
    summarizer = ContextSummarizer(
        config_provider=lambda: make_config(),
        completion_fn=_ScriptedCompletion(),
    )

    with pytest.raises(ValueError, match="no conversation pairs"):
        await summarizer.summarize_pairs([])
