"""Summarize old conversation turns and truncate oversized queries."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from chaincord.core.config import BotConfig, get_config
from chaincord.core.exceptions import SummarizationError, classify_failure
from chaincord.logic.tokens import (
    TokenEstimator,
    extract_text_content,
    get_default_estimator,
)
from chaincord.services.http import wait_before_retry
from chaincord.services.llm import LLM_CALL_EXCEPTIONS, complete

logger = logging.getLogger(__name__)

Message = dict[str, Any]
CompletionFn = Callable[..., Awaitable[str]]

SUMMARY_TEMPLATE = "[Summary of earlier conversation: {summary}]"
TRUNCATION_MARKER = "... (truncated)"
# Extra characters held back when truncating, on top of the marker.
TRUNCATION_BUFFER_CHARS = len(TRUNCATION_MARKER) + 10
MAX_BACKOFF_SECONDS = 30.0

SUMMARIZER_SYSTEM_PROMPT = (
    "You are an expert conversation summarizer. Condense the conversation "
    "excerpt you are given so that an assistant can continue it without the "
    "original text. Preserve decisions that were made, technical details "
    "such as names, numbers, code and commands, and the chronological order "
    "of the discussion. Keep the summary under 200 words and write it as "
    "plain prose."
)


@dataclass(slots=True)
class ConversationPair:
    """A user message and the assistant reply that directly answers it."""

    user_message: Message
    assistant_message: Message
    original_tokens: int


@dataclass(slots=True)
class SummaryResult:
    """System message that replaces summarized pairs, with token accounting."""

    summary_message: Message
    original_tokens: int
    summary_tokens: int

    @property
    def tokens_saved(self) -> int:
        """Tokens removed from the context by this summary."""
        return self.original_tokens - self.summary_tokens


class Summarizer(Protocol):
    """Produces one summary message for a batch of pairs."""

    async def summarize_pairs(
        self,
        pairs: Sequence[ConversationPair],
        *,
        config: BotConfig | None = None,
    ) -> SummaryResult: ...


def identify_conversation_pairs(
    messages: Sequence[Message],
    estimator: TokenEstimator | None = None,
) -> list[ConversationPair]:
    """Pair each user message with the assistant message that follows it.

    ``messages`` must be chronological. System messages are ignored, and a
    user message superseded by another user message before any assistant
    reply stays unpaired.
    """
    estimator = estimator or get_default_estimator()
    pairs: list[ConversationPair] = []
    pending_user: Message | None = None

    for message in messages:
        role = message.get("role")
        if role == "user":
            pending_user = message
        elif role == "assistant" and pending_user is not None:
            pairs.append(
                ConversationPair(
                    user_message=pending_user,
                    assistant_message=message,
                    original_tokens=estimator.estimate_messages(
                        [pending_user, message],
                    ),
                ),
            )
            pending_user = None

    return pairs


def _transcript_text(message: Message) -> str:
    content = message.get("content")
    if not isinstance(content, list):
        return extract_text_content(message)
    parts: list[str] = []
    for part in content:
        if not isinstance(part, Mapping):
            continue
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            parts.append(str(part["text"]))
        elif part.get("type") == "image_url":
            parts.append("[Image attachment]")
    return " ".join(parts)


def render_transcript(pairs: Sequence[ConversationPair]) -> str:
    """Render pairs as a plain "User:/Assistant:" transcript."""
    return "\n\n".join(
        f"User: {_transcript_text(pair.user_message)}\n\n"
        f"Assistant: {_transcript_text(pair.assistant_message)}"
        for pair in pairs
    )


def truncate_query(
    query: str,
    max_tokens: int,
    estimator: TokenEstimator | None = None,
) -> str:
    """Shorten ``query`` to roughly ``max_tokens`` tokens.

    The cut lands on the last space when one exists in the second half of
    the kept text, and the truncation marker is appended. When the budget
    cannot even hold the marker, the marker alone is returned.
    """
    estimator = estimator or get_default_estimator()
    query_tokens = estimator.estimate_text(query)
    if query_tokens <= max_tokens or not query:
        return query

    logger.info(
        "Truncating query from %d tokens to fit %d token limit",
        query_tokens,
        max_tokens,
    )

    tokens_per_char = query_tokens / len(query)
    target_chars = int(max(max_tokens, 0) / tokens_per_char)
    if target_chars <= TRUNCATION_BUFFER_CHARS:
        return TRUNCATION_MARKER

    target_chars -= TRUNCATION_BUFFER_CHARS
    if target_chars >= len(query):
        return query

    truncated = query[:target_chars]
    last_space = truncated.rfind(" ")
    if last_space > target_chars // 2:
        truncated = truncated[:last_space]
    return truncated + TRUNCATION_MARKER


def _retry_response(error: BaseException) -> httpx.Response | None:
    response = getattr(error, "response", None)
    return response if isinstance(response, httpx.Response) else None


class ContextSummarizer:
    """Summarizes conversation pairs with an LLM, retrying transient errors."""

    def __init__(
        self,
        *,
        config_provider: Callable[[], BotConfig] = get_config,
        estimator: TokenEstimator | None = None,
        completion_fn: CompletionFn = complete,
    ) -> None:
        """Create a summarizer.

        Args:
            config_provider: Returns the config snapshot for each call
            estimator: Token estimator used for the accounting in results
            completion_fn: Coroutine returning the model's text completion

        """
        self._config_provider = config_provider
        self._estimator = estimator
        self._completion_fn = completion_fn

    @property
    def estimator(self) -> TokenEstimator:
        """The estimator in use (default one when none was injected)."""
        return self._estimator or get_default_estimator()

    async def summarize_pairs(
        self,
        pairs: Sequence[ConversationPair],
        *,
        config: BotConfig | None = None,
    ) -> SummaryResult:
        """Return one system message summarizing ``pairs``.

        ``config`` is the snapshot of the turn being processed; the provider
        is consulted only when it is omitted.

        Raises:
            ValueError: ``pairs`` is empty.
            SummarizationError: The model failed with a non-transient error
                or kept failing for every allowed attempt.

        """
        if not pairs:
            message = "no conversation pairs provided for summarization"
            raise ValueError(message)

        if config is None:
            config = self._config_provider()
        settings = config.context
        original_tokens = sum(pair.original_tokens for pair in pairs)
        request = [
            {"role": "system", "content": SUMMARIZER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    "Summarize this conversation excerpt:\n\n"
                    f"{render_transcript(pairs)}"
                ),
            },
        ]

        logger.info(
            "Summarizing %d conversation pairs (%d tokens) using %s",
            len(pairs),
            original_tokens,
            settings.summarizer_model,
        )
        summary_text = await self._complete_with_retries(request, config)

        summary_message = {
            "role": "system",
            "content": SUMMARY_TEMPLATE.format(summary=summary_text),
        }
        summary_tokens = self.estimator.estimate_messages([summary_message])
        logger.info(
            "Summarization complete: %d original tokens -> %d summary tokens",
            original_tokens,
            summary_tokens,
        )
        return SummaryResult(
            summary_message=summary_message,
            original_tokens=original_tokens,
            summary_tokens=summary_tokens,
        )

    async def _complete_with_retries(
        self,
        request: list[Message],
        config: BotConfig,
    ) -> str:
        settings = config.context
        attempts = settings.max_attempts
        for attempt in range(attempts):
            try:
                return await self._completion_fn(
                    settings.summarizer_model,
                    request,
                    config=config,
                    timeout=settings.summarize_timeout_seconds,
                )
            except LLM_CALL_EXCEPTIONS as exc:
                kind = classify_failure(exc)
                if not kind.is_transient or attempt + 1 >= attempts:
                    raise SummarizationError(kind, attempt + 1, exc) from exc
                logger.warning(
                    "Summarizer call failed (%s), retrying (%d/%d): %s",
                    kind.value,
                    attempt + 1,
                    attempts,
                    exc,
                )
                await wait_before_retry(
                    attempt,
                    response=_retry_response(exc),
                    base_delay=settings.base_retry_delay_seconds,
                    max_backoff_seconds=MAX_BACKOFF_SECONDS,
                )

        message = "summarizer retry loop exited without a result"
        raise RuntimeError(message)
