"""Keep a conversation inside the target model's token budget.

Over-budget conversations are shrunk in two stages. Old user/assistant
pairs are summarized first, oldest batch at a time, with each summary taking
the place of the pairs it replaces. If that is not enough, or the summarizer
fails, the newest user message is truncated.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from chaincord.core.config import BotConfig, get_config
from chaincord.core.exceptions import ContextBudgetError, SummarizationError
from chaincord.logic.summarizer import (
    TRUNCATION_MARKER,
    ContextSummarizer,
    ConversationPair,
    Summarizer,
    identify_conversation_pairs,
    truncate_query,
)
from chaincord.logic.tokens import (
    TokenEstimator,
    extract_text_content,
    get_default_estimator,
)

logger = logging.getLogger(__name__)

Message = dict[str, Any]


@dataclass(slots=True)
class ManageContextResult:
    """Messages to send plus what was done to make them fit."""

    messages: list[Message]
    tokens_used: int
    was_summarized: bool = False
    was_truncated: bool = False
    summaries_count: int = 0
    pairs_summarized: int = 0


def context_warnings(result: ManageContextResult) -> list[str]:
    """User-facing warnings describing how the context was reduced."""
    warnings: list[str] = []
    if result.was_summarized:
        warnings.append(
            f"📝 Summarized {result.pairs_summarized} conversation pairs "
            "to fit within token limit",
        )
    if result.was_truncated:
        warnings.append("✂️ Latest message truncated to fit within token limit")
    return warnings


def _replace_pairs(
    conversation: list[Message],
    pairs: Sequence[ConversationPair],
    summary_message: Message,
) -> list[Message]:
    """Swap ``pairs`` for ``summary_message`` at the first pair's position."""
    replaced_ids = {
        id(message)
        for pair in pairs
        for message in (pair.user_message, pair.assistant_message)
    }
    result: list[Message] = []
    inserted = False
    for message in conversation:
        if id(message) in replaced_ids:
            if not inserted:
                result.append(summary_message)
                inserted = True
            continue
        result.append(message)
    return result


def _with_text(message: Message, text: str) -> Message:
    """Copy ``message`` with its text replaced and any image parts kept."""
    content = message.get("content")
    if isinstance(content, list):
        images = [
            part
            for part in content
            if isinstance(part, dict) and part.get("type") != "text"
        ]
        return {**message, "content": [{"type": "text", "text": text}, *images]}
    return {**message, "content": text}


class ContextManager:
    """Summarizes and truncates conversations that exceed their budget."""

    def __init__(
        self,
        *,
        summarizer: Summarizer | None = None,
        estimator: TokenEstimator | None = None,
        config_provider: Callable[[], BotConfig] = get_config,
    ) -> None:
        """Create a context manager.

        Args:
            summarizer: Produces summaries for batches of pairs
            estimator: Token estimator; the process default when omitted
            config_provider: Returns the config snapshot for each call

        """
        self._config_provider = config_provider
        self._estimator = estimator
        self._summarizer = summarizer or ContextSummarizer(
            config_provider=config_provider,
            estimator=estimator,
        )

    @property
    def estimator(self) -> TokenEstimator:
        """The estimator in use (default one when none was injected)."""
        return self._estimator or get_default_estimator()

    async def manage_context(
        self,
        messages: Sequence[Message],
        model_name: str,
        *,
        config: BotConfig | None = None,
    ) -> ManageContextResult:
        """Fit chronological ``messages`` into the budget of ``model_name``.

        Pass the ``config`` snapshot the caller already holds so one turn
        never mixes two configurations.

        Raises:
            ContextBudgetError: The system messages alone use up the budget.

        """
        if config is None:
            config = self._config_provider()
        settings = config.context
        estimator = self.estimator
        messages = list(messages)
        total_tokens = estimator.estimate_messages(messages)

        if not settings.enabled:
            return ManageContextResult(messages=messages, tokens_used=total_tokens)

        token_limit = config.model_token_limit(model_name)
        trigger_limit = int(token_limit * settings.trigger_threshold)
        if total_tokens <= trigger_limit:
            return ManageContextResult(messages=messages, tokens_used=total_tokens)

        logger.info(
            "Context for %s is %d tokens, over the %d token trigger (limit %d)",
            model_name,
            total_tokens,
            trigger_limit,
            token_limit,
        )

        system_messages = [m for m in messages if m.get("role") == "system"]
        conversation = [m for m in messages if m.get("role") != "system"]
        system_tokens = (
            estimator.estimate_messages(system_messages) if system_messages else 0
        )
        available = trigger_limit - system_tokens
        if available <= 0:
            message = (
                f"System messages use {system_tokens} tokens, leaving no room "
                f"within the {trigger_limit} token budget of {model_name}"
            )
            raise ContextBudgetError(message)

        result = ManageContextResult(messages=messages, tokens_used=total_tokens)
        conversation = await self._summarize_until_fits(
            conversation,
            available,
            settings.max_pairs_per_batch,
            settings.min_unsummarized_pairs,
            result,
            config,
        )

        if estimator.estimate_messages(conversation) > available:
            conversation = self._truncate_latest_user_message(
                conversation,
                available,
                result,
            )

        result.messages = [*system_messages, *conversation]
        result.tokens_used = estimator.estimate_messages(result.messages)
        logger.info(
            "Context managed for %s: %d -> %d tokens "
            "(summaries=%d, truncated=%s)",
            model_name,
            total_tokens,
            result.tokens_used,
            result.summaries_count,
            result.was_truncated,
        )
        return result

    async def _summarize_until_fits(
        self,
        conversation: list[Message],
        available: int,
        max_pairs_per_batch: int,
        min_unsummarized_pairs: int,
        result: ManageContextResult,
        config: BotConfig,
    ) -> list[Message]:
        estimator = self.estimator
        while estimator.estimate_messages(conversation) > available:
            pairs = identify_conversation_pairs(conversation, estimator)
            eligible = len(pairs) - min_unsummarized_pairs
            if eligible <= 0:
                logger.debug(
                    "No pairs left to summarize (%d pairs, floor %d)",
                    len(pairs),
                    min_unsummarized_pairs,
                )
                break

            batch = pairs[: min(max_pairs_per_batch, eligible)]
            try:
                summary = await self._summarizer.summarize_pairs(batch, config=config)
            except SummarizationError as exc:
                logger.warning(
                    "Summarization failed, falling back to truncation: %s",
                    exc,
                )
                break

            conversation = _replace_pairs(conversation, batch, summary.summary_message)
            result.was_summarized = True
            result.summaries_count += 1
            result.pairs_summarized += len(batch)
            logger.info(
                "Summarized %d pairs, saving %d tokens",
                len(batch),
                summary.tokens_saved,
            )
        return conversation

    def _truncate_latest_user_message(
        self,
        conversation: list[Message],
        available: int,
        result: ManageContextResult,
    ) -> list[Message]:
        estimator = self.estimator
        last_user_index = next(
            (
                index
                for index in range(len(conversation) - 1, -1, -1)
                if conversation[index].get("role") == "user"
            ),
            None,
        )
        if last_user_index is None:
            logger.warning("Context is over budget but has no user message to truncate")
            return conversation

        last_message = conversation[last_user_index]
        others = conversation[:last_user_index] + conversation[last_user_index + 1 :]
        framing = estimator.estimate_messages([_with_text(last_message, "")])
        available_for_last = available - framing
        if others:
            available_for_last -= estimator.estimate_messages(others)

        original_text = extract_text_content(last_message)
        if available_for_last <= 0:
            truncated_text = TRUNCATION_MARKER
        else:
            truncated_text = truncate_query(original_text, available_for_last, estimator)

        if len(truncated_text) >= len(original_text):
            logger.warning(
                "Latest user message (%d characters) cannot be shortened, "
                "context stays over budget",
                len(original_text),
            )
            return conversation

        truncated = list(conversation)
        truncated[last_user_index] = _with_text(last_message, truncated_text)
        result.was_truncated = True
        logger.info(
            "Truncated latest user message from %d to %d characters",
            len(original_text),
            len(truncated_text),
        )
        return truncated
