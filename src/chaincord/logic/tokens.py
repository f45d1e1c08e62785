"""Token estimation for conversation budgets.

The default estimator counts tokens exactly with tiktoken's ``o200k_base``
encoding. :class:`CharacterEstimator` is the cheap four-characters-per-token
heuristic; it is used when the encoding cannot be loaded and is the
deterministic choice for tests. Either can be installed process-wide with
:func:`set_default_estimator` or passed explicitly to the context manager.
"""

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

import tiktoken

logger = logging.getLogger(__name__)

ENCODING_NAME = "o200k_base"
CHARS_PER_TOKEN = 4
# Characters added per message by the heuristic, covering role and framing.
MESSAGE_OVERHEAD_CHARS = 20
# Tokens added per message by the exact estimator for role and framing.
MESSAGE_OVERHEAD_TOKENS = 4

Message = Mapping[str, object]


class TokenEstimator(Protocol):
    """Anything that can price messages and text in model tokens."""

    def estimate_messages(self, messages: Sequence[Message]) -> int: ...

    def estimate_text(self, text: str) -> int: ...


def _iter_text_parts(content: object) -> Iterable[str]:
    if isinstance(content, str):
        yield content
        return
    if not isinstance(content, list):
        return
    for part in content:
        if isinstance(part, Mapping) and part.get("type") == "text":
            text = part.get("text")
            if isinstance(text, str):
                yield text


def extract_text_content(message: Message) -> str:
    """Return the textual content of a message, joining multimodal parts."""
    return "\n".join(_iter_text_parts(message.get("content")))


class CharacterEstimator:
    """Four characters per token plus a fixed per-message overhead."""

    def estimate_text(self, text: str) -> int:
        """Estimate tokens in ``text``."""
        return len(text) // CHARS_PER_TOKEN

    def estimate_messages(self, messages: Sequence[Message]) -> int:
        """Estimate tokens in a message list."""
        total_chars = sum(
            len(text)
            for message in messages
            for text in _iter_text_parts(message.get("content"))
        )
        total_chars += len(messages) * MESSAGE_OVERHEAD_CHARS
        return total_chars // CHARS_PER_TOKEN


class TiktokenEstimator:
    """Exact token counts using a tiktoken encoding."""

    def __init__(self, encoding: tiktoken.Encoding) -> None:
        """Wrap a loaded encoding."""
        self.encoding = encoding

    def estimate_text(self, text: str) -> int:
        """Count tokens in ``text``."""
        # disallowed_special=() keeps user text like "<|endoftext|>" countable
        return len(self.encoding.encode(text, disallowed_special=()))

    def estimate_messages(self, messages: Sequence[Message]) -> int:
        """Count text-part tokens, role tokens and framing per message."""
        total_tokens = 0
        for message in messages:
            for text in _iter_text_parts(message.get("content")):
                total_tokens += self.estimate_text(text)
            role = message.get("role")
            if isinstance(role, str):
                total_tokens += self.estimate_text(role)
            total_tokens += MESSAGE_OVERHEAD_TOKENS
        return total_tokens


class _EstimatorState:
    def __init__(self) -> None:
        self.estimator: TokenEstimator | None = None
        self.lock = threading.Lock()


_STATE = _EstimatorState()


def load_tiktoken_estimator() -> TokenEstimator:
    """Load the tiktoken encoding, degrading to the character heuristic."""
    try:
        encoding = tiktoken.get_encoding(ENCODING_NAME)
    except (KeyError, OSError, RuntimeError, ValueError) as exc:
        logger.warning(
            "Failed to load tiktoken encoding %s, using character estimate: %s",
            ENCODING_NAME,
            exc,
        )
        return CharacterEstimator()
    return TiktokenEstimator(encoding)


def preload_estimator() -> TokenEstimator:
    """Load the default estimator now instead of on the first message."""
    return get_default_estimator()


def get_default_estimator() -> TokenEstimator:
    """Return the process-wide estimator, loading tiktoken on first use."""
    estimator = _STATE.estimator
    if estimator is not None:
        return estimator
    with _STATE.lock:
        if _STATE.estimator is None:
            _STATE.estimator = load_tiktoken_estimator()
        return _STATE.estimator


def set_default_estimator(estimator: TokenEstimator | None) -> None:
    """Replace the process-wide estimator (None reloads tiktoken lazily)."""
    with _STATE.lock:
        _STATE.estimator = estimator


def count_conversation_tokens(messages: Sequence[Message]) -> int:
    """Count tokens in a whole conversation with the default estimator."""
    return get_default_estimator().estimate_messages(messages)


def count_text_tokens(text: str) -> int:
    """Count tokens in a text string with the default estimator."""
    return get_default_estimator().estimate_text(text)
