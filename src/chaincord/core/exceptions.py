"""Failure categories and custom exceptions for chaincord."""

import asyncio
import enum
from typing import NoReturn

import httpx
import litellm

EMPTY_RESPONSE_MESSAGE = "Response stream ended with no content"
RESPONSE_TIMEOUT_MESSAGE = "No response received within timeout window"

HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500
HTTP_OVERLOADED = (503, 529)
HTTP_GATEWAY_TIMEOUT = (408, 504)


class FailureKind(enum.Enum):
    """Closed set of reasons an LLM call can fail."""

    TIMEOUT = "timeout"
    OVERLOADED = "overloaded"
    SERVER_ERROR = "server_error"
    RATE_LIMIT = "rate_limit"
    EMPTY_STREAM = "empty_stream"
    OTHER = "other"

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same call later may succeed."""
        return self in {
            FailureKind.TIMEOUT,
            FailureKind.OVERLOADED,
            FailureKind.SERVER_ERROR,
            FailureKind.RATE_LIMIT,
        }

    @property
    def allows_fallback(self) -> bool:
        """Whether a stream that failed this way may switch models once."""
        return self is not FailureKind.OTHER


class EmptyResponseError(RuntimeError):
    """Raised when the response stream ends without content."""


class ResponseTimeoutError(RuntimeError):
    """Raised when no content arrives before the response deadline."""

    def __init__(
        self,
        message: str | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the timeout error with a default message."""
        self.timeout_seconds = timeout_seconds
        if message is None and timeout_seconds is not None:
            message = f"No response received within {timeout_seconds:g} seconds"
        super().__init__(message or RESPONSE_TIMEOUT_MESSAGE)


class StreamFailureError(RuntimeError):
    """A streaming attempt failed; carries the classified kind."""

    def __init__(self, kind: FailureKind, model: str, cause: BaseException) -> None:
        """Wrap ``cause`` for ``model`` as a ``kind`` failure."""
        self.kind = kind
        self.model = model
        self.cause = cause
        super().__init__(f"{model}: {kind.value}: {cause}")


class SummarizationError(RuntimeError):
    """The summarizer model could not produce a summary."""

    def __init__(self, kind: FailureKind, attempts: int, cause: BaseException) -> None:
        """Record how the summarizer failed and after how many attempts."""
        self.kind = kind
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Summarization failed after {attempts} attempt(s) ({kind.value}): {cause}",
        )


class ContextBudgetError(ValueError):
    """System messages alone exceed the model's token budget."""


def _raise_empty_response() -> NoReturn:
    raise EmptyResponseError(EMPTY_RESPONSE_MESSAGE)


# Only used for provider errors that arrive without a usable type or status.
_UNTYPED_ERROR_PATTERNS: tuple[tuple[str, FailureKind], ...] = (
    ("rate limit", FailureKind.RATE_LIMIT),
    ("resource_exhausted", FailureKind.RATE_LIMIT),
    ("overloaded", FailureKind.OVERLOADED),
    ("unavailable", FailureKind.OVERLOADED),
    ("deadline exceeded", FailureKind.TIMEOUT),
    ("timed out", FailureKind.TIMEOUT),
    ("internal error", FailureKind.SERVER_ERROR),
    ("stream ended prematurely", FailureKind.SERVER_ERROR),
)


def _classify_status(status_code: int | None) -> FailureKind | None:
    if status_code is None:
        return None
    if status_code == HTTP_TOO_MANY_REQUESTS:
        return FailureKind.RATE_LIMIT
    if status_code in HTTP_OVERLOADED:
        return FailureKind.OVERLOADED
    if status_code in HTTP_GATEWAY_TIMEOUT:
        return FailureKind.TIMEOUT
    if status_code >= HTTP_SERVER_ERROR:
        return FailureKind.SERVER_ERROR
    return FailureKind.OTHER


def classify_failure(error: BaseException) -> FailureKind:
    """Map an exception raised by an LLM call to a :class:`FailureKind`."""
    if isinstance(error, StreamFailureError):
        return error.kind
    if isinstance(error, EmptyResponseError):
        return FailureKind.EMPTY_STREAM
    if isinstance(
        error,
        ResponseTimeoutError
        | TimeoutError
        | asyncio.TimeoutError
        | litellm.exceptions.Timeout
        | httpx.TimeoutException,
    ):
        return FailureKind.TIMEOUT
    if isinstance(error, litellm.exceptions.RateLimitError):
        return FailureKind.RATE_LIMIT
    if isinstance(error, litellm.exceptions.ServiceUnavailableError):
        return FailureKind.OVERLOADED
    if isinstance(
        error,
        litellm.exceptions.InternalServerError
        | litellm.exceptions.APIConnectionError
        | httpx.TransportError,
    ):
        return FailureKind.SERVER_ERROR
    if isinstance(error, httpx.HTTPStatusError):
        return _classify_status(error.response.status_code) or FailureKind.OTHER

    status_kind = _classify_status(getattr(error, "status_code", None))
    if status_kind is not None and status_kind is not FailureKind.OTHER:
        return status_kind

    error_text = str(error).lower()
    for pattern, kind in _UNTYPED_ERROR_PATTERNS:
        if pattern in error_text:
            return kind
    return FailureKind.OTHER
