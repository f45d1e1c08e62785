"""HTTP helper utilities for resilient requests."""

from __future__ import annotations

import asyncio
import email.utils
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
HTTP_TOO_MANY_REQUESTS = 429
_JITTER_RANDOM = secrets.SystemRandom()


def parse_retry_after_seconds(value: str) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or an HTTP date."""
    stripped = value.strip()
    if not stripped:
        return None

    try:
        seconds = float(stripped)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        parsed = email.utils.parsedate_to_datetime(stripped)
    except (TypeError, ValueError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return max((parsed - datetime.now(UTC)).total_seconds(), 0.0)


def backoff_delay(
    attempt: int,
    *,
    base_delay: float = 1.0,
    max_backoff_seconds: float = 30.0,
    jitter: bool = True,
) -> float:
    """Return the exponential delay before retry number ``attempt`` (0-based)."""
    delay = base_delay * (2**attempt)
    if jitter:
        delay += _JITTER_RANDOM.random() * base_delay
    return min(max_backoff_seconds, delay)


async def wait_before_retry(
    attempt: int,
    *,
    response: httpx.Response | None = None,
    base_delay: float = 1.0,
    max_backoff_seconds: float = 30.0,
) -> float:
    """Sleep before a retry and return the delay used.

    If a 429 response includes a `Retry-After` header, respect it.
    """
    retry_after_seconds: float | None = None
    if response is not None and response.status_code == HTTP_TOO_MANY_REQUESTS:
        retry_after_header = response.headers.get("retry-after")
        if isinstance(retry_after_header, str):
            retry_after_seconds = parse_retry_after_seconds(retry_after_header)

    if retry_after_seconds is not None:
        delay = min(retry_after_seconds, max_backoff_seconds)
    else:
        delay = backoff_delay(
            attempt,
            base_delay=base_delay,
            max_backoff_seconds=max_backoff_seconds,
        )

    if delay > 0:
        await asyncio.sleep(delay)
    return delay


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Configuration for HTTP retry behavior."""

    retries: int = 2
    base_delay: float = 0.5
    max_backoff_seconds: float = 8.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES


async def request_with_retries(
    request_factory: Callable[[], Awaitable[httpx.Response]],
    *,
    options: RetryOptions | None = None,
    log_context: str = "",
) -> httpx.Response:
    """Run a request with bounded retries for transient failures."""
    retry_options = options or RetryOptions()
    context_suffix = f" for {log_context}" if log_context else ""

    for attempt in range(retry_options.retries + 1):
        is_last_attempt = attempt >= retry_options.retries
        try:
            response = await request_factory()
        except httpx.TransportError as exc:
            if is_last_attempt:
                raise
            logger.warning(
                "Transient HTTP error%s, retrying (%s/%s): %s",
                context_suffix,
                attempt + 1,
                retry_options.retries,
                exc,
            )
            await wait_before_retry(
                attempt,
                base_delay=retry_options.base_delay,
                max_backoff_seconds=retry_options.max_backoff_seconds,
            )
            continue

        if is_last_attempt or response.status_code not in (
            retry_options.retryable_statuses
        ):
            return response

        logger.warning(
            "Transient HTTP %s%s, retrying (%s/%s)",
            response.status_code,
            context_suffix,
            attempt + 1,
            retry_options.retries,
        )
        await response.aclose()
        await wait_before_retry(
            attempt,
            response=response,
            base_delay=retry_options.base_delay,
            max_backoff_seconds=retry_options.max_backoff_seconds,
        )

    message = "request_with_retries exhausted without a response"
    raise RuntimeError(message)
