"""Streaming and one-shot completion calls through LiteLLM."""

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx
import litellm

from chaincord.core.config import BotConfig
from chaincord.core.exceptions import EmptyResponseError, ResponseTimeoutError
from chaincord.services.llm.core import prepare_litellm_kwargs
from chaincord.services.llm.types import LiteLLMOptions, StreamChunk

logger = logging.getLogger(__name__)

STREAM_REQUEST_TIMEOUT_SECONDS = 60


def _collect_litellm_exceptions() -> tuple[type[Exception], ...]:
    return tuple(
        dict.fromkeys(
            exception_type
            for exception_type in vars(litellm.exceptions).values()
            if isinstance(exception_type, type)
            and issubclass(exception_type, Exception)
        ),
    )


# Everything an LLM call may raise that callers are expected to classify.
LLM_CALL_EXCEPTIONS = (
    EmptyResponseError,
    ResponseTimeoutError,
    asyncio.TimeoutError,
    httpx.HTTPError,
    OSError,
    RuntimeError,
    ValueError,
    *_collect_litellm_exceptions(),
)


def _extract_image(choice: object) -> tuple[bytes | None, str | None]:
    """Pull an inline generated image out of a streamed choice, if any."""
    delta = getattr(choice, "delta", None)
    images = getattr(delta, "images", None) if delta is not None else None
    if not images:
        return None, None

    first = images[0]
    image_url = first.get("image_url") if isinstance(first, Mapping) else None
    url = image_url.get("url") if isinstance(image_url, Mapping) else None
    if not isinstance(url, str) or not url.startswith("data:"):
        return None, None

    header, _, encoded = url.partition(",")
    mime_type = header.removeprefix("data:").split(";", 1)[0] or "image/png"
    try:
        return base64.b64decode(encoded), mime_type
    except (binascii.Error, ValueError):
        logger.warning("Ignoring undecodable generated image payload")
        return None, None


async def stream_completion(
    model: str,
    messages: list[dict[str, Any]],
    *,
    config: BotConfig,
) -> AsyncIterator[StreamChunk]:
    """Yield :class:`StreamChunk` objects for a streamed completion."""
    litellm_kwargs = prepare_litellm_kwargs(
        model,
        messages,
        config=config,
        options=LiteLLMOptions(
            stream=True,
            timeout=STREAM_REQUEST_TIMEOUT_SECONDS,
        ),
    )

    logger.debug("\n--- LLM REQUEST ---")
    logger.debug("Model: %s", litellm_kwargs.get("model"))
    logger.debug("Messages:\n%s", json.dumps(messages, indent=2, default=str))
    logger.debug("-------------------\n")

    stream = await litellm.acompletion(**litellm_kwargs)
    async for chunk in stream:
        choices = getattr(chunk, "choices", None)
        if not choices:
            continue

        choice = choices[0]
        delta = getattr(choice, "delta", None)
        content = (getattr(delta, "content", None) or "") if delta else ""
        image_data, image_mime_type = _extract_image(choice)
        usage = getattr(chunk, "usage", None)

        yield StreamChunk(
            content=content,
            finish_reason=getattr(choice, "finish_reason", None),
            image_data=image_data,
            image_mime_type=image_mime_type,
            usage_total_tokens=getattr(usage, "total_tokens", None),
        )


async def complete(
    model: str,
    messages: list[dict[str, Any]],
    *,
    config: BotConfig,
    timeout: float,
    parameters: Mapping[str, Any] | None = None,
) -> str:
    """Return the text of a non-streamed completion.

    Raises:
        EmptyResponseError: The model answered with no text.

    """
    litellm_kwargs = prepare_litellm_kwargs(
        model,
        messages,
        config=config,
        options=LiteLLMOptions(timeout=timeout, model_parameters=parameters),
    )
    response = await asyncio.wait_for(
        litellm.acompletion(**litellm_kwargs),
        timeout=timeout,
    )

    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    text = (getattr(message, "content", None) or "").strip()
    if not text:
        error_message = f"{model} returned an empty completion"
        raise EmptyResponseError(error_message)
    return text
