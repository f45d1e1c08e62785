"""Core LLM service operations."""

import itertools
import logging
import threading
from collections.abc import Iterator
from typing import Any

from chaincord.core.config import BotConfig
from chaincord.services.llm.types import LiteLLMOptions

logger = logging.getLogger(__name__)

# Providers litellm understands natively via a "provider/" model prefix.
NATIVE_PREFIX_PROVIDERS = frozenset(
    {"anthropic", "gemini", "groq", "mistral", "openai", "openrouter", "xai"},
)


def build_litellm_model_name(provider: str, model: str) -> str:
    """Build the LiteLLM model name with proper provider prefix.

    Args:
        provider: Provider name (e.g., "gemini", "openai")
        model: Model name without the provider prefix

    Returns:
        LiteLLM-compatible model string (e.g., "gemini/gemini-2.5-flash").
        OpenAI-compatible servers get the bare name plus a base_url.

    """
    if provider == "x-ai":
        return f"xai/{model}"
    if provider in NATIVE_PREFIX_PROVIDERS:
        return f"{provider}/{model}"
    return f"openai/{model}"


def split_model_name(model: str) -> tuple[str, str]:
    """Split ``provider/model`` into its two parts."""
    if "/" not in model:
        return "openai", model
    provider, _, name = model.partition("/")
    return provider, name


class ApiKeyRotator:
    """Round-robin over each provider's configured keys, in memory."""

    def __init__(self) -> None:
        """Create an empty rotator."""
        self._cycles: dict[tuple[str, tuple[str, ...]], Iterator[str]] = {}
        self._lock = threading.Lock()

    def next_key(self, provider: str, keys: tuple[str, ...]) -> str | None:
        """Return the next key for ``provider`` or None if it has none."""
        if not keys:
            return None
        with self._lock:
            cycle = self._cycles.get((provider, keys))
            if cycle is None:
                cycle = itertools.cycle(keys)
                self._cycles[(provider, keys)] = cycle
            return next(cycle)


_KEY_ROTATOR = ApiKeyRotator()


def prepare_litellm_kwargs(
    model: str,
    messages: list[dict[str, Any]],
    *,
    config: BotConfig,
    options: LiteLLMOptions | None = None,
) -> dict[str, Any]:
    """Prepare kwargs for ``litellm.acompletion()`` from the config snapshot.

    Args:
        model: ``provider/model`` name as written in config.yaml
        messages: OpenAI-style message dicts in chronological order
        config: Snapshot providing provider keys, base URLs and parameters
        options: Optional overrides for streaming, headers and timeout

    Returns:
        Dict of kwargs ready to pass to litellm.acompletion()

    """
    options = options or LiteLLMOptions()
    provider, model_name = split_model_name(model)
    provider_settings = config.providers.get(provider)

    kwargs: dict[str, Any] = {
        "model": build_litellm_model_name(provider, model_name),
        "messages": messages,
    }

    if provider_settings is not None:
        api_key = _KEY_ROTATOR.next_key(provider, provider_settings.api_keys)
        if api_key:
            kwargs["api_key"] = api_key
        if provider_settings.base_url:
            kwargs["base_url"] = provider_settings.base_url
        if provider_settings.extra_headers:
            kwargs["extra_headers"] = dict(provider_settings.extra_headers)

    if options.base_url:
        kwargs["base_url"] = options.base_url
    if options.stream:
        kwargs["stream"] = True
    if options.timeout is not None:
        kwargs["timeout"] = options.timeout

    parameters = options.model_parameters
    if parameters is None:
        parameters = config.model_settings(model).parameters
    kwargs.update(parameters)

    if options.extra_headers:
        kwargs["extra_headers"] = {
            **kwargs.get("extra_headers", {}),
            **options.extra_headers,
        }

    return kwargs
