"""Immutable configuration snapshot types."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from chaincord.core.config.constants import (
    DEFAULT_MAX_IMAGES,
    DEFAULT_MAX_MESSAGES,
    DEFAULT_MAX_PAIRS_PER_BATCH,
    DEFAULT_MIN_UNSUMMARIZED_PAIRS,
    DEFAULT_MODEL,
    DEFAULT_PARENT_LOOKUP_TIMEOUT,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RESPONSE_TIMEOUT,
    DEFAULT_STATUS_MESSAGE,
    DEFAULT_SUMMARIZER_ATTEMPTS,
    DEFAULT_SUMMARIZER_BASE_DELAY,
    DEFAULT_SUMMARIZER_MODEL,
    DEFAULT_SUMMARIZER_TIMEOUT,
    DEFAULT_TOKEN_LIMIT,
    DEFAULT_TRIGGER_THRESHOLD,
    DEFAULT_WORKER_COUNT,
    MAX_MESSAGE_NODES,
)
from chaincord.core.config.utils import ensure_list, positive_float, positive_int


class InvalidConfigError(ValueError):
    """Raised when a configuration value has the wrong shape."""


@dataclass(frozen=True, slots=True)
class ContextSettings:
    """Settings for token-budget management of long conversations."""

    enabled: bool = True
    trigger_threshold: float = DEFAULT_TRIGGER_THRESHOLD
    summarizer_model: str = DEFAULT_SUMMARIZER_MODEL
    max_pairs_per_batch: int = DEFAULT_MAX_PAIRS_PER_BATCH
    min_unsummarized_pairs: int = DEFAULT_MIN_UNSUMMARIZED_PAIRS
    max_attempts: int = DEFAULT_SUMMARIZER_ATTEMPTS
    base_retry_delay_seconds: float = DEFAULT_SUMMARIZER_BASE_DELAY
    summarize_timeout_seconds: float = DEFAULT_SUMMARIZER_TIMEOUT

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "ContextSettings":
        """Build context settings, falling back to defaults per key."""
        raw = raw or {}
        threshold = positive_float(
            raw.get("trigger_threshold", raw.get("token_threshold")),
            DEFAULT_TRIGGER_THRESHOLD,
        )
        if threshold > 1:
            message = "context.trigger_threshold must be between 0 and 1"
            raise InvalidConfigError(message)

        min_pairs = raw.get("min_unsummarized_pairs", DEFAULT_MIN_UNSUMMARIZED_PAIRS)
        if isinstance(min_pairs, bool) or not isinstance(min_pairs, int) or (
            min_pairs < 0
        ):
            min_pairs = DEFAULT_MIN_UNSUMMARIZED_PAIRS

        return cls(
            enabled=bool(raw.get("enabled", True)),
            trigger_threshold=threshold,
            summarizer_model=str(
                raw.get("summarizer_model") or DEFAULT_SUMMARIZER_MODEL,
            ),
            max_pairs_per_batch=positive_int(
                raw.get("max_pairs_per_batch"),
                DEFAULT_MAX_PAIRS_PER_BATCH,
            ),
            min_unsummarized_pairs=min_pairs,
            max_attempts=positive_int(
                raw.get("max_attempts"),
                DEFAULT_SUMMARIZER_ATTEMPTS,
            ),
            base_retry_delay_seconds=positive_float(
                raw.get("base_retry_delay_seconds"),
                DEFAULT_SUMMARIZER_BASE_DELAY,
            ),
            summarize_timeout_seconds=positive_float(
                raw.get("summarize_timeout_seconds"),
                DEFAULT_SUMMARIZER_TIMEOUT,
            ),
        )


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Connection details for one LLM provider."""

    base_url: str | None = None
    api_keys: tuple[str, ...] = ()
    extra_headers: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}),
    )


@dataclass(frozen=True, slots=True)
class ModelSettings:
    """Per-model limits and request parameters."""

    token_limit: int = DEFAULT_TOKEN_LIMIT
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}),
    )


@dataclass(frozen=True, slots=True)
class BotConfig:
    """Complete, immutable view of config.yaml.

    A snapshot is never mutated after construction. Reloads produce a new
    instance that replaces the old one as a whole.
    """

    bot_token: str = ""
    status_message: str = DEFAULT_STATUS_MESSAGE
    default_model: str = DEFAULT_MODEL
    fallback_model: str | None = None
    system_prompt: str | None = None
    max_images: int = DEFAULT_MAX_IMAGES
    max_messages: int = DEFAULT_MAX_MESSAGES
    max_message_nodes: int = MAX_MESSAGE_NODES
    allow_dms: bool = True
    use_usernames: bool = False
    response_timeout_seconds: float = DEFAULT_RESPONSE_TIMEOUT
    parent_lookup_timeout_seconds: float = DEFAULT_PARENT_LOOKUP_TIMEOUT
    worker_count: int = DEFAULT_WORKER_COUNT
    queue_size: int = DEFAULT_QUEUE_SIZE
    log_level: str = "INFO"
    database_path: str = "chaincord.db"
    database_url: str | None = None
    database_auth_token: str | None = None
    context: ContextSettings = field(default_factory=ContextSettings)
    providers: Mapping[str, ProviderSettings] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    models: Mapping[str, ModelSettings] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    def model_settings(self, model: str) -> ModelSettings:
        """Return settings for ``model`` or defaults when it is unknown."""
        return self.models.get(model) or ModelSettings()

    def model_token_limit(self, model: str) -> int:
        """Return the context window size configured for ``model``."""
        return self.model_settings(model).token_limit

    def provider_for(self, model: str) -> tuple[str, ProviderSettings]:
        """Split ``provider/model`` and return the provider's settings."""
        provider = model.split("/", 1)[0] if "/" in model else "openai"
        return provider, self.providers.get(provider) or ProviderSettings()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "BotConfig":
        """Validate a parsed YAML document and freeze it into a snapshot."""
        if not isinstance(raw, Mapping):
            message = "config.yaml must contain a mapping at the top level"
            raise InvalidConfigError(message)

        providers = {
            str(name): _parse_provider(name, values)
            for name, values in (raw.get("providers") or {}).items()
        }
        models = {
            str(name): _parse_model(name, values)
            for name, values in (raw.get("models") or {}).items()
        }

        default_model = str(raw.get("default_model") or "")
        if default_model not in models:
            default_model = next(iter(models), default_model or DEFAULT_MODEL)

        logging_section = raw.get("logging") or {}
        return cls(
            bot_token=str(raw.get("bot_token") or ""),
            status_message=str(
                raw.get("status_message") or DEFAULT_STATUS_MESSAGE,
            )[:128],
            default_model=default_model,
            fallback_model=raw.get("fallback_model") or None,
            system_prompt=raw.get("system_prompt") or None,
            max_images=_non_negative_int(raw.get("max_images"), DEFAULT_MAX_IMAGES),
            max_messages=positive_int(raw.get("max_messages"), DEFAULT_MAX_MESSAGES),
            max_message_nodes=positive_int(
                raw.get("max_message_nodes"),
                MAX_MESSAGE_NODES,
            ),
            allow_dms=bool(raw.get("allow_dms", True)),
            use_usernames=bool(raw.get("use_usernames", False)),
            response_timeout_seconds=positive_float(
                raw.get("response_timeout_seconds"),
                DEFAULT_RESPONSE_TIMEOUT,
            ),
            parent_lookup_timeout_seconds=positive_float(
                raw.get("parent_lookup_timeout_seconds"),
                DEFAULT_PARENT_LOOKUP_TIMEOUT,
            ),
            worker_count=positive_int(raw.get("worker_count"), DEFAULT_WORKER_COUNT),
            queue_size=positive_int(raw.get("queue_size"), DEFAULT_QUEUE_SIZE),
            log_level=str(logging_section.get("log_level") or "INFO").upper(),
            database_path=str(raw.get("database_path") or "chaincord.db"),
            database_url=raw.get("database_url") or None,
            database_auth_token=raw.get("database_auth_token") or None,
            context=ContextSettings.from_mapping(raw.get("context")),
            providers=MappingProxyType(providers),
            models=MappingProxyType(models),
        )


def _parse_provider(name: object, values: object) -> ProviderSettings:
    values = values or {}
    if not isinstance(values, Mapping):
        message = f"Provider '{name}' must be a mapping of settings."
        raise InvalidConfigError(message)

    keys = [
        key
        for key in ensure_list(values.get("api_keys") or values.get("api_key"))
        if key
    ]
    return ProviderSettings(
        base_url=values.get("base_url") or None,
        api_keys=tuple(keys),
        extra_headers=MappingProxyType(dict(values.get("extra_headers") or {})),
    )


def _parse_model(name: object, values: object) -> ModelSettings:
    values = values or {}
    if not isinstance(values, Mapping):
        message = f"Model '{name}' must be a mapping of parameters."
        raise InvalidConfigError(message)

    values = dict(values)
    token_limit = positive_int(values.pop("token_limit", None), DEFAULT_TOKEN_LIMIT)
    return ModelSettings(
        token_limit=token_limit,
        parameters=MappingProxyType(values),
    )


def _non_negative_int(value: object, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return default
    return value
