"""Configuration loading and constants for chaincord.

This package exposes the split configuration modules as a single interface.
"""

from chaincord.core.config.constants import (
    EDIT_DELAY_SECONDS,
    EMBED_COLOR_COMPLETE,
    EMBED_COLOR_ERROR,
    EMBED_COLOR_INCOMPLETE,
    EMBED_FIELD_NAME_LIMIT,
    MAX_EMBED_FIELDS,
    MAX_MESSAGE_LENGTH,
    MAX_MESSAGE_NODES,
    PROCESSING_MESSAGE,
    PROVIDERS_SUPPORTING_USERNAMES,
    STREAMING_INDICATOR,
    VISION_MODEL_TAGS,
)
from chaincord.core.config.manager import (
    CONFIG_CACHE_TTL,
    ConfigFileEmptyError,
    ConfigFileNotFoundError,
    ConfigStore,
    get_config,
    get_config_store,
    load_config_file,
)
from chaincord.core.config.settings import (
    BotConfig,
    ContextSettings,
    InvalidConfigError,
    ModelSettings,
    ProviderSettings,
)
from chaincord.core.config.utils import ensure_list

__all__ = [
    "CONFIG_CACHE_TTL",
    "EDIT_DELAY_SECONDS",
    "EMBED_COLOR_COMPLETE",
    "EMBED_COLOR_ERROR",
    "EMBED_COLOR_INCOMPLETE",
    "EMBED_FIELD_NAME_LIMIT",
    "MAX_EMBED_FIELDS",
    "MAX_MESSAGE_LENGTH",
    "MAX_MESSAGE_NODES",
    "PROCESSING_MESSAGE",
    "PROVIDERS_SUPPORTING_USERNAMES",
    "STREAMING_INDICATOR",
    "VISION_MODEL_TAGS",
    "BotConfig",
    "ConfigFileEmptyError",
    "ConfigFileNotFoundError",
    "ConfigStore",
    "ContextSettings",
    "InvalidConfigError",
    "ModelSettings",
    "ProviderSettings",
    "ensure_list",
    "get_config",
    "get_config_store",
    "load_config_file",
]
