from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from chaincord.core.config import (
    BotConfig,
    ConfigFileEmptyError,
    ConfigStore,
    ContextSettings,
    InvalidConfigError,
    load_config_file,
)
from chaincord.core.config.constants import (
    DEFAULT_MAX_MESSAGES,
    DEFAULT_TOKEN_LIMIT,
    DEFAULT_TRIGGER_THRESHOLD,
)


def test_from_mapping_fills_defaults() -> None:
    config = BotConfig.from_mapping({"bot_token": "abc"})

    assert config.bot_token == "abc"
    assert config.max_messages == DEFAULT_MAX_MESSAGES
    assert config.context.enabled is True
    assert config.context.trigger_threshold == DEFAULT_TRIGGER_THRESHOLD
    assert config.model_token_limit("unknown/model") == DEFAULT_TOKEN_LIMIT


def test_from_mapping_reads_models_and_providers() -> None:
    config = BotConfig.from_mapping(
        {
            "default_model": "openai/gpt-4o",
            "fallback_model": "gemini/gemini-2.5-flash",
            "providers": {"openai": {"api_key": "sk-1", "base_url": "https://x"}},
            "models": {
                "openai/gpt-4o": {"token_limit": 64000, "temperature": 0.2},
                "gemini/gemini-2.5-flash": None,
            },
            "logging": {"log_level": "debug"},
        },
    )

    assert config.default_model == "openai/gpt-4o"
    assert config.fallback_model == "gemini/gemini-2.5-flash"
    assert config.model_token_limit("openai/gpt-4o") == 64000
    assert dict(config.model_settings("openai/gpt-4o").parameters) == {
        "temperature": 0.2,
    }
    provider, settings = config.provider_for("openai/gpt-4o")
    assert provider == "openai"
    assert settings.api_keys == ("sk-1",)
    assert settings.base_url == "https://x"
    assert config.log_level == "DEBUG"


def test_unknown_default_model_uses_first_configured() -> None:
    config = BotConfig.from_mapping(
        {
            "default_model": "missing/model",
            "models": {"anthropic/claude-sonnet-4": {}},
        },
    )

    assert config.default_model == "anthropic/claude-sonnet-4"


def test_context_threshold_above_one_is_rejected() -> None:
    with pytest.raises(InvalidConfigError, match="trigger_threshold"):
        ContextSettings.from_mapping({"trigger_threshold": 1.5})


def test_context_invalid_values_fall_back_to_defaults() -> None:
    settings = ContextSettings.from_mapping(
        {
            "trigger_threshold": -1,
            "max_pairs_per_batch": 0,
            "min_unsummarized_pairs": -3,
            "max_attempts": "many",
        },
    )

    assert settings == ContextSettings()


def test_non_mapping_provider_is_rejected() -> None:
    with pytest.raises(InvalidConfigError, match="Provider 'openai'"):
        BotConfig.from_mapping({"providers": {"openai": ["not", "a", "mapping"]}})


def test_snapshot_is_immutable() -> None:
    config = BotConfig.from_mapping({"models": {"openai/gpt-4o": {}}})

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.max_messages = 3  # type: ignore[misc]
    with pytest.raises(TypeError):
        config.models["other"] = None  # type: ignore[index]


def test_store_swap_replaces_whole_snapshot(
    make_config,
) -> None:
    first = make_config(max_messages=5)
    second = make_config(max_messages=7)
    store = ConfigStore(snapshot=first)

    held = store.current()
    assert store.swap(second) is first

    assert held.max_messages == 5
    assert store.current().max_messages == 7


def test_load_config_file_parses_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "bot_token: xyz\n"
        "max_messages: 10\n"
        "context:\n"
        "  trigger_threshold: 0.5\n"
        "  min_unsummarized_pairs: 2\n",
        encoding="utf-8",
    )

    config = load_config_file(path)

    assert config.bot_token == "xyz"
    assert config.max_messages == 10
    assert config.context.trigger_threshold == 0.5
    assert config.context.min_unsummarized_pairs == 2


def test_load_config_file_rejects_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    with pytest.raises(ConfigFileEmptyError):
        load_config_file(path)


def test_store_reload_reads_from_working_directory(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    (tmp_path / "config.yaml").write_text("bot_token: from-file\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    store = ConfigStore()

    assert store.current().bot_token == "from-file"
    assert store.refresh_if_changed() is store.current()
