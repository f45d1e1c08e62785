from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from chaincord.core.config import BotConfig
from chaincord.logic.tokens import CharacterEstimator, set_default_estimator
from chaincord.services.node_store import NodeStore

from ._fakes import InMemoryNodeDB


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def character_estimator() -> Iterator[CharacterEstimator]:
    estimator = CharacterEstimator()
    set_default_estimator(estimator)
    yield estimator
    set_default_estimator(None)


@pytest.fixture
def node_store() -> NodeStore:
    return NodeStore(max_entries=50)


@pytest.fixture
def node_db() -> InMemoryNodeDB:
    return InMemoryNodeDB()


@pytest.fixture
def make_config() -> Callable[..., BotConfig]:
    def _make(**overrides: Any) -> BotConfig:
        raw: dict[str, Any] = {
            "bot_token": "token",
            "default_model": "openai/gpt-4o",
            "models": {"openai/gpt-4o": {"token_limit": 1000}},
        }
        raw.update(overrides)
        return BotConfig.from_mapping(raw)

    return _make
