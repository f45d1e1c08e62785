"""LLM service entrypoints and exports."""

from chaincord.services.llm.client import (
    LLM_CALL_EXCEPTIONS,
    complete,
    stream_completion,
)
from chaincord.services.llm.core import (
    build_litellm_model_name,
    prepare_litellm_kwargs,
    split_model_name,
)
from chaincord.services.llm.types import LiteLLMOptions, StreamChunk

__all__ = [
    "LLM_CALL_EXCEPTIONS",
    "LiteLLMOptions",
    "StreamChunk",
    "build_litellm_model_name",
    "complete",
    "prepare_litellm_kwargs",
    "split_model_name",
    "stream_completion",
]
