"""Data types shared by the LLM client."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class LiteLLMOptions:
    """Optional configuration for building LiteLLM kwargs."""

    base_url: str | None = None
    extra_headers: Mapping[str, str] | None = None
    stream: bool = False
    model_parameters: Mapping[str, Any] | None = None
    timeout: float | None = None


@dataclass(slots=True)
class StreamChunk:
    """One increment of a streamed completion."""

    content: str = ""
    finish_reason: str | None = None
    image_data: bytes | None = None
    image_mime_type: str | None = None
    usage_total_tokens: int | None = None
