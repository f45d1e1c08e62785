"""Data types for generation logic."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import discord
import httpx

from chaincord.core.config import BotConfig
from chaincord.core.models import MsgNode
from chaincord.logic.chain import DurableNodeStore
from chaincord.services.llm import StreamChunk, stream_completion
from chaincord.services.node_store import NodeStore


class StreamFn(Protocol):
    """Streams completion chunks for ``model``."""

    def __call__(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        config: BotConfig,
    ) -> AsyncGenerator[StreamChunk, None]: ...


@dataclass(slots=True)
class GenerationContext:
    """Inputs required to generate an LLM response."""

    new_msg: discord.Message
    processing_msg: discord.Message
    node_store: NodeStore
    node_db: DurableNodeStore
    messages: list[dict[str, Any]]
    warnings: list[str]
    model: str
    config: BotConfig
    stream_fn: StreamFn = stream_completion
    retry_callback: Callable[[], Awaitable[None]] | None = None
    httpx_client: httpx.AsyncClient | None = None
    search_result_count: int = 0


@dataclass(slots=True)
class GeneratedImage:
    """Image produced by the model during streaming."""

    data: bytes
    mime_type: str
    filename: str


@dataclass(slots=True)
class GenerationState:
    """Mutable state for one response, shared across a fallback restart."""

    response_msgs: list[discord.Message]
    response_nodes: list[MsgNode]
    response_contents: list[str]
    embed: discord.Embed
    model: str
    input_tokens: int
    max_message_length: int
    deadline: float
    last_edit_time: float = 0.0
    content_received: bool = False
    fallback_used: bool = False
    usage_total_tokens: int | None = None
    generated_images: list[GeneratedImage] = field(default_factory=list)


@dataclass(slots=True)
class StreamEditDecision:
    """How to render the current message after new content arrived."""

    start_next_msg: bool
