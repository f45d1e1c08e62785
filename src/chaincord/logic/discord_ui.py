"""Discord rendering for streamed LLM responses."""

import io
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import discord

from chaincord.core.config import (
    EDIT_DELAY_SECONDS,
    EMBED_COLOR_COMPLETE,
    EMBED_COLOR_ERROR,
    EMBED_COLOR_INCOMPLETE,
    EMBED_FIELD_NAME_LIMIT,
    MAX_EMBED_FIELDS,
    STREAMING_INDICATOR,
)
from chaincord.core.exceptions import StreamFailureError
from chaincord.discord.ui import response_view
from chaincord.logic.generation_types import (
    GenerationContext,
    GenerationState,
    StreamEditDecision,
)
from chaincord.logic.tokens import count_text_tokens

logger = logging.getLogger(__name__)

STREAM_ERROR_TITLE = "❌ Stream Error"
EMBED_FIELD_VALUE_LIMIT = 1024

ReplyHelper = Callable[..., Awaitable[None]]


def _now() -> float:
    return datetime.now(timezone.utc).timestamp()


def build_response_embed(warnings: list[str]) -> discord.Embed:
    """Start the shared response embed with one field per warning."""
    embed = discord.Embed()
    for warning in warnings[:MAX_EMBED_FIELDS]:
        embed.add_field(name=warning[:EMBED_FIELD_NAME_LIMIT], value="", inline=False)
    return embed


def add_warning_field(state: GenerationState, warning: str) -> None:
    """Show ``warning`` on every message rendered from now on."""
    names = {embed_field.name for embed_field in state.embed.fields}
    if warning in names or len(state.embed.fields) >= MAX_EMBED_FIELDS:
        return
    state.embed.add_field(name=warning[:EMBED_FIELD_NAME_LIMIT], value="", inline=False)


def format_footer(
    *,
    model: str,
    tokens_used: int,
    token_limit: int,
    search_result_count: int = 0,
) -> str:
    """Footer for a completed response."""
    footer = f"🤖 Model: {model} • 🧮 {tokens_used:,}/{token_limit:,} tokens"
    if search_result_count:
        footer += f" • 🌐 Web search: {search_result_count} results"
    return footer


async def maybe_edit_stream_message(
    *,
    state: GenerationState,
    reply_helper: ReplyHelper,
    decision: StreamEditDecision,
) -> None:
    """Render the newest content unless the edit throttle says to wait.

    Starting a new message always renders. Before it does, the previous
    message is finalised without the streaming indicator.
    """
    response_contents = state.response_contents
    response_msgs = state.response_msgs
    embed = state.embed

    time_delta = _now() - state.last_edit_time
    ready_to_edit = time_delta >= EDIT_DELAY_SECONDS
    if not (decision.start_next_msg or ready_to_edit):
        return

    msg_index = len(response_contents) - 1
    if decision.start_next_msg and 0 < msg_index <= len(response_msgs):
        embed.description = response_contents[msg_index - 1]
        embed.color = EMBED_COLOR_COMPLETE
        await response_msgs[msg_index - 1].edit(embed=embed, view=None)

    embed.description = response_contents[-1] + STREAMING_INDICATOR
    embed.color = EMBED_COLOR_INCOMPLETE
    if msg_index < len(response_msgs):
        await response_msgs[msg_index].edit(embed=embed, view=None)
    else:
        await reply_helper(embed=embed, silent=True)
    state.last_edit_time = _now()


async def render_stream_error(
    *,
    state: GenerationState,
    reply_helper: ReplyHelper,
    error: StreamFailureError,
) -> None:
    """Replace the streaming indicator with an explicit error.

    Content that already reached the user stays in place. The last message
    is edited when one exists, otherwise a new reply is posted.
    """
    embed = state.embed
    last_content = state.response_contents[-1] if state.response_contents else ""
    embed.description = last_content or STREAM_ERROR_TITLE
    embed.color = EMBED_COLOR_ERROR
    embed.add_field(
        name=STREAM_ERROR_TITLE,
        value=f"{error.model} failed ({error.kind.value}): {error.cause}"[
            :EMBED_FIELD_VALUE_LIMIT
        ],
        inline=False,
    )

    msg_index = max(len(state.response_contents), 1) - 1
    if msg_index < len(state.response_msgs):
        await state.response_msgs[msg_index].edit(embed=embed, view=None)
    else:
        await reply_helper(embed=embed)


async def update_response_view(
    *,
    context: GenerationContext,
    state: GenerationState,
    full_response: str,
) -> None:
    """Final edit of the last message: footer, action buttons and images."""
    if not state.response_msgs or not state.response_contents:
        return

    tokens_used = state.usage_total_tokens or (
        state.input_tokens + count_text_tokens(full_response)
    )
    view = response_view.ResponseView(
        full_response,
        httpx_client=context.httpx_client,
        retry_callback=context.retry_callback,
        user_id=context.new_msg.author.id,
    )

    last_msg_index = len(state.response_contents) - 1
    embed = state.embed
    embed.description = state.response_contents[last_msg_index]
    embed.color = EMBED_COLOR_COMPLETE
    embed.set_footer(
        text=format_footer(
            model=state.model,
            tokens_used=tokens_used,
            token_limit=context.config.model_token_limit(state.model),
            search_result_count=context.search_result_count,
        ),
    )

    edit_kwargs: dict[str, object] = {"embed": embed, "view": view}
    if state.generated_images:
        edit_kwargs["attachments"] = [
            discord.File(io.BytesIO(image.data), filename=image.filename)
            for image in state.generated_images
        ]
    await state.response_msgs[last_msg_index].edit(**edit_kwargs)
