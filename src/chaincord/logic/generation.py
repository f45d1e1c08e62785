"""Stream an LLM response into one or more Discord messages."""

import asyncio
import base64
import logging
from collections.abc import AsyncGenerator, Iterator
from contextlib import aclosing
from typing import Any

import discord

from chaincord.core.config import MAX_MESSAGE_LENGTH, STREAMING_INDICATOR
from chaincord.core.error_handling import log_exception
from chaincord.core.exceptions import (
    FailureKind,
    ResponseTimeoutError,
    StreamFailureError,
    _raise_empty_response,
    classify_failure,
)
from chaincord.core.models import MsgNode
from chaincord.logic.discord_ui import (
    ReplyHelper,
    add_warning_field,
    build_response_embed,
    maybe_edit_stream_message,
    render_stream_error,
    update_response_view,
)
from chaincord.logic.generation_types import (
    GeneratedImage,
    GenerationContext,
    GenerationState,
    StreamEditDecision,
)
from chaincord.logic.tokens import count_conversation_tokens
from chaincord.services.llm import LLM_CALL_EXCEPTIONS, StreamChunk

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "⚠️ Fallback to {model} (original model failed)"
IMAGE_EXTENSIONS = {
    "image/gif": "gif",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


async def _initialize_generation_state(
    *,
    context: GenerationContext,
) -> GenerationState:
    state = GenerationState(
        response_msgs=[],
        response_nodes=[],
        response_contents=[],
        embed=build_response_embed(context.warnings),
        model=context.model,
        input_tokens=count_conversation_tokens(context.messages),
        max_message_length=MAX_MESSAGE_LENGTH - len(STREAMING_INDICATOR),
        deadline=asyncio.get_running_loop().time()
        + context.config.response_timeout_seconds,
    )
    await _track_response_message(
        context=context,
        state=state,
        response_msg=context.processing_msg,
    )
    return state


async def _track_response_message(
    *,
    context: GenerationContext,
    state: GenerationState,
    response_msg: discord.Message,
) -> None:
    """Cache a locked node for a response message until the response ends."""
    node = MsgNode(role="assistant")
    node.set_parent(context.new_msg)
    await node.lock.acquire()
    state.response_msgs.append(response_msg)
    state.response_nodes.append(node)
    await context.node_store.set(response_msg.id, node)


def _release_response_locks(state: GenerationState) -> None:
    for node in state.response_nodes:
        if node.lock.locked():
            node.lock.release()


def _append_stream_content(
    *,
    response_contents: list[str],
    delta_content: str,
    max_message_length: int,
) -> Iterator[StreamEditDecision]:
    """Append ``delta_content``, opening new messages at the length limit.

    One decision is yielded per message the delta touches. The next piece is
    only appended once the caller has rendered the previous decision.
    """
    remaining = delta_content
    while remaining:
        start_next_msg = (
            not response_contents
            or len(response_contents[-1]) >= max_message_length
        )
        if start_next_msg:
            response_contents.append("")

        room = max_message_length - len(response_contents[-1])
        response_contents[-1] += remaining[:room]
        remaining = remaining[room:]
        yield StreamEditDecision(start_next_msg=start_next_msg)


def _append_generated_image(state: GenerationState, chunk: StreamChunk) -> None:
    if chunk.image_data is None:
        return
    mime_type = chunk.image_mime_type or "image/png"
    extension = IMAGE_EXTENSIONS.get(mime_type, "png")
    state.generated_images.append(
        GeneratedImage(
            data=chunk.image_data,
            mime_type=mime_type,
            filename=f"generated_{len(state.generated_images) + 1}.{extension}",
        ),
    )


async def _iter_with_watchdog(
    stream: AsyncGenerator[StreamChunk, None],
    *,
    state: GenerationState,
    timeout_seconds: float,
) -> AsyncGenerator[StreamChunk, None]:
    """Yield chunks, failing if no content arrives before ``state.deadline``."""
    loop = asyncio.get_running_loop()
    while True:
        if state.content_received:
            try:
                chunk = await stream.__anext__()
            except StopAsyncIteration:
                return
        else:
            remaining = max(state.deadline - loop.time(), 0)
            try:
                async with asyncio.timeout(remaining) as watchdog:
                    chunk = await stream.__anext__()
            except StopAsyncIteration:
                return
            except TimeoutError as exc:
                if watchdog.expired():
                    raise ResponseTimeoutError(timeout_seconds=timeout_seconds) from exc
                raise
        yield chunk


async def _stream_response(
    *,
    context: GenerationContext,
    state: GenerationState,
    model: str,
    reply_helper: ReplyHelper,
) -> None:
    received_content = False
    async with (
        context.new_msg.channel.typing(),
        aclosing(
            context.stream_fn(model, context.messages, config=context.config),
        ) as stream,
    ):
        async for chunk in _iter_with_watchdog(
            stream,
            state=state,
            timeout_seconds=context.config.response_timeout_seconds,
        ):
            if chunk.image_data is not None:
                _append_generated_image(state, chunk)
            if chunk.usage_total_tokens:
                state.usage_total_tokens = chunk.usage_total_tokens
            if not chunk.content:
                continue

            received_content = True
            state.content_received = True
            for decision in _append_stream_content(
                response_contents=state.response_contents,
                delta_content=chunk.content,
                max_message_length=state.max_message_length,
            ):
                await maybe_edit_stream_message(
                    state=state,
                    reply_helper=reply_helper,
                    decision=decision,
                )

    if received_content:
        return
    if state.generated_images and not state.response_contents:
        # An image-only answer still needs a message to carry the files.
        state.content_received = True
        state.response_contents.append("")
        return
    _raise_empty_response()


def _can_fall_back(
    *,
    context: GenerationContext,
    state: GenerationState,
    model: str,
    kind: FailureKind,
    error: BaseException,
) -> bool:
    fallback_model = context.config.fallback_model
    return (
        not state.fallback_used
        and bool(fallback_model)
        and fallback_model != model
        and kind.allows_fallback
        and not isinstance(error, ResponseTimeoutError)
    )


async def _run_generation_loop(
    *,
    context: GenerationContext,
    state: GenerationState,
) -> bool:
    """Stream until success or a terminal failure; at most one fallback."""

    async def reply_helper(**reply_kwargs: Any) -> None:  # noqa: ANN401
        reply_target = state.response_msgs[-1] if state.response_msgs else context.new_msg
        response_msg = await reply_target.reply(**reply_kwargs)
        await _track_response_message(
            context=context,
            state=state,
            response_msg=response_msg,
        )

    model = context.model
    while True:
        try:
            await _stream_response(
                context=context,
                state=state,
                model=model,
                reply_helper=reply_helper,
            )
        except LLM_CALL_EXCEPTIONS as exc:
            kind = classify_failure(exc)
            if _can_fall_back(
                context=context,
                state=state,
                model=model,
                kind=kind,
                error=exc,
            ):
                fallback_model = str(context.config.fallback_model)
                logger.warning(
                    "Stream from %s failed (%s), falling back to %s: %s",
                    model,
                    kind.value,
                    fallback_model,
                    exc,
                )
                state.fallback_used = True
                model = state.model = fallback_model
                add_warning_field(state, FALLBACK_WARNING.format(model=fallback_model))
                continue

            failure = (
                exc
                if isinstance(exc, StreamFailureError)
                else StreamFailureError(kind, model, exc)
            )
            log_exception(
                logger=logger,
                message="Response stream failed",
                error=exc,
                context={
                    "model": model,
                    "kind": kind.value,
                    "message_id": context.new_msg.id,
                    "fallback_used": state.fallback_used,
                },
            )
            await render_stream_error(
                state=state,
                reply_helper=reply_helper,
                error=failure,
            )
            return False
        else:
            return True


def _complete_response_nodes(
    state: GenerationState,
    full_response: str,
) -> list[tuple[int, MsgNode]]:
    """Fill every response node (locks held) and copy them out for storage."""
    generated_images = [
        {
            "filename": image.filename,
            "mime_type": image.mime_type,
            "data": base64.b64encode(image.data).decode("ascii"),
        }
        for image in state.generated_images
    ]
    snapshots: list[tuple[int, MsgNode]] = []
    for response_msg, node in zip(state.response_msgs, state.response_nodes, strict=True):
        node.text = full_response
        node.generated_images = list(generated_images)
        snapshots.append((response_msg.id, node.snapshot()))
    return snapshots


async def generate_response(context: GenerationContext) -> bool:
    """Stream the reply to ``context.new_msg`` and persist the result.

    Returns True when the response completed, False when a terminal error
    was shown to the user instead.
    """
    state = await _initialize_generation_state(context=context)
    snapshots: list[tuple[int, MsgNode]] = []
    try:
        completed = await _run_generation_loop(context=context, state=state)
        if completed:
            full_response = "".join(state.response_contents)
            await update_response_view(
                context=context,
                state=state,
                full_response=full_response,
            )
            snapshots = _complete_response_nodes(state, full_response)
    finally:
        _release_response_locks(state)

    for msg_id, snapshot in snapshots:
        await context.node_db.asave_node(msg_id, snapshot)
    if completed:
        logger.info(
            "Response to %s completed with %s in %d message(s)",
            context.new_msg.id,
            state.model,
            len(state.response_msgs),
        )
    return completed
