"""Discord message processing helpers."""

import logging
from contextlib import suppress

import discord
import httpx

from chaincord import globals as app_globals
from chaincord.core.error_handling import COMMON_HANDLER_EXCEPTIONS, log_exception
from chaincord.discord.ui.utils import build_error_embed
from chaincord.logic.permissions import is_addressed_to_bot
from chaincord.logic.pipeline import ProcessContext, process_message

logger = logging.getLogger(__name__)

PROCESSING_ERRORS = (
    *COMMON_HANDLER_EXCEPTIONS,
    discord.DiscordException,
    httpx.HTTPError,
)


async def _process_user_message(
    new_msg: discord.Message,
    context: ProcessContext,
) -> None:
    """Run the pipeline for one message; failures reach the user as an embed."""
    try:
        await process_message(new_msg, context)
    except PROCESSING_ERRORS as exc:
        log_exception(
            logger=logger,
            message="Error processing message",
            error=exc,
            context={"message_id": new_msg.id, "user_id": new_msg.author.id},
        )
        with suppress(discord.HTTPException):
            await new_msg.reply(
                embed=build_error_embed(
                    "An internal error occurred while processing your request. "
                    "Please try again later.",
                ),
            )


def enqueue_message(new_msg: discord.Message) -> bool:
    """Hand an addressed message to the worker pool.

    Returns False when the message is ignored or dropped because the pool
    is saturated or not running.
    """
    runtime = app_globals.runtime
    if runtime.worker_pool is None or runtime.process_context is None:
        return False

    config = runtime.process_context.config_provider()
    if not is_addressed_to_bot(
        new_msg,
        app_globals.discord_bot.user,
        allow_dms=config.allow_dms,
    ):
        return False

    context = runtime.process_context

    async def job() -> None:
        await _process_user_message(new_msg, context)

    return runtime.worker_pool.submit(job, description=f"message {new_msg.id}")
