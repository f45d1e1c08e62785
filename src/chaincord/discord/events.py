"""Discord event handlers for chaincord."""

import logging

import discord

from chaincord.core.config import get_config
from chaincord.core.error_handling import log_discord_event_error
from chaincord.discord.processing import enqueue_message
from chaincord.globals import discord_bot

logger = logging.getLogger(__name__)


@discord_bot.event
async def on_ready() -> None:
    """Log readiness and the invite URL, then show the status message."""
    if not discord_bot.user:
        return

    client_id = discord_bot.user.id
    invite_url = (
        "https://discord.com/oauth2/authorize?client_id="
        f"{client_id}&permissions=412317191168&scope=bot"
    )
    logger.info("\n\nBOT INVITE URL:\n%s\n", invite_url)

    await discord_bot.change_presence(
        activity=discord.CustomActivity(name=get_config().status_message),
    )


@discord_bot.event
async def on_message(new_msg: discord.Message) -> None:
    """Queue inbound messages addressed to the bot."""
    enqueue_message(new_msg)


@discord_bot.event
async def on_error(event_method: str, *args: object, **kwargs: object) -> None:
    """Handle uncaught Discord event exceptions in one place."""
    log_discord_event_error(
        logger=logger,
        event_name=event_method,
        args=args,
        kwargs=kwargs,
    )
