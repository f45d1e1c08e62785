"""Entrypoint module for initializing services."""

import asyncio
import contextlib
import importlib
import logging

import discord
import httpx

from chaincord.core.config import get_config
from chaincord.discord.workers import WorkerPool
from chaincord.globals import discord_bot, httpx_client, runtime
from chaincord.logic.content import DiscordMessageProcessor
from chaincord.logic.context_manager import ContextManager
from chaincord.logic.pipeline import ProcessContext
from chaincord.logic.tokens import preload_estimator
from chaincord.services.database import DATABASE_ERRORS, init_node_db
from chaincord.services.node_store import NodeStore

logger = logging.getLogger(__name__)

SHUTDOWN_ERRORS = (OSError, RuntimeError, discord.DiscordException, httpx.HTTPError)


async def shutdown() -> None:
    """Best-effort shutdown of long-lived resources.

    This is safe to call multiple times.
    """
    if runtime.worker_pool is not None:
        await runtime.worker_pool.shutdown()
        runtime.worker_pool = None

    if not discord_bot.is_closed():
        with contextlib.suppress(*SHUTDOWN_ERRORS):
            await discord_bot.close()
            # Give discord.py keep-alive threads time to exit before the loop closes.
            await asyncio.sleep(0.25)

    with contextlib.suppress(*SHUTDOWN_ERRORS):
        await httpx_client.aclose()

    if runtime.node_db is not None:
        with contextlib.suppress(*DATABASE_ERRORS, OSError):
            await runtime.node_db.aclose()
        runtime.node_db = None


async def main() -> None:
    """Initialize dependencies and run the bot until it stops."""
    config = get_config()
    logging.getLogger().setLevel(config.log_level)

    importlib.import_module("chaincord.discord.events")

    await asyncio.to_thread(preload_estimator)
    runtime.node_db = await init_node_db(
        config.database_path,
        config.database_url,
        config.database_auth_token,
    )
    runtime.process_context = ProcessContext(
        discord_bot=discord_bot,
        httpx_client=httpx_client,
        node_store=NodeStore(config.max_message_nodes),
        node_db=runtime.node_db,
        processor=DiscordMessageProcessor(
            discord_bot=discord_bot,
            httpx_client=httpx_client,
        ),
        context_manager=ContextManager(),
    )
    runtime.worker_pool = WorkerPool(config.worker_count, config.queue_size)
    runtime.worker_pool.start()

    try:
        await discord_bot.start(config.bot_token)
    finally:
        # Ctrl+C typically cancels the main task; shield shutdown so Discord closes
        # before the event loop is closed.
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.shield(shutdown())
