"""Message processing orchestration."""

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import discord
import httpx

from chaincord.core.config import (
    EMBED_COLOR_ERROR,
    PROVIDERS_SUPPORTING_USERNAMES,
    VISION_MODEL_TAGS,
    BotConfig,
    get_config,
)
from chaincord.core.exceptions import ContextBudgetError
from chaincord.logic.chain import (
    ChainBuildContext,
    DurableNodeStore,
    build_conversation_chain,
)
from chaincord.logic.content import ChainFlags, MessageProcessor
from chaincord.logic.context_manager import ContextManager, context_warnings
from chaincord.logic.generation import generate_response
from chaincord.logic.generation_types import GenerationContext, StreamFn
from chaincord.logic.permissions import should_process_message
from chaincord.services.llm import stream_completion
from chaincord.services.node_store import NodeStore

logger = logging.getLogger(__name__)

USERNAME_PROMPT_SUFFIX = (
    "\n\nUser's names are their Discord IDs and should be typed as '<@ID>'."
)


@dataclass(slots=True)
class ProcessContext:
    """Long-lived collaborators shared by every processed message."""

    discord_bot: discord.Client
    httpx_client: httpx.AsyncClient
    node_store: NodeStore
    node_db: DurableNodeStore
    processor: MessageProcessor
    context_manager: ContextManager
    config_provider: Callable[[], BotConfig] = get_config
    stream_fn: StreamFn = stream_completion


def get_current_datetime_strings() -> tuple[str, str]:
    """Return ("January 21 2026", "20:00:00 +0800") style strings for now."""
    now = datetime.now().astimezone()
    return now.strftime("%B %d %Y"), now.strftime("%H:%M:%S %Z%z")


def build_system_prompt(system_prompt: str | None, *, accept_usernames: bool) -> str:
    """Fill ``{date}``/``{time}`` placeholders; empty when no prompt is set."""
    if not system_prompt:
        return ""
    date_str, time_str = get_current_datetime_strings()
    prompt = system_prompt.replace("{date}", date_str).replace("{time}", time_str).strip()
    if accept_usernames:
        prompt += USERNAME_PROMPT_SUFFIX
    return prompt


def chain_flags_for(model: str, config: BotConfig) -> ChainFlags:
    """Image and username support for ``model``."""
    lowered = model.lower()
    return ChainFlags(
        accept_images=any(tag in lowered for tag in VISION_MODEL_TAGS),
        accept_usernames=config.use_usernames
        or lowered.startswith(PROVIDERS_SUPPORTING_USERNAMES),
    )


async def process_message(new_msg: discord.Message, context: ProcessContext) -> None:
    """Answer ``new_msg``: build its chain, fit the budget and stream a reply."""
    config = context.config_provider()

    should_process, processing_msg = await should_process_message(
        new_msg,
        context.discord_bot,
        config,
    )
    if not should_process or processing_msg is None:
        return

    model = config.default_model
    flags = chain_flags_for(model, config)
    chain = await build_conversation_chain(
        ChainBuildContext(
            start_msg=new_msg,
            discord_bot=context.discord_bot,
            node_store=context.node_store,
            node_db=context.node_db,
            processor=context.processor,
            flags=flags,
            max_messages=config.max_messages,
            max_images=config.max_images,
            parent_lookup_timeout=config.parent_lookup_timeout_seconds,
        ),
    )
    logger.info(
        "Message received (user ID: %s, attachments: %d, conversation length: %d)",
        new_msg.author.id,
        len(new_msg.attachments),
        len(chain.messages),
    )

    # The chain is newest-first; everything downstream expects chronological.
    messages = list(reversed(chain.messages))
    system_prompt = build_system_prompt(
        config.system_prompt,
        accept_usernames=flags.accept_usernames,
    )
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})

    try:
        managed = await context.context_manager.manage_context(
            messages,
            model,
            config=config,
        )
    except ContextBudgetError as exc:
        logger.warning("Cannot fit request %s into %s: %s", new_msg.id, model, exc)
        await processing_msg.edit(
            embed=discord.Embed(
                title="❌ Context Error",
                description=str(exc),
                color=EMBED_COLOR_ERROR,
            ),
        )
        return

    start_node = await context.node_store.get(new_msg.id)
    await generate_response(
        GenerationContext(
            new_msg=new_msg,
            processing_msg=processing_msg,
            node_store=context.node_store,
            node_db=context.node_db,
            messages=managed.messages,
            warnings=[*chain.warnings, *context_warnings(managed)],
            model=model,
            config=config,
            stream_fn=context.stream_fn,
            retry_callback=functools.partial(process_message, new_msg, context),
            httpx_client=context.httpx_client,
            search_result_count=start_node.search_result_count if start_node else 0,
        ),
    )
