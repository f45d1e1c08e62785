"""Reconstruct a conversation by walking reply links between messages."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

import discord

from chaincord.core.models import MsgNode
from chaincord.logic.content import ChainFlags, MessageProcessor
from chaincord.services.node_store import NodeStore

logger = logging.getLogger(__name__)

CYCLE_WARNING = "⚠️ Conversation chain cycle detected"
UNSUPPORTED_ATTACHMENTS_WARNING = "⚠️ Unsupported attachments"
NO_IMAGES_WARNING = "⚠️ Can't see images"
CONTINUATION_WINDOW = timedelta(hours=1)
PARENT_LOOKUP_ERRORS = (discord.HTTPException, TimeoutError)


class DurableNodeStore(Protocol):
    """Durable tier consulted on memory misses and written after population."""

    async def aload_node(self, message_id: int) -> MsgNode | None: ...

    async def asave_node(self, message_id: int, node: MsgNode) -> bool: ...


@dataclass(slots=True)
class ChainBuildContext:
    """Inputs for building a conversation chain."""

    start_msg: discord.Message
    discord_bot: discord.Client
    node_store: NodeStore
    node_db: DurableNodeStore
    processor: MessageProcessor
    flags: ChainFlags = field(default_factory=ChainFlags)
    max_messages: int = 25
    max_images: int = 5
    parent_lookup_timeout: float = 10.0


@dataclass(slots=True)
class ChainBuildResult:
    """Messages newest-first plus user-facing warnings in first-seen order."""

    messages: list[dict[str, object]]
    warnings: list[str]


def _add_warning(warnings: list[str], warning: str) -> None:
    if warning not in warnings:
        warnings.append(warning)


def _only_using_warning(count: int) -> str:
    return f"⚠️ Only using last {count} message{'' if count == 1 else 's'}"


def _max_images_warning(max_images: int) -> str:
    if max_images <= 0:
        return NO_IMAGES_WARNING
    return f"⚠️ Max {max_images} image{'' if max_images == 1 else 's'} per message"


async def build_conversation_chain(context: ChainBuildContext) -> ChainBuildResult:
    """Walk parent links from ``context.start_msg`` and build LLM messages.

    The walk stops at the root of the conversation, at ``max_messages``
    content-bearing messages, or when a message is seen twice. Messages are
    returned newest-first.
    """
    messages: list[dict[str, object]] = []
    warnings: list[str] = []
    visited: set[int] = set()
    curr_msg: discord.Message | None = context.start_msg

    while curr_msg is not None and len(messages) < context.max_messages:
        if curr_msg.id in visited:
            logger.warning(
                "Cycle detected in conversation chain at message %s",
                curr_msg.id,
            )
            _add_warning(warnings, CYCLE_WARNING)
            curr_msg = None
            break
        visited.add(curr_msg.id)

        node = await _resolve_node(curr_msg.id, context)
        snapshot: MsgNode | None = None

        async with node.lock:
            changed = False
            if not node.text:
                await context.processor.process(
                    curr_msg,
                    node,
                    is_current=curr_msg.id == context.start_msg.id,
                    flags=context.flags,
                )
                changed = True

            if not node.parent_resolved:
                await _resolve_parent(curr_msg, node, context)
                changed = True
            elif node.parent_msg is None and node.parent_id is not None:
                await _refetch_parent(curr_msg, node, context)

            message = _build_message(node, context, warnings)
            if message is not None:
                messages.append(message)

            if node.fetch_parent_failed:
                _add_warning(warnings, _only_using_warning(len(messages)))

            if changed and node.has_visible_content:
                snapshot = node.snapshot()
            next_msg = node.parent_msg

        # Durable writes happen after the node lock is released.
        if snapshot is not None:
            await context.node_db.asave_node(curr_msg.id, snapshot)

        curr_msg = next_msg

    if curr_msg is not None and len(messages) >= context.max_messages:
        _add_warning(warnings, _only_using_warning(len(messages)))

    return ChainBuildResult(messages=messages, warnings=warnings)


async def _resolve_node(msg_id: int, context: ChainBuildContext) -> MsgNode:
    """Memory, then durable storage, then a fresh empty node."""
    node = await context.node_store.get(msg_id)
    if node is not None:
        return node

    stored = await context.node_db.aload_node(msg_id)
    if stored is not None:
        logger.debug("Loaded message node %s from durable storage", msg_id)
        return await context.node_store.set_if_absent(msg_id, stored)
    return await context.node_store.get_or_create(msg_id)


def _build_message(
    node: MsgNode,
    context: ChainBuildContext,
    warnings: list[str],
) -> dict[str, object] | None:
    if node.has_bad_attachments:
        _add_warning(warnings, UNSUPPORTED_ATTACHMENTS_WARNING)

    if not node.has_visible_content:
        return None

    max_images = context.max_images if context.flags.accept_images else 0
    if len(node.images) > max_images:
        _add_warning(warnings, _max_images_warning(max_images))
    images = node.images[:max_images] if max_images > 0 else []

    text = node.text
    if node.audio_files:
        audio_notes = [
            f"[Audio attachment: {audio.get('filename') or 'audio'}]"
            for audio in node.audio_files
        ]
        text = "\n".join(part for part in (text, *audio_notes) if part)

    content: str | list[dict[str, object]]
    if images:
        content = [{"type": "text", "text": text}] if text else []
        content.extend(images)
    elif text:
        content = text
    else:
        return None

    message: dict[str, object] = {"role": node.role, "content": content}
    if context.flags.accept_usernames and node.user_id is not None:
        message["name"] = node.user_id
    return message


async def _resolve_parent(
    curr_msg: discord.Message,
    node: MsgNode,
    context: ChainBuildContext,
) -> None:
    try:
        parent = await asyncio.wait_for(
            find_parent_message(curr_msg, context.discord_bot),
            timeout=context.parent_lookup_timeout,
        )
    except PARENT_LOOKUP_ERRORS as exc:
        logger.warning(
            "Error fetching parent of message %s, ending chain: %s",
            curr_msg.id,
            exc,
        )
        node.fetch_parent_failed = True
        node.set_parent(None)
        return
    node.set_parent(parent)


async def _refetch_parent(
    curr_msg: discord.Message,
    node: MsgNode,
    context: ChainBuildContext,
) -> None:
    """Turn a persisted parent id back into a message object."""
    parent_id = node.parent_id
    if parent_id is None:
        return
    try:
        node.parent_msg = await asyncio.wait_for(
            _fetch_message_by_id(curr_msg, parent_id),
            timeout=context.parent_lookup_timeout,
        )
    except PARENT_LOOKUP_ERRORS as exc:
        logger.warning(
            "Stored parent %s of message %s is unreachable: %s",
            parent_id,
            curr_msg.id,
            exc,
        )
        node.fetch_parent_failed = True


async def _fetch_message_by_id(
    curr_msg: discord.Message,
    message_id: int,
) -> discord.Message:
    channel = curr_msg.channel
    if channel.type == discord.ChannelType.public_thread and message_id == channel.id:
        starter = await _thread_starter(curr_msg)
        if starter is not None:
            return starter
    return await channel.fetch_message(message_id)


def _is_standalone(curr_msg: discord.Message, bot_user: discord.ClientUser) -> bool:
    """A message that addresses the bot directly starts a new conversation."""
    return bot_user in curr_msg.mentions or "at ai" in curr_msg.content.lower()


async def find_parent_message(
    curr_msg: discord.Message,
    discord_bot: discord.Client,
) -> discord.Message | None:
    """Return the message ``curr_msg`` continues, or None at a root.

    Order of precedence: an explicit reply, then the starter message of the
    public thread the message was posted in, then the previous message in
    the channel for a continuation that does not address the bot. Messages
    in a public thread never continue the previous message.
    """
    reference = curr_msg.reference
    if reference is not None and reference.message_id is not None:
        return (
            reference.cached_message
            or _referenced_message(reference)
            or await curr_msg.channel.fetch_message(reference.message_id)
        )

    if curr_msg.channel.type == discord.ChannelType.public_thread:
        return await _thread_starter(curr_msg)

    bot_user = discord_bot.user
    if bot_user is not None and not _is_standalone(curr_msg, bot_user):
        previous = await _previous_message(curr_msg)
        if previous is not None and _is_continuation_of(curr_msg, previous, bot_user):
            return previous

    return None


async def _thread_starter(curr_msg: discord.Message) -> discord.Message | None:
    """Return the text-channel message a public thread was started from."""
    thread = curr_msg.channel
    parent = thread.parent
    if (
        parent is None
        or parent.type != discord.ChannelType.text
        or curr_msg.id == thread.id
    ):
        return None
    return thread.starter_message or await parent.fetch_message(thread.id)


async def _previous_message(curr_msg: discord.Message) -> discord.Message | None:
    async for message in curr_msg.channel.history(before=curr_msg, limit=1):
        return message
    return None


def _is_continuation_of(
    curr_msg: discord.Message,
    previous: discord.Message,
    bot_user: discord.ClientUser,
) -> bool:
    if previous.type not in (discord.MessageType.default, discord.MessageType.reply):
        return False

    if curr_msg.channel.type == discord.ChannelType.private:
        return previous.author in (bot_user, curr_msg.author)

    if previous.author != bot_user:
        return False
    if curr_msg.created_at - previous.created_at > CONTINUATION_WINDOW:
        return False

    replied_to = _referenced_message(previous.reference) if previous.reference else None
    return replied_to is not None and replied_to.author == curr_msg.author


def _referenced_message(
    reference: discord.MessageReference,
) -> discord.Message | None:
    """Return the already-resolved target of a reply, if discord.py has it."""
    resolved = reference.resolved
    if resolved is None or isinstance(resolved, discord.DeletedReferencedMessage):
        return None
    return resolved
