"""Populate message nodes from raw Discord messages."""

import asyncio
import logging
import re
from base64 import b64encode
from dataclasses import dataclass
from typing import Protocol

import discord
import httpx

from chaincord.core.error_handling import log_exception
from chaincord.core.models import MsgNode
from chaincord.services.http import RetryOptions, request_with_retries

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
TRIGGER_PATTERN = re.compile(r"\bat ai\b", flags=re.IGNORECASE)
ATTACHMENT_RETRY_OPTIONS = RetryOptions(retries=2)


@dataclass(frozen=True, slots=True)
class ChainFlags:
    """Per-request switches for chain building and enrichment."""

    accept_images: bool = True
    accept_usernames: bool = False
    force_search: bool = False
    deny_search: bool = False


class MessageProcessor(Protocol):
    """Fills an empty node from its Discord message."""

    async def process(
        self,
        msg: discord.Message,
        node: MsgNode,
        *,
        is_current: bool,
        flags: ChainFlags,
    ) -> None: ...


@dataclass(slots=True)
class _DownloadedAttachment:
    attachment: discord.Attachment
    content: bytes


def clean_message_content(content: str, bot_user: discord.abc.User | None) -> str:
    """Strip the bot mention and the "at ai" trigger from message text."""
    cleaned = content
    if bot_user is not None:
        for mention in (f"<@{bot_user.id}>", f"<@!{bot_user.id}>"):
            cleaned = cleaned.replace(mention, "")
    return TRIGGER_PATTERN.sub("", cleaned).strip()


def _embed_texts(embeds: list[discord.Embed]) -> list[str]:
    texts: list[str] = []
    for embed in embeds:
        parts = [
            value
            for value in (
                embed.title,
                embed.description,
                getattr(embed.footer, "text", None),
            )
            if value
        ]
        if parts:
            texts.append("\n".join(parts))
    return texts


class DiscordMessageProcessor:
    """Default enrichment: text, embeds and attachments of one message.

    Attachment downloads run concurrently. A failed download is logged and
    counted as an unsupported attachment; the node is still populated from
    whatever succeeded.
    """

    def __init__(
        self,
        *,
        discord_bot: discord.Client,
        httpx_client: httpx.AsyncClient,
    ) -> None:
        """Bind the processor to the bot identity and HTTP client."""
        self.discord_bot = discord_bot
        self.httpx_client = httpx_client

    async def process(
        self,
        msg: discord.Message,
        node: MsgNode,
        *,
        is_current: bool,
        flags: ChainFlags,
    ) -> None:
        """Populate ``node``; caller holds ``node.lock``."""
        bot_user = self.discord_bot.user
        cleaned_content = clean_message_content(msg.content, bot_user)

        supported = [
            att
            for att in msg.attachments
            if att.content_type
            and att.content_type.startswith(("text", "image", "audio", "application/pdf"))
            and (att.size or 0) <= MAX_ATTACHMENT_BYTES
        ]
        downloaded = await self._download_all(
            [att for att in supported if att.content_type.startswith(("text", "image"))],
        )

        text_attachments: list[str] = []
        node.images = []
        for item in downloaded:
            content_type = item.attachment.content_type or ""
            if content_type.startswith("text"):
                text_attachments.append(item.content.decode("utf-8", errors="replace"))
            elif flags.accept_images:
                encoded = b64encode(item.content).decode("utf-8")
                node.images.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{content_type};base64,{encoded}"},
                    },
                )

        node.audio_files = [
            {"url": att.url, "content_type": att.content_type, "filename": att.filename}
            for att in supported
            if att.content_type.startswith("audio")
        ]
        node.pdf_files = [
            {"url": att.url, "content_type": att.content_type, "filename": att.filename}
            for att in supported
            if att.content_type.startswith("application/pdf")
        ]

        failed_downloads = sum(
            1
            for att in supported
            if att.content_type.startswith(("text", "image"))
        ) - len(downloaded)
        node.has_bad_attachments = (
            len(msg.attachments) > len(supported) or failed_downloads > 0
        )

        text_parts = [
            part
            for part in (cleaned_content, *_embed_texts(msg.embeds), *text_attachments)
            if part
        ]
        node.text = "\n".join(text_parts)
        if not node.text and node.images:
            node.text = "What is in this image?"
        if not node.text and is_current:
            node.text = "."

        node.role = (
            "assistant" if bot_user is not None and msg.author == bot_user else "user"
        )
        node.user_id = str(msg.author.id) if node.role == "user" else None

    async def _download_all(
        self,
        attachments: list[discord.Attachment],
    ) -> list[_DownloadedAttachment]:
        results = await asyncio.gather(
            *(self._download(att) for att in attachments),
            return_exceptions=True,
        )
        downloaded: list[_DownloadedAttachment] = []
        for att, result in zip(attachments, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                log_exception(
                    logger=logger,
                    message="Attachment download failed",
                    error=result,
                    context={"filename": att.filename},
                )
                continue
            downloaded.append(result)
        return downloaded

    async def _download(self, attachment: discord.Attachment) -> _DownloadedAttachment:
        response = await request_with_retries(
            lambda: self.httpx_client.get(attachment.url),
            options=ATTACHMENT_RETRY_OPTIONS,
            log_context=attachment.filename,
        )
        response.raise_for_status()
        return _DownloadedAttachment(attachment=attachment, content=response.content)
