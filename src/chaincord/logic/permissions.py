"""Decide whether the bot answers a message."""

import discord

from chaincord.core.config import (
    EMBED_COLOR_INCOMPLETE,
    PROCESSING_MESSAGE,
    BotConfig,
)


def is_addressed_to_bot(
    new_msg: discord.Message,
    bot_user: discord.abc.User | None,
    *,
    allow_dms: bool,
) -> bool:
    """Whether ``new_msg`` asks the bot for a reply.

    DMs count when allowed. In guilds the bot must be mentioned or the
    message must contain "at ai". Messages from bots never count.
    """
    if new_msg.author.bot:
        return False
    if new_msg.channel.type == discord.ChannelType.private:
        return allow_dms
    return (
        bot_user is not None and bot_user in new_msg.mentions
    ) or "at ai" in new_msg.content.lower()


async def should_process_message(
    new_msg: discord.Message,
    discord_bot: discord.Client,
    config: BotConfig,
) -> tuple[bool, discord.Message | None]:
    """Check if the message should be processed and send a placeholder.

    Returns:
        tuple: (should_process, processing_msg_or_none)

    """
    if not is_addressed_to_bot(new_msg, discord_bot.user, allow_dms=config.allow_dms):
        return False, None

    processing_embed = discord.Embed(
        description=PROCESSING_MESSAGE,
        color=EMBED_COLOR_INCOMPLETE,
    )
    processing_msg = await new_msg.reply(embed=processing_embed, silent=True)
    return True, processing_msg
