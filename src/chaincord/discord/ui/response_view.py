"""Action buttons attached to a finished response."""

import io
from collections.abc import Awaitable, Callable

import discord
import httpx

from chaincord.discord.ui.constants import (
    DOWNLOAD_FILENAME,
    DOWNLOAD_RESPONSE_ID,
    RETRY_RESPONSE_ID,
    VIEW_RESPONSE_BETTER_ID,
)
from chaincord.discord.ui.utils import build_error_embed, upload_to_rentry


class DownloadButton(discord.ui.Button):
    """Button to download the full response as a text file."""

    def __init__(self, full_response: str) -> None:
        """Initialize the button with the response content."""
        super().__init__(
            label="Download",
            style=discord.ButtonStyle.secondary,
            emoji="💾",
            custom_id=DOWNLOAD_RESPONSE_ID,
        )
        self.full_response = full_response

    async def callback(self, interaction: discord.Interaction) -> None:
        """Send the response to the clicking user as an attachment."""
        file = discord.File(
            io.BytesIO(self.full_response.encode("utf-8")),
            filename=DOWNLOAD_FILENAME,
        )
        await interaction.response.send_message(file=file, ephemeral=True)


class ViewResponseBetterButton(discord.ui.Button):
    """Button to upload and view the full response."""

    def __init__(self, full_response: str, httpx_client: httpx.AsyncClient) -> None:
        """Initialize the button with the response and an HTTP client."""
        super().__init__(
            label="View Response Better",
            style=discord.ButtonStyle.secondary,
            emoji="📄",
            custom_id=VIEW_RESPONSE_BETTER_ID,
        )
        self.full_response = full_response
        self.httpx_client = httpx_client

    async def callback(self, interaction: discord.Interaction) -> None:
        """Upload the response to rentry.co and share the link."""
        await interaction.response.defer(ephemeral=True)

        paste_url = await upload_to_rentry(self.httpx_client, self.full_response)
        if not paste_url:
            await interaction.followup.send(
                embed=build_error_embed(
                    "Failed to upload response to rentry.co. Please try again later.",
                ),
                ephemeral=True,
            )
            return

        embed = discord.Embed(
            title="View Response",
            description=(
                "Your response has been uploaded for better viewing:\n\n"
                f"**[Click here to view]({paste_url})**"
            ),
            color=discord.Color.green(),
        )
        embed.set_footer(text="Powered by rentry.co")
        await interaction.followup.send(embed=embed, ephemeral=True)


class RetryButton(discord.ui.Button):
    """Button to run the original request again."""

    def __init__(
        self,
        callback_fn: Callable[[], Awaitable[None]],
        user_id: int,
    ) -> None:
        """Initialize a retry button for the given user."""
        super().__init__(
            style=discord.ButtonStyle.secondary,
            label="Retry",
            emoji="🔄",
            custom_id=RETRY_RESPONSE_ID,
        )
        self.callback_fn = callback_fn
        self.user_id = user_id

    async def callback(self, interaction: discord.Interaction) -> None:
        """Retry the generation when allowed for the requesting user."""
        if interaction.user.id != self.user_id:
            await interaction.response.send_message(
                embed=build_error_embed("You can only retry your own message."),
                ephemeral=True,
            )
            return

        await interaction.response.defer()
        await self.callback_fn()


class ResponseView(discord.ui.View):
    """Download, view-better and retry buttons for one response."""

    def __init__(
        self,
        full_response: str,
        *,
        httpx_client: httpx.AsyncClient | None = None,
        retry_callback: Callable[[], Awaitable[None]] | None = None,
        user_id: int | None = None,
    ) -> None:
        """Initialize the response view and its optional buttons."""
        super().__init__(timeout=None)
        self.full_response = full_response

        if full_response:
            self.add_item(DownloadButton(full_response))
            if httpx_client is not None:
                self.add_item(ViewResponseBetterButton(full_response, httpx_client))

        if retry_callback and user_id:
            self.add_item(RetryButton(retry_callback, user_id))
