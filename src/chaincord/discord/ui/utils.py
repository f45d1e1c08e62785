"""Utility functions for UI components."""

import logging

import discord
import httpx
from bs4 import BeautifulSoup

from chaincord.core.config import EMBED_COLOR_INCOMPLETE
from chaincord.discord.ui.constants import (
    HTTP_OK,
    HTTP_REDIRECTS,
    RENTRY_TIMEOUT_SECONDS,
    RENTRY_URL,
)

LOGGER = logging.getLogger(__name__)

RENTRY_ERRORS = (httpx.HTTPError, ValueError)


def build_error_embed(
    description: str,
    *,
    title: str = "Something went wrong",
) -> discord.Embed:
    """Build a standardized error embed for user-facing failures."""
    return discord.Embed(
        title=title,
        description=description,
        color=EMBED_COLOR_INCOMPLETE,
    )


def _extract_csrf_token(response: httpx.Response) -> str | None:
    """Find the CSRF token in the rentry.co form, or in its cookie."""
    soup = BeautifulSoup(response.text, "html.parser")
    csrf_input = soup.find("input", {"name": "csrfmiddlewaretoken"}) or soup.find(
        "input",
        {"name": "csrf_token"},
    )
    if csrf_input:
        token = str(csrf_input.get("value", ""))
        if token:
            return token
    return response.cookies.get("csrftoken")


async def upload_to_rentry(client: httpx.AsyncClient, text: str) -> str | None:
    """Upload text to rentry.co and return the paste URL.

    Returns None if upload fails.
    """
    try:
        page = await client.get(
            f"{RENTRY_URL}/",
            timeout=RENTRY_TIMEOUT_SECONDS,
            follow_redirects=True,
        )
        csrf_token = _extract_csrf_token(page)
        if not csrf_token:
            LOGGER.error("Could not find CSRF token on rentry.co")
            LOGGER.debug(
                "Response status: %s, URL: %s",
                page.status_code,
                page.url,
            )
            return None

        post_response = await client.post(
            f"{RENTRY_URL}/",
            data={"csrfmiddlewaretoken": csrf_token, "text": text},
            headers={"Referer": str(page.url), "Origin": RENTRY_URL},
            timeout=RENTRY_TIMEOUT_SECONDS,
        )
    except RENTRY_ERRORS as exc:
        LOGGER.error("Error uploading to rentry.co: %s", exc)
        return None

    if post_response.status_code in HTTP_REDIRECTS:
        paste_url = post_response.headers.get("Location")
        if paste_url:
            return f"{RENTRY_URL}{paste_url}" if paste_url.startswith("/") else paste_url

    if post_response.status_code == HTTP_OK:
        final_url = str(post_response.url)
        if final_url.rstrip("/") != RENTRY_URL:
            return final_url

    LOGGER.error(
        "Unexpected response from rentry.co: %s (URL: %s)",
        post_response.status_code,
        post_response.url,
    )
    return None
