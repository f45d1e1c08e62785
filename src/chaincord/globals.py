"""Global state and shared clients."""

import logging
from dataclasses import dataclass

import discord
import httpx
from discord.ext import commands

from chaincord.discord.workers import WorkerPool
from chaincord.logic.pipeline import ProcessContext
from chaincord.services.database import NodeDB

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

HTTPX_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
HTTPX_LIMITS = httpx.Limits(max_connections=50, max_keepalive_connections=10)


@dataclass(slots=True)
class RuntimeState:
    """Services created once the event loop and config are available."""

    worker_pool: WorkerPool | None = None
    process_context: ProcessContext | None = None
    node_db: NodeDB | None = None


runtime = RuntimeState()

# Initialize clients
intents = discord.Intents.default()
intents.message_content = True
discord_bot = commands.Bot(
    intents=intents,
    command_prefix=commands.when_mentioned,
    allowed_mentions=discord.AllowedMentions(replied_user=False),
)

httpx_client = httpx.AsyncClient(
    timeout=HTTPX_TIMEOUT,
    limits=HTTPX_LIMITS,
    follow_redirects=True,
)
