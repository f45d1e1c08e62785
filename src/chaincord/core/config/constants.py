"""Constant definitions for chaincord."""

import discord

# Model name fragments of vision-capable models
VISION_MODEL_TAGS = (
    "claude",
    "gemini",
    "gemma",
    "gpt-4",
    "gpt-5",
    "grok-4",
    "llama",
    "llava",
    "mistral",
    "o3",
    "o4",
    "vision",
    "vl",
)
PROVIDERS_SUPPORTING_USERNAMES = ("openai", "x-ai")

# Discord embed colors
EMBED_COLOR_COMPLETE = discord.Color.dark_green()
EMBED_COLOR_INCOMPLETE = discord.Color.orange()
EMBED_COLOR_ERROR = discord.Color.red()

# Streaming and editing constants
STREAMING_INDICATOR = " ⚪"
PROCESSING_MESSAGE = "⏳ Working on your request..."
EDIT_DELAY_SECONDS = 1

# Discord limit constants
MAX_MESSAGE_LENGTH = 4096
EMBED_FIELD_NAME_LIMIT = 256
MAX_EMBED_FIELDS = 25

# Message node limits
MAX_MESSAGE_NODES = 500

# Conversation defaults
DEFAULT_MAX_IMAGES = 5
DEFAULT_MAX_MESSAGES = 25
DEFAULT_TOKEN_LIMIT = 128_000
DEFAULT_MODEL = "gemini/gemini-2.5-flash"
DEFAULT_STATUS_MESSAGE = "github.com/chaincord"

# Context summarization defaults
DEFAULT_TRIGGER_THRESHOLD = 0.8
DEFAULT_SUMMARIZER_MODEL = "gemini/gemini-2.5-flash"
DEFAULT_MAX_PAIRS_PER_BATCH = 1
DEFAULT_MIN_UNSUMMARIZED_PAIRS = 0
DEFAULT_SUMMARIZER_ATTEMPTS = 3
DEFAULT_SUMMARIZER_BASE_DELAY = 1.0
DEFAULT_SUMMARIZER_TIMEOUT = 120

# Deadlines (seconds)
DEFAULT_RESPONSE_TIMEOUT = 300
DEFAULT_PARENT_LOOKUP_TIMEOUT = 10

# Worker pool
DEFAULT_WORKER_COUNT = 10
DEFAULT_QUEUE_SIZE = 100
