"""Discord client factory for rxrelay.

We explicitly manage the client's lifecycle (run/close) so it is obvious when
the gateway session is created and when it ends.
"""

from __future__ import annotations

import logging
import os

import discord
from dotenv import load_dotenv


def load_token() -> str:
    """Read DISCORD_TOKEN via python-dotenv to keep secrets out of the repo."""

    load_dotenv()
    token = os.getenv("DISCORD_TOKEN", "").strip()
    # Fail fast on missing credentials to avoid an ambiguous login failure.
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN in environment. Create a .env file with your bot token.")
    return token


def build_client() -> discord.Client:
    """Create a discord.py client with the intents the responder needs."""

    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = True
    intents.guild_reactions = True

    logging.getLogger(__name__).info("Initializing Discord client")

    return discord.Client(intents=intents)
