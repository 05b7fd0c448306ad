"""Discord-to-core event mapping adapter.

This keeps discord.py-specific details out of the core processor.
"""

from __future__ import annotations

import discord

from core.models import InboundMessage, InboundReaction


def _is_direct_channel(channel) -> bool:
    return isinstance(channel, (discord.DMChannel, discord.GroupChannel))


def build_message(message: discord.Message) -> InboundMessage:
    """Build a core InboundMessage from a discord.py Message."""

    guild = message.guild
    channel = message.channel
    author = message.author
    return InboundMessage(
        message_id=str(message.id),
        channel_id=str(channel.id),
        group_id=str(guild.id) if guild else None,
        author_id=str(author.id),
        author_tag=str(author),
        author_is_bot=bool(author.bot),
        text=message.content or "",
        is_direct=guild is None or _is_direct_channel(channel),
    )


async def build_reaction(client: discord.Client, payload: discord.RawReactionActionEvent) -> InboundReaction:
    """Build a core InboundReaction from a raw reaction-add payload.

    Raw events fire even for messages that are not in the client cache, so the
    reactor is resolved from the payload member, the user cache, or the API.
    """

    reactor = payload.member
    if reactor is None:
        reactor = client.get_user(payload.user_id)
    if reactor is None:
        reactor = await client.fetch_user(payload.user_id)

    return InboundReaction(
        message_id=str(payload.message_id),
        channel_id=str(payload.channel_id),
        group_id=str(payload.guild_id) if payload.guild_id else None,
        emoji=str(payload.emoji),
        reactor_id=str(payload.user_id),
        reactor_tag=str(reactor),
        reactor_is_bot=bool(getattr(reactor, "bot", False)),
    )
