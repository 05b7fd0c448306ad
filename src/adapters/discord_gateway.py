"""Discord gateway adapter.

Implements the core GatewayPort on top of a discord.py client so the core
processor never touches discord.py types.
"""

from __future__ import annotations

import logging
from typing import List

import discord

from core.errors import TransientPlatformError
from core.models import EmbedInfo
from core.ports import Permission

LOGGER = logging.getLogger(__name__)


class DiscordGateway:
    """GatewayPort backed by a connected ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    @property
    def self_id(self) -> str:
        user = self._client.user
        return str(user.id) if user else ""

    async def _channel(self, channel_id: str):
        channel = self._client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self._client.fetch_channel(int(channel_id))
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Cannot resolve channel {channel_id}: {exc}") from exc

    async def _partial_message(self, channel_id: str, message_id: str) -> discord.PartialMessage:
        channel = await self._channel(channel_id)
        if not hasattr(channel, "get_partial_message"):
            raise TransientPlatformError(f"Channel {channel_id} does not hold messages")
        return channel.get_partial_message(int(message_id))

    async def post_message(self, channel_id: str, text: str) -> str:
        channel = await self._channel(channel_id)
        try:
            message = await channel.send(text)
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Send to channel {channel_id} failed: {exc}") from exc
        return str(message.id)

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        partial = await self._partial_message(channel_id, message_id)
        try:
            await partial.delete()
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Delete of message {message_id} failed: {exc}") from exc
        return True

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        partial = await self._partial_message(channel_id, message_id)
        try:
            await partial.add_reaction(emoji)
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Reacting to message {message_id} failed: {exc}") from exc
        return True

    async def remove_own_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        user = self._client.user
        if user is None:
            return False
        partial = await self._partial_message(channel_id, message_id)
        try:
            await partial.remove_reaction(emoji, user)
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Removing reaction from message {message_id} failed: {exc}") from exc
        return True

    async def suppress_embeds(self, channel_id: str, message_id: str, suppress: bool) -> bool:
        partial = await self._partial_message(channel_id, message_id)
        try:
            message = await partial.fetch()
            await message.edit(suppress=suppress)
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Changing embeds on message {message_id} failed: {exc}") from exc
        return True

    async def fetch_embeds(self, channel_id: str, message_id: str) -> List[EmbedInfo]:
        partial = await self._partial_message(channel_id, message_id)
        try:
            message = await partial.fetch()
        except discord.HTTPException as exc:
            raise TransientPlatformError(f"Fetching message {message_id} failed: {exc}") from exc
        LOGGER.debug("Message %s has %s embed(s)", message_id, len(message.embeds))
        return [
            EmbedInfo(
                kind=embed.type,
                has_video=bool(embed.video and embed.video.url),
                provider_name=embed.provider.name if embed.provider else None,
            )
            for embed in message.embeds
        ]

    async def has_permission(self, channel_id: str, actor_id: str, action: Permission) -> bool:
        channel = await self._channel(channel_id)
        guild = getattr(channel, "guild", None)
        if guild is None:
            return False
        member = guild.get_member(int(actor_id))
        if member is None:
            try:
                member = await guild.fetch_member(int(actor_id))
            except discord.NotFound:
                return False
            except discord.HTTPException as exc:
                raise TransientPlatformError(f"Cannot resolve member {actor_id}: {exc}") from exc
        permissions = channel.permissions_for(member)
        return bool(getattr(permissions, action.value, False))
