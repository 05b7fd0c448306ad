"""Ports (interfaces) used by the core processor.

Ports define the minimal contracts for the ledger and the chat platform so
that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import List, Optional, Protocol

from core.models import (
    ConversionRecord,
    EmbedInfo,
    LedgerStats,
    NewConversion,
    NewReaction,
    ReactionEvent,
)


class Permission(str, Enum):
    """Channel capabilities the processor checks before acting."""

    SEND_MESSAGES = "send_messages"
    MANAGE_MESSAGES = "manage_messages"
    ADD_REACTIONS = "add_reactions"


class LedgerPort(Protocol):
    """Durable store of conversions and their reaction audit trail."""

    def record_conversion(self, record: NewConversion) -> None:
        ...

    def get_conversion(self, original_message_id: str) -> Optional[ConversionRecord]:
        ...

    def has_conversion(self, original_message_id: str) -> bool:
        ...

    def get_conversion_by_replacement_id(self, replacement_message_id: str) -> Optional[ConversionRecord]:
        ...

    def try_revert(self, original_message_id: str) -> bool:
        ...

    def delete_conversion(self, original_message_id: str) -> bool:
        ...

    def record_reaction(self, reaction: NewReaction) -> Optional[int]:
        ...

    def list_reactions(self, original_message_id: str) -> List[ReactionEvent]:
        ...

    def list_by_author(self, author_id: str, limit: int = 50) -> List[ConversionRecord]:
        ...

    def list_by_channel(self, channel_id: str, limit: int = 50) -> List[ConversionRecord]:
        ...

    def list_by_group(self, group_id: str, limit: int = 50) -> List[ConversionRecord]:
        ...

    def purge_older_than(self, age: timedelta) -> int:
        ...

    def stats(self) -> LedgerStats:
        ...


class GatewayPort(Protocol):
    """Chat platform operations required by the core processor.

    Calls return False when the target no longer exists and raise
    TransientPlatformError for any other platform failure.
    """

    @property
    def self_id(self) -> str:
        ...

    async def post_message(self, channel_id: str, text: str) -> str:
        ...

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        ...

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        ...

    async def remove_own_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        ...

    async def suppress_embeds(self, channel_id: str, message_id: str, suppress: bool) -> bool:
        ...

    async def fetch_embeds(self, channel_id: str, message_id: str) -> List[EmbedInfo]:
        ...

    async def has_permission(self, channel_id: str, actor_id: str, action: Permission) -> bool:
        ...
