"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class InboundMessage:
    """Minimal message-created event used by the core processor."""

    message_id: str
    channel_id: str
    group_id: Optional[str]
    author_id: str
    author_tag: str
    author_is_bot: bool
    text: str
    is_direct: bool


@dataclass(frozen=True)
class InboundReaction:
    """Minimal reaction-added event used by the core processor."""

    message_id: str
    channel_id: str
    group_id: Optional[str]
    emoji: str
    reactor_id: str
    reactor_tag: str
    reactor_is_bot: bool


@dataclass(frozen=True)
class NewConversion:
    """Ledger input describing one posted replacement."""

    original_message_id: str
    channel_id: str
    group_id: str
    author_id: str
    author_tag: str
    original_text: str
    transformed_text: str
    original_links: Tuple[str, ...]
    transformed_links: Tuple[str, ...]
    replacement_message_id: str
    created_at: datetime

    def __post_init__(self) -> None:
        # Links are recorded in lockstep; a length mismatch is a caller bug.
        if len(self.original_links) != len(self.transformed_links):
            raise ValueError(
                "original_links and transformed_links must have the same length "
                f"({len(self.original_links)} != {len(self.transformed_links)})"
            )


@dataclass(frozen=True)
class ConversionRecord:
    """Persisted conversion as returned by the ledger."""

    original_message_id: str
    channel_id: str
    group_id: str
    author_id: str
    author_tag: str
    original_text: str
    transformed_text: str
    original_links: Tuple[str, ...]
    transformed_links: Tuple[str, ...]
    replacement_message_id: str
    created_at: datetime
    reverted: bool


@dataclass(frozen=True)
class NewReaction:
    """Ledger input for one observed trigger-emoji reaction."""

    original_message_id: str
    reactor_id: str
    reactor_tag: str
    emoji: str
    observed_at: datetime
    is_revert_candidate: bool


@dataclass(frozen=True)
class ReactionEvent:
    """Persisted reaction from the append-only audit trail."""

    id: int
    original_message_id: str
    reactor_id: str
    reactor_tag: str
    emoji: str
    observed_at: datetime
    is_revert_candidate: bool


@dataclass(frozen=True)
class LedgerStats:
    """Aggregate counters read from a single ledger snapshot."""

    total_conversions: int
    total_reactions: int
    total_reverted: int


@dataclass(frozen=True)
class EmbedInfo:
    """The parts of a rendered embed the auto-revert policy looks at."""

    kind: Optional[str]
    has_video: bool
    provider_name: Optional[str]
