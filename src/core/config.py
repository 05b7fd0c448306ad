"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet

CONTENT_MODES = ("links", "full_text")
AFFORDANCE_TARGETS = ("original", "replacement")


@dataclass(frozen=True)
class AutoRevertConfig:
    """Optional policy: revert automatically when no rich media embeds show up."""

    enabled: bool = False
    embed_wait_seconds: float = 5.0


@dataclass(frozen=True)
class ResponderConfig:
    """Behaviour switches for the event processor."""

    trigger_emoji: str = "\N{ROBOT FACE}"
    # "links" posts only the converted links, "full_text" the whole rewritten message.
    content_mode: str = "links"
    # Where the bot places its trigger emoji: on the "original" or the "replacement".
    affordance_target: str = "original"
    suppress_embeds: bool = False
    platform_timeout_seconds: float = 10.0
    # Empty means every guild is served.
    allowed_group_ids: FrozenSet[str] = frozenset()
    auto_revert: AutoRevertConfig = field(default_factory=AutoRevertConfig)

    def __post_init__(self) -> None:
        if self.content_mode not in CONTENT_MODES:
            raise ValueError(f"Unsupported content mode: {self.content_mode}")
        if self.affordance_target not in AFFORDANCE_TARGETS:
            raise ValueError(f"Unsupported affordance target: {self.affordance_target}")
        if self.platform_timeout_seconds <= 0:
            raise ValueError("platform_timeout_seconds must be positive")
