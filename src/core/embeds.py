"""Embed classification used by the auto-revert policy."""

from __future__ import annotations

from typing import Iterable

from core.links import TARGET_HOST
from core.models import EmbedInfo

_PROVIDER_MARKER = TARGET_HOST.split(".", 1)[0]


def has_rich_media(embeds: Iterable[EmbedInfo]) -> bool:
    """Return True if any embed carries video or gallery content.

    rxddit renders galleries as ``rich`` embeds with itself as the provider;
    plain link previews are left to the original Reddit embed instead.
    """

    for embed in embeds:
        if embed.has_video:
            return True
        if embed.kind == "video":
            return True
        provider = (embed.provider_name or "").lower()
        if embed.kind == "rich" and _PROVIDER_MARKER in provider:
            return True
    return False
