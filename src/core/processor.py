"""Core event processor.

This module is integration-agnostic. It only relies on ports for the ledger
and the chat platform, enabling other frontends or adapters without changes
here.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from core.config import ResponderConfig
from core.embeds import has_rich_media
from core.errors import StorageError, TransientPlatformError, ValidationSkip
from core.links import convert_link, convert_links, detect_links
from core.models import (
    ConversionRecord,
    InboundMessage,
    InboundReaction,
    NewConversion,
    NewReaction,
)
from core.ports import GatewayPort, LedgerPort, Permission

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_replacement_text(text: str, converted_links: Sequence[str], mode: str) -> str:
    """Return the body of the replacement message for the given content mode."""

    if mode == "links":
        return "\n".join(converted_links)
    if mode == "full_text":
        return convert_links(text)
    raise ValueError(f"Unsupported content mode: {mode}")


class EventProcessor:
    """Orchestrates link rewriting, ledger transitions, and platform actions."""

    def __init__(
        self,
        ledger: LedgerPort,
        gateway: GatewayPort,
        config: ResponderConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._config = config
        self._clock = clock

    async def handle_message(self, message: InboundMessage) -> None:
        """Post a rewritten replacement for a message carrying Reddit links.

        Never raises: every failure is logged here, at the event boundary.
        """

        try:
            self._check_message(message)
        except ValidationSkip as skip:
            LOGGER.debug("Skipping message %s: %s", message.message_id, skip)
            return

        links = detect_links(message.text)
        if not links:
            return
        LOGGER.info(
            "Found %s Reddit link(s) in message %s from %s",
            len(links),
            message.message_id,
            message.author_tag,
        )

        try:
            await self._respond(message, links)
        except ValidationSkip as skip:
            LOGGER.debug("Not responding to message %s in channel %s: %s", message.message_id, message.channel_id, skip)
        except TransientPlatformError as exc:
            LOGGER.warning(
                "Platform error while handling message %s in channel %s from %s: %s",
                message.message_id,
                message.channel_id,
                message.author_tag,
                exc,
            )
        except Exception:
            LOGGER.exception(
                "Error processing message %s from %s in channel %s",
                message.message_id,
                message.author_tag,
                message.channel_id,
            )

    async def handle_reaction(self, reaction: InboundReaction) -> None:
        """Record a trigger-emoji reaction and revert if the author asked for it.

        Never raises: every failure is logged here, at the event boundary.
        """

        try:
            self._check_reaction(reaction)
        except ValidationSkip as skip:
            LOGGER.debug("Skipping reaction on message %s: %s", reaction.message_id, skip)
            return

        try:
            await self._revert_on_reaction(reaction)
        except StorageError as exc:
            LOGGER.error(
                "Storage error while handling reaction on message %s by %s: %s",
                reaction.message_id,
                reaction.reactor_tag,
                exc,
            )
        except Exception:
            LOGGER.exception(
                "Error handling reaction on message %s by %s",
                reaction.message_id,
                reaction.reactor_tag,
            )

    def _check_message(self, message: InboundMessage) -> None:
        if message.author_is_bot:
            raise ValidationSkip("author is a bot")
        if not message.text or not message.text.strip():
            raise ValidationSkip("no text content")
        if message.is_direct or message.group_id is None:
            raise ValidationSkip("not a guild channel")
        allowed = self._config.allowed_group_ids
        if allowed and message.group_id not in allowed:
            raise ValidationSkip(f"guild {message.group_id} is not enabled")

    def _check_reaction(self, reaction: InboundReaction) -> None:
        if reaction.reactor_is_bot:
            raise ValidationSkip("reactor is a bot")
        if reaction.emoji != self._config.trigger_emoji:
            raise ValidationSkip(f"emoji {reaction.emoji!r} is not the trigger emoji")

    async def _respond(self, message: InboundMessage, links: Sequence[str]) -> None:
        # Gateways may redeliver a message; answer it once.
        if self._ledger.has_conversion(message.message_id):
            raise ValidationSkip("already converted")

        channel_id = message.channel_id
        if not await self._permitted(channel_id, Permission.SEND_MESSAGES):
            raise ValidationSkip("no permission to send messages")

        converted_links = tuple(convert_link(link) for link in links)
        content = build_replacement_text(message.text, converted_links, self._config.content_mode)
        replacement_id = await self._call("post message", self._gateway.post_message(channel_id, content))

        record = NewConversion(
            original_message_id=message.message_id,
            channel_id=channel_id,
            group_id=message.group_id or "",
            author_id=message.author_id,
            author_tag=message.author_tag,
            original_text=message.text,
            transformed_text=convert_links(message.text),
            original_links=tuple(links),
            transformed_links=converted_links,
            replacement_message_id=replacement_id,
            created_at=self._clock(),
        )
        try:
            self._ledger.record_conversion(record)
        except StorageError as exc:
            # The replacement is already visible but cannot be reverted; left for reconciliation.
            LOGGER.error(
                "Posted replacement %s for message %s from %s in channel %s but could not record it: %s",
                replacement_id,
                message.message_id,
                message.author_tag,
                channel_id,
                exc,
            )
            return
        LOGGER.info("Posted converted links for message %s from %s", message.message_id, message.author_tag)

        if self._config.suppress_embeds:
            await self._best_effort(
                "suppress embeds",
                message.message_id,
                self._set_embeds_suppressed(channel_id, message.message_id, True),
            )
        await self._best_effort(
            "add trigger reaction",
            message.message_id,
            self._add_affordance(channel_id, message.message_id, replacement_id),
        )

        if self._config.auto_revert.enabled:
            await self._auto_revert_if_plain(record)

    async def _revert_on_reaction(self, reaction: InboundReaction) -> None:
        record = self._resolve_record(reaction.message_id)
        if record is None:
            LOGGER.debug("Reaction on untracked message %s", reaction.message_id)
            return

        # The audit trail is written before the revert attempt so losing
        # reactions are kept as well.
        is_author = reaction.reactor_id == record.author_id
        reaction_id = self._ledger.record_reaction(
            NewReaction(
                original_message_id=record.original_message_id,
                reactor_id=reaction.reactor_id,
                reactor_tag=reaction.reactor_tag,
                emoji=reaction.emoji,
                observed_at=self._clock(),
                is_revert_candidate=is_author,
            )
        )
        if reaction_id is None:
            LOGGER.debug("Conversion %s was purged before the reaction was recorded", record.original_message_id)
            return

        if not is_author:
            LOGGER.info(
                "User %s is not the original author of message %s, ignoring reaction",
                reaction.reactor_tag,
                record.original_message_id,
            )
            return

        if not self._ledger.try_revert(record.original_message_id):
            LOGGER.debug("Message %s is already reverted", record.original_message_id)
            return

        LOGGER.info("Original author %s reacted to revert message %s", reaction.reactor_tag, record.original_message_id)
        await self._undo(record.channel_id, record.original_message_id, record.replacement_message_id)
        LOGGER.info("Revert completed for message %s", record.original_message_id)

    def _resolve_record(self, message_id: str) -> Optional[ConversionRecord]:
        # The reaction may sit on the original or on the replacement message.
        record = self._ledger.get_conversion(message_id)
        if record is None:
            record = self._ledger.get_conversion_by_replacement_id(message_id)
        return record

    async def _auto_revert_if_plain(self, record: NewConversion) -> None:
        await asyncio.sleep(self._config.auto_revert.embed_wait_seconds)
        try:
            embeds = await self._call(
                "fetch embeds",
                self._gateway.fetch_embeds(record.channel_id, record.replacement_message_id),
            )
        except TransientPlatformError as exc:
            # Without embed information the rxddit version is the safer choice.
            LOGGER.info("Could not check embeds for replacement %s, keeping it: %s", record.replacement_message_id, exc)
            return

        if has_rich_media(embeds):
            LOGGER.info("Video/gallery content detected, keeping replacement %s", record.replacement_message_id)
            return

        if not self._ledger.try_revert(record.original_message_id):
            return
        LOGGER.info("No video/gallery content, auto-reverting message %s", record.original_message_id)
        await self._undo(record.channel_id, record.original_message_id, record.replacement_message_id)

    async def _undo(self, channel_id: str, original_message_id: str, replacement_message_id: str) -> None:
        # Each cleanup step is independent; the ledger already holds the revert.
        await self._best_effort(
            "delete replacement",
            replacement_message_id,
            self._call("delete message", self._gateway.delete_message(channel_id, replacement_message_id)),
        )
        if self._config.affordance_target == "original":
            await self._best_effort(
                "remove trigger reaction",
                original_message_id,
                self._call(
                    "remove reaction",
                    self._gateway.remove_own_reaction(channel_id, original_message_id, self._config.trigger_emoji),
                ),
            )
        if self._config.suppress_embeds:
            await self._best_effort(
                "restore embeds",
                original_message_id,
                self._set_embeds_suppressed(channel_id, original_message_id, False),
            )

    async def _add_affordance(self, channel_id: str, original_message_id: str, replacement_message_id: str) -> bool:
        if not await self._permitted(channel_id, Permission.ADD_REACTIONS):
            LOGGER.debug("No permission to add reactions in channel %s", channel_id)
            return False
        if self._config.affordance_target == "original":
            target = original_message_id
        else:
            target = replacement_message_id
        return await self._call(
            "add reaction",
            self._gateway.add_reaction(channel_id, target, self._config.trigger_emoji),
        )

    async def _set_embeds_suppressed(self, channel_id: str, message_id: str, suppress: bool) -> bool:
        if not await self._permitted(channel_id, Permission.MANAGE_MESSAGES):
            LOGGER.debug("No permission to manage messages in channel %s", channel_id)
            return False
        return await self._call(
            "suppress embeds",
            self._gateway.suppress_embeds(channel_id, message_id, suppress),
        )

    async def _permitted(self, channel_id: str, action: Permission) -> bool:
        return await self._call(
            "check permission",
            self._gateway.has_permission(channel_id, self._gateway.self_id, action),
        )

    async def _best_effort(self, action: str, message_id: str, step: Awaitable[bool]) -> bool:
        try:
            done = await step
        except TransientPlatformError as exc:
            LOGGER.warning("Could not %s on message %s: %s", action, message_id, exc)
            return False
        if not done:
            LOGGER.debug("Did not %s on message %s", action, message_id)
        return done

    async def _call(self, action: str, operation: Awaitable[T]) -> T:
        timeout = self._config.platform_timeout_seconds
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransientPlatformError(f"{action} timed out after {timeout}s") from exc
