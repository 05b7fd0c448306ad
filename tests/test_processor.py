from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from adapters.sqlite_ledger import SQLiteLedger
from core.config import AutoRevertConfig, ResponderConfig
from core.errors import StorageError, TransientPlatformError
from core.models import EmbedInfo, InboundMessage, InboundReaction, NewConversion, NewReaction
from core.ports import Permission
from core.processor import EventProcessor, build_replacement_text

ROBOT = "\N{ROBOT FACE}"
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeGateway:
    def __init__(self) -> None:
        self.posted: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.reactions_added: list[tuple[str, str]] = []
        self.reactions_removed: list[tuple[str, str]] = []
        self.suppressed: list[tuple[str, bool]] = []
        self.denied: set[Permission] = set()
        self.fail_delete = False
        self.fail_post = False
        self.post_delay = 0.0
        self.embeds: List[EmbedInfo] = []
        self._next_id = 100

    @property
    def self_id(self) -> str:
        return "bot"

    async def post_message(self, channel_id: str, text: str) -> str:
        if self.post_delay:
            await asyncio.sleep(self.post_delay)
        if self.fail_post:
            raise TransientPlatformError("send failed")
        self._next_id += 1
        self.posted.append((channel_id, text))
        return f"b{self._next_id}"

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        if self.fail_delete:
            raise TransientPlatformError("delete failed")
        self.deleted.append(message_id)
        return True

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        self.reactions_added.append((message_id, emoji))
        return True

    async def remove_own_reaction(self, channel_id: str, message_id: str, emoji: str) -> bool:
        self.reactions_removed.append((message_id, emoji))
        return True

    async def suppress_embeds(self, channel_id: str, message_id: str, suppress: bool) -> bool:
        self.suppressed.append((message_id, suppress))
        return True

    async def fetch_embeds(self, channel_id: str, message_id: str) -> List[EmbedInfo]:
        return list(self.embeds)

    async def has_permission(self, channel_id: str, actor_id: str, action: Permission) -> bool:
        assert actor_id == "bot"
        return action not in self.denied


def _ledger(tmp_path: Path) -> SQLiteLedger:
    ledger = SQLiteLedger(str(tmp_path / "ledger.db"))
    ledger.init_db()
    return ledger


def _processor(tmp_path: Path, gateway: FakeGateway, **overrides) -> tuple[EventProcessor, SQLiteLedger]:
    ledger = _ledger(tmp_path)
    config = ResponderConfig(**overrides)
    return EventProcessor(ledger=ledger, gateway=gateway, config=config, clock=lambda: NOW), ledger


def _message(
    text: str = "Check https://reddit.com/r/test and https://old.reddit.com/r/test",
    *,
    message_id: str = "m1",
    author_id: str = "u1",
    is_bot: bool = False,
    group_id: Optional[str] = "g1",
    is_direct: bool = False,
) -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        channel_id="c1",
        group_id=group_id,
        author_id=author_id,
        author_tag=f"{author_id}#0001",
        author_is_bot=is_bot,
        text=text,
        is_direct=is_direct,
    )


def _reaction(
    message_id: str,
    reactor_id: str,
    *,
    emoji: str = ROBOT,
    is_bot: bool = False,
) -> InboundReaction:
    return InboundReaction(
        message_id=message_id,
        channel_id="c1",
        group_id="g1",
        emoji=emoji,
        reactor_id=reactor_id,
        reactor_tag=f"{reactor_id}#0001",
        reactor_is_bot=is_bot,
    )


def test_message_with_links_posts_and_records(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)

    asyncio.run(processor.handle_message(_message()))

    assert gateway.posted == [("c1", "https://rxddit.com/r/test\nhttps://rxddit.com/r/test")]
    record = ledger.get_conversion("m1")
    assert record is not None
    assert record.original_links == ("https://reddit.com/r/test", "https://old.reddit.com/r/test")
    assert record.transformed_links == ("https://rxddit.com/r/test", "https://rxddit.com/r/test")
    assert record.transformed_text == "Check https://rxddit.com/r/test and https://rxddit.com/r/test"
    assert record.replacement_message_id == "b101"
    assert record.created_at == NOW
    assert gateway.reactions_added == [("m1", ROBOT)]
    assert gateway.suppressed == []


def test_full_text_mode_posts_rewritten_message(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, _ = _processor(tmp_path, gateway, content_mode="full_text")

    asyncio.run(processor.handle_message(_message()))

    assert gateway.posted == [("c1", "Check https://rxddit.com/r/test and https://rxddit.com/r/test")]


def test_affordance_on_replacement_and_embed_suppression(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, _ = _processor(tmp_path, gateway, affordance_target="replacement", suppress_embeds=True)

    asyncio.run(processor.handle_message(_message()))

    assert gateway.reactions_added == [("b101", ROBOT)]
    assert gateway.suppressed == [("m1", True)]


def test_unqualified_messages_are_ignored(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)

    asyncio.run(processor.handle_message(_message(is_bot=True)))
    asyncio.run(processor.handle_message(_message(text="")))
    asyncio.run(processor.handle_message(_message(group_id=None, is_direct=True)))
    asyncio.run(processor.handle_message(_message(text="nothing to see https://example.com")))

    assert gateway.posted == []
    assert ledger.stats().total_conversions == 0


def test_guild_allow_list(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway, allowed_group_ids=frozenset({"g2"}))

    asyncio.run(processor.handle_message(_message()))

    assert gateway.posted == []
    assert ledger.stats().total_conversions == 0


def test_missing_send_permission_is_a_no_op(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.denied = {Permission.SEND_MESSAGES}
    processor, ledger = _processor(tmp_path, gateway)

    asyncio.run(processor.handle_message(_message()))

    assert gateway.posted == []
    assert ledger.get_conversion("m1") is None


def test_missing_reaction_permission_still_records(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.denied = {Permission.ADD_REACTIONS, Permission.MANAGE_MESSAGES}
    processor, ledger = _processor(tmp_path, gateway, suppress_embeds=True)

    asyncio.run(processor.handle_message(_message()))

    assert ledger.get_conversion("m1") is not None
    assert gateway.reactions_added == []
    assert gateway.suppressed == []


def test_post_failure_is_contained(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.fail_post = True
    processor, ledger = _processor(tmp_path, gateway)

    asyncio.run(processor.handle_message(_message()))

    assert ledger.get_conversion("m1") is None


def test_post_timeout_is_contained(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.post_delay = 1.0
    processor, ledger = _processor(tmp_path, gateway, platform_timeout_seconds=0.01)

    asyncio.run(processor.handle_message(_message()))

    assert gateway.posted == []
    assert ledger.get_conversion("m1") is None


class FailingWriteLedger(SQLiteLedger):
    def record_conversion(self, record: NewConversion) -> None:
        raise StorageError("disk full")


class PurgingLedger(SQLiteLedger):
    """Deletes the conversion right before a reaction is written."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.revert_calls: List[str] = []

    def record_reaction(self, reaction: NewReaction) -> Optional[int]:
        self.delete_conversion(reaction.original_message_id)
        return super().record_reaction(reaction)

    def try_revert(self, original_message_id: str) -> bool:
        self.revert_calls.append(original_message_id)
        return super().try_revert(original_message_id)


def test_ledger_failure_after_post_is_contained(tmp_path: Path) -> None:
    gateway = FakeGateway()
    ledger = FailingWriteLedger(str(tmp_path / "ledger.db"))
    ledger.init_db()
    processor = EventProcessor(ledger=ledger, gateway=gateway, config=ResponderConfig())

    asyncio.run(processor.handle_message(_message()))

    assert len(gateway.posted) == 1
    assert gateway.reactions_added == []


def test_redelivered_message_posts_once(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)

    asyncio.run(processor.handle_message(_message()))
    asyncio.run(processor.handle_message(_message()))

    assert len(gateway.posted) == 1
    assert gateway.reactions_added == [("m1", ROBOT)]

    asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))
    assert gateway.deleted == ["b101"]


def test_storage_error_on_reaction_is_contained(tmp_path: Path, caplog) -> None:
    gateway = FakeGateway()
    # The ledger was never initialized, so every query fails.
    ledger = SQLiteLedger(str(tmp_path / "missing.db"))
    processor = EventProcessor(ledger=ledger, gateway=gateway, config=ResponderConfig())

    with caplog.at_level(logging.ERROR, logger="core.processor"):
        asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))

    assert gateway.deleted == []
    assert gateway.reactions_removed == []
    assert any("Storage error" in record.getMessage() for record in caplog.records)


def test_record_purged_before_reaction_is_not_reverted(tmp_path: Path) -> None:
    gateway = FakeGateway()
    ledger = PurgingLedger(str(tmp_path / "ledger.db"))
    ledger.init_db()
    processor = EventProcessor(ledger=ledger, gateway=gateway, config=ResponderConfig(), clock=lambda: NOW)
    asyncio.run(processor.handle_message(_message()))

    asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))

    assert ledger.revert_calls == []
    assert gateway.deleted == []
    assert ledger.get_conversion("m1") is None
    assert ledger.list_reactions("m1") == []


def test_author_reaction_reverts_once(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)
    asyncio.run(processor.handle_message(_message()))

    asyncio.run(processor.handle_reaction(_reaction("m1", "u2")))
    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is False
    assert gateway.deleted == []

    asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))
    asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))

    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is True
    assert gateway.deleted == ["b101"]
    assert gateway.reactions_removed == [("m1", ROBOT)]

    reactions = ledger.list_reactions("m1")
    assert [(r.reactor_id, r.is_revert_candidate) for r in reactions] == [
        ("u2", False),
        ("u1", True),
        ("u1", True),
    ]


def test_reaction_on_replacement_message_resolves_record(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway, affordance_target="replacement", suppress_embeds=True)
    asyncio.run(processor.handle_message(_message()))

    asyncio.run(processor.handle_reaction(_reaction("b101", "u1")))

    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is True
    assert gateway.deleted == ["b101"]
    assert gateway.reactions_removed == []
    assert gateway.suppressed == [("m1", True), ("m1", False)]


def test_concurrent_author_reactions_revert_once(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)
    asyncio.run(processor.handle_message(_message()))

    async def burst() -> None:
        await asyncio.gather(*(processor.handle_reaction(_reaction("m1", "u1")) for _ in range(5)))

    asyncio.run(burst())

    assert gateway.deleted == ["b101"]
    assert len(ledger.list_reactions("m1")) == 5


def test_ignored_reactions_are_not_recorded(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)
    asyncio.run(processor.handle_message(_message()))

    asyncio.run(processor.handle_reaction(_reaction("m1", "bot", is_bot=True)))
    asyncio.run(processor.handle_reaction(_reaction("m1", "u1", emoji="\N{THUMBS UP SIGN}")))
    asyncio.run(processor.handle_reaction(_reaction("unknown", "u1")))

    assert ledger.list_reactions("m1") == []
    assert ledger.stats().total_reactions == 0
    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is False


def test_cleanup_failures_do_not_block_each_other(tmp_path: Path) -> None:
    gateway = FakeGateway()
    processor, ledger = _processor(tmp_path, gateway)
    asyncio.run(processor.handle_message(_message()))
    gateway.fail_delete = True

    asyncio.run(processor.handle_reaction(_reaction("m1", "u1")))

    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is True
    assert gateway.deleted == []
    assert gateway.reactions_removed == [("m1", ROBOT)]


def test_auto_revert_when_no_rich_media(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.embeds = [EmbedInfo(kind="link", has_video=False, provider_name="reddit")]
    processor, ledger = _processor(
        tmp_path,
        gateway,
        auto_revert=AutoRevertConfig(enabled=True, embed_wait_seconds=0),
    )

    asyncio.run(processor.handle_message(_message()))

    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is True
    assert gateway.deleted == ["b101"]


def test_auto_revert_keeps_video_replacements(tmp_path: Path) -> None:
    gateway = FakeGateway()
    gateway.embeds = [EmbedInfo(kind="video", has_video=True, provider_name="rxddit")]
    processor, ledger = _processor(
        tmp_path,
        gateway,
        auto_revert=AutoRevertConfig(enabled=True, embed_wait_seconds=0),
    )

    asyncio.run(processor.handle_message(_message()))

    record = ledger.get_conversion("m1")
    assert record is not None and record.reverted is False
    assert gateway.deleted == []


def test_build_replacement_text_modes() -> None:
    links = ["https://rxddit.com/r/a", "https://rxddit.com/r/b"]
    assert build_replacement_text("x", links, "links") == "https://rxddit.com/r/a\nhttps://rxddit.com/r/b"
    assert build_replacement_text("see https://reddit.com/r/a", links, "full_text") == "see https://rxddit.com/r/a"
