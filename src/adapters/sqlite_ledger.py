"""SQLite ledger adapter.

Implements the core LedgerPort using a SQLite database. Every call opens its
own connection, so one ledger instance can be shared by concurrent workers,
threads, or processes pointing at the same file.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional

from core.errors import StorageError
from core.models import (
    ConversionRecord,
    LedgerStats,
    NewConversion,
    NewReaction,
    ReactionEvent,
)

LOGGER = logging.getLogger(__name__)

_CONVERSION_COLUMNS = """
    original_message_id,
    channel_id,
    group_id,
    author_id,
    author_tag,
    original_text,
    transformed_text,
    original_links,
    transformed_links,
    replacement_message_id,
    created_at,
    reverted
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_conversion(row: sqlite3.Row) -> ConversionRecord:
    return ConversionRecord(
        original_message_id=row["original_message_id"],
        channel_id=row["channel_id"],
        group_id=row["group_id"],
        author_id=row["author_id"],
        author_tag=row["author_tag"],
        original_text=row["original_text"],
        transformed_text=row["transformed_text"],
        original_links=tuple(json.loads(row["original_links"])),
        transformed_links=tuple(json.loads(row["transformed_links"])),
        replacement_message_id=row["replacement_message_id"],
        created_at=_from_db_time(row["created_at"]),
        reverted=bool(row["reverted"]),
    )


def _row_to_reaction(row: sqlite3.Row) -> ReactionEvent:
    return ReactionEvent(
        id=int(row["id"]),
        original_message_id=row["original_message_id"],
        reactor_id=row["reactor_id"],
        reactor_tag=row["reactor_tag"],
        emoji=row["emoji"],
        observed_at=_from_db_time(row["observed_at"]),
        is_revert_candidate=bool(row["is_revert_candidate"]),
    )


class SQLiteLedger:
    """SQLite store of conversions and reactions that satisfies LedgerPort."""

    def __init__(
        self,
        db_path: str,
        busy_timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._clock = clock

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection wrapped in one transaction, then close it."""

        try:
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._busy_timeout,
                isolation_level="IMMEDIATE",
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open ledger at {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"Ledger operation failed: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist.

        Tables:
        - conversions: one row per original message that got a replacement
        - reactions: append-only audit trail of trigger-emoji reactions
        """

        directory = os.path.dirname(os.path.abspath(self._db_path))
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._connect() as conn:
            # WAL lets readers proceed while a writer holds the lock.
            conn.execute("PRAGMA journal_mode = WAL")
            # conversions is keyed by the original message id so reprocessing
            # the same message replaces its row instead of adding another.
            # Fields:
            # - original_message_id: id of the user's message (PRIMARY KEY)
            # - channel_id / group_id: channel and guild the message lives in
            # - author_id / author_tag: who posted the original
            # - original_text / transformed_text: message text before/after rewriting
            # - original_links / transformed_links: JSON arrays, same length and order
            # - replacement_message_id: id of the bot-authored message
            # - created_at: UTC ISO-8601 timestamp used for retention
            # - reverted: 0 until the single allowed revert sets it to 1
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversions (
                    original_message_id TEXT PRIMARY KEY,
                    channel_id TEXT NOT NULL,
                    group_id TEXT NOT NULL,
                    author_id TEXT NOT NULL,
                    author_tag TEXT NOT NULL,
                    original_text TEXT NOT NULL,
                    transformed_text TEXT NOT NULL,
                    original_links TEXT NOT NULL,
                    transformed_links TEXT NOT NULL,
                    replacement_message_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    reverted INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            # reactions is append-only; rows go away only with their conversion.
            # Fields:
            # - id: auto-increment primary key
            # - original_message_id: conversion the reaction belongs to
            # - reactor_id / reactor_tag: who reacted
            # - emoji: the reaction key
            # - observed_at: UTC ISO-8601 timestamp of the observation
            # - is_revert_candidate: 1 if the reactor authored the original
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    original_message_id TEXT NOT NULL
                        REFERENCES conversions(original_message_id) ON DELETE CASCADE,
                    reactor_id TEXT NOT NULL,
                    reactor_tag TEXT NOT NULL,
                    emoji TEXT NOT NULL,
                    observed_at TEXT NOT NULL,
                    is_revert_candidate INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            for statement in (
                "CREATE INDEX IF NOT EXISTS idx_conversions_replacement ON conversions(replacement_message_id)",
                "CREATE INDEX IF NOT EXISTS idx_conversions_author ON conversions(author_id)",
                "CREATE INDEX IF NOT EXISTS idx_conversions_channel ON conversions(channel_id)",
                "CREATE INDEX IF NOT EXISTS idx_conversions_group ON conversions(group_id)",
                "CREATE INDEX IF NOT EXISTS idx_conversions_created ON conversions(created_at)",
                "CREATE INDEX IF NOT EXISTS idx_reactions_message ON reactions(original_message_id)",
                "CREATE INDEX IF NOT EXISTS idx_reactions_reactor ON reactions(reactor_id)",
            ):
                conn.execute(statement)

    def record_conversion(self, record: NewConversion) -> None:
        """Upsert a conversion; a replaced row starts over as not reverted."""

        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO conversions ({_CONVERSION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                ON CONFLICT(original_message_id) DO UPDATE SET
                    channel_id = excluded.channel_id,
                    group_id = excluded.group_id,
                    author_id = excluded.author_id,
                    author_tag = excluded.author_tag,
                    original_text = excluded.original_text,
                    transformed_text = excluded.transformed_text,
                    original_links = excluded.original_links,
                    transformed_links = excluded.transformed_links,
                    replacement_message_id = excluded.replacement_message_id,
                    created_at = excluded.created_at,
                    reverted = 0
                """,
                (
                    record.original_message_id,
                    record.channel_id,
                    record.group_id,
                    record.author_id,
                    record.author_tag,
                    record.original_text,
                    record.transformed_text,
                    json.dumps(list(record.original_links)),
                    json.dumps(list(record.transformed_links)),
                    record.replacement_message_id,
                    _to_db_time(record.created_at),
                ),
            )

    def get_conversion(self, original_message_id: str) -> Optional[ConversionRecord]:
        """Return the conversion for an original message id, if any."""

        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_CONVERSION_COLUMNS} FROM conversions WHERE original_message_id = ?",
                (original_message_id,),
            ).fetchone()
        return _row_to_conversion(row) if row else None

    def get_conversion_by_replacement_id(self, replacement_message_id: str) -> Optional[ConversionRecord]:
        """Return the conversion whose replacement message has this id, if any."""

        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_CONVERSION_COLUMNS} FROM conversions WHERE replacement_message_id = ?",
                (replacement_message_id,),
            ).fetchone()
        return _row_to_conversion(row) if row else None

    def has_conversion(self, original_message_id: str) -> bool:
        """Check if a conversion exists for an original message id."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM conversions WHERE original_message_id = ?",
                (original_message_id,),
            ).fetchone()
        return row is not None

    def try_revert(self, original_message_id: str) -> bool:
        """Atomically flip ``reverted`` from 0 to 1.

        Returns True for exactly one caller per conversion; False when the
        conversion is unknown or already reverted.
        """

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE conversions SET reverted = 1 WHERE original_message_id = ? AND reverted = 0",
                (original_message_id,),
            )
            return cur.rowcount == 1

    def delete_conversion(self, original_message_id: str) -> bool:
        """Delete a conversion and its reactions; True if a row was removed."""

        with self._connect() as conn:
            conn.execute(
                "DELETE FROM reactions WHERE original_message_id = ?",
                (original_message_id,),
            )
            cur = conn.execute(
                "DELETE FROM conversions WHERE original_message_id = ?",
                (original_message_id,),
            )
            return cur.rowcount > 0

    def record_reaction(self, reaction: NewReaction) -> Optional[int]:
        """Append a reaction and return its id.

        Returns None if the conversion no longer exists, e.g. because a
        retention sweep removed it while the reaction was in flight.
        """

        with self._connect() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO reactions (
                        original_message_id,
                        reactor_id,
                        reactor_tag,
                        emoji,
                        observed_at,
                        is_revert_candidate
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        reaction.original_message_id,
                        reaction.reactor_id,
                        reaction.reactor_tag,
                        reaction.emoji,
                        _to_db_time(reaction.observed_at),
                        1 if reaction.is_revert_candidate else 0,
                    ),
                )
            except sqlite3.IntegrityError:
                LOGGER.debug("Dropped reaction for unknown conversion %s", reaction.original_message_id)
                return None
            return int(cur.lastrowid)

    def list_reactions(self, original_message_id: str) -> List[ReactionEvent]:
        """Return the reactions of a conversion, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, original_message_id, reactor_id, reactor_tag, emoji,
                       observed_at, is_revert_candidate
                FROM reactions
                WHERE original_message_id = ?
                ORDER BY observed_at ASC, id ASC
                """,
                (original_message_id,),
            ).fetchall()
        return [_row_to_reaction(row) for row in rows]

    def _list_where(self, column: str, value: str, limit: int) -> List[ConversionRecord]:
        if limit <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_CONVERSION_COLUMNS}
                FROM conversions
                WHERE {column} = ?
                ORDER BY created_at DESC, original_message_id DESC
                LIMIT ?
                """,
                (value, limit),
            ).fetchall()
        return [_row_to_conversion(row) for row in rows]

    def list_by_author(self, author_id: str, limit: int = 50) -> List[ConversionRecord]:
        """Return an author's most recent conversions, newest first."""

        return self._list_where("author_id", author_id, limit)

    def list_by_channel(self, channel_id: str, limit: int = 50) -> List[ConversionRecord]:
        """Return a channel's most recent conversions, newest first."""

        return self._list_where("channel_id", channel_id, limit)

    def list_by_group(self, group_id: str, limit: int = 50) -> List[ConversionRecord]:
        """Return a guild's most recent conversions, newest first."""

        return self._list_where("group_id", group_id, limit)

    def purge_older_than(self, age: timedelta) -> int:
        """Delete conversions older than ``age`` along with their reactions.

        Both deletes run in one transaction so no reaction is left without its
        conversion. Returns the number of conversions removed.
        """

        cutoff = _to_db_time(self._clock() - age)
        with self._connect() as conn:
            conn.execute(
                """
                DELETE FROM reactions WHERE original_message_id IN (
                    SELECT original_message_id FROM conversions WHERE created_at < ?
                )
                """,
                (cutoff,),
            )
            cur = conn.execute(
                "DELETE FROM conversions WHERE created_at < ?",
                (cutoff,),
            )
            return cur.rowcount

    def stats(self) -> LedgerStats:
        """Return aggregate counters read in a single statement."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM conversions) AS total_conversions,
                    (SELECT COUNT(*) FROM reactions) AS total_reactions,
                    (SELECT COUNT(*) FROM conversions WHERE reverted = 1) AS total_reverted
                """
            ).fetchone()
        return LedgerStats(
            total_conversions=int(row["total_conversions"]),
            total_reactions=int(row["total_reactions"]),
            total_reverted=int(row["total_reverted"]),
        )
