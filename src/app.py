"""Application entry point for the rxrelay responder."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import discord
from art import tprint
from dotenv import load_dotenv

import settings
from adapters.discord_gateway import DiscordGateway
from adapters.discord_mapper import build_message, build_reaction
from adapters.sqlite_ledger import SQLiteLedger
from client import build_client, load_token
from core.config import AutoRevertConfig, ResponderConfig
from core.errors import StorageError
from core.processor import EventProcessor
from core.retention import run_retention_sweep

NAME = "RXRELAY"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/rxrelay.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_ledger() -> SQLiteLedger:
    ledger = SQLiteLedger(settings.DB_PATH, busy_timeout=settings.DB_BUSY_TIMEOUT)
    ledger.init_db()
    return ledger


def _responder_config() -> ResponderConfig:
    return ResponderConfig(
        trigger_emoji=settings.TRIGGER_EMOJI,
        content_mode=settings.CONTENT_MODE,
        affordance_target=settings.AFFORDANCE_TARGET,
        suppress_embeds=settings.SUPPRESS_EMBEDS,
        platform_timeout_seconds=settings.PLATFORM_TIMEOUT,
        allowed_group_ids=settings.ALLOWED_GUILD_IDS,
        auto_revert=AutoRevertConfig(
            enabled=settings.AUTO_REVERT_ENABLED,
            embed_wait_seconds=settings.AUTO_REVERT_WAIT,
        ),
    )


async def _retention_loop(ledger: SQLiteLedger) -> None:
    """Sweep old conversions now and then on the configured interval."""

    logger = logging.getLogger(__name__)
    interval = settings.RETENTION_INTERVAL_HOURS * 60 * 60
    while True:
        try:
            run_retention_sweep(ledger, settings.RETENTION_DAYS)
        except StorageError:
            logger.exception("Retention sweep failed")
        await asyncio.sleep(interval)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting rxrelay")
    token = load_token()

    ledger = _open_ledger()
    logger.info("Ledger initialized at %s", settings.DB_PATH)

    client = build_client()
    gateway = DiscordGateway(client)
    processor = EventProcessor(ledger=ledger, gateway=gateway, config=_responder_config())
    background: list[asyncio.Task] = []

    @client.event
    async def on_ready() -> None:
        logger.info("Logged in as %s", client.user)
        logger.info("Monitoring for Reddit links...")
        # on_ready fires again after reconnects; one sweeper is enough.
        if not background:
            background.append(asyncio.create_task(_retention_loop(ledger)))

    # Handlers stay thin and defer all filtering to the core processor for
    # consistency and testability.
    @client.event
    async def on_message(message: discord.Message) -> None:
        try:
            await processor.handle_message(build_message(message))
        except Exception:
            logger.exception("Error while processing message %s", message.id)

    @client.event
    async def on_raw_reaction_add(payload: discord.RawReactionActionEvent) -> None:
        try:
            reaction = await build_reaction(client, payload)
            await processor.handle_reaction(reaction)
        except Exception:
            logger.exception("Error while processing reaction on message %s", payload.message_id)

    try:
        # log_handler=None keeps discord.py on the logging setup above.
        client.run(token, log_handler=None)
    except discord.LoginFailure:
        logger.error("Failed to login: the Discord token was rejected")
        raise SystemExit(1)
    logger.info("Shutting down rxrelay")


def _stats() -> None:
    ledger = _open_ledger()
    stats = ledger.stats()
    print(f"Conversions: {stats.total_conversions}")
    print(f"Reactions:   {stats.total_reactions}")
    print(f"Reverted:    {stats.total_reverted}")


def _purge(days: Optional[int]) -> None:
    _configure_logging()
    ledger = _open_ledger()
    removed = run_retention_sweep(ledger, settings.RETENTION_DAYS if days is None else days)
    print(f"Removed {removed} conversion(s)")


def _history(author: Optional[str], channel: Optional[str], guild: Optional[str], limit: int) -> None:
    ledger = _open_ledger()
    if author:
        records = ledger.list_by_author(author, limit)
    elif channel:
        records = ledger.list_by_channel(channel, limit)
    else:
        records = ledger.list_by_group(guild or "", limit)

    if not records:
        print("No conversions found.")
        return

    for record in records:
        state = "reverted" if record.reverted else "active"
        created = record.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        links = ", ".join(record.transformed_links)
        print(f"{created} | {record.original_message_id} | {record.author_tag} | {state} | {links}")


def _reactions(message_id: str) -> None:
    ledger = _open_ledger()
    reactions = ledger.list_reactions(message_id)
    if not reactions:
        print("No reactions recorded for this message.")
        return
    for reaction in reactions:
        observed = reaction.observed_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        marker = "author" if reaction.is_revert_candidate else "other"
        print(f"{observed} | {reaction.reactor_tag} ({reaction.reactor_id}) | {reaction.emoji} | {marker}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="rxrelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the responder")
    subparsers.add_parser("stats", help="Show ledger statistics")

    purge_parser = subparsers.add_parser("purge", help="Remove old conversions now")
    purge_parser.add_argument("--days", type=int, default=None, help="Retention in days (defaults to config)")

    history_parser = subparsers.add_parser("history", help="List recorded conversions")
    scope = history_parser.add_mutually_exclusive_group(required=True)
    scope.add_argument("--author", help="Author user id")
    scope.add_argument("--channel", help="Channel id")
    scope.add_argument("--guild", help="Guild id")
    history_parser.add_argument("--limit", type=int, default=50)

    reactions_parser = subparsers.add_parser("reactions", help="Show the reaction trail of a message")
    reactions_parser.add_argument("message_id", help="Original message id")

    args = parser.parse_args(argv)
    if args.command == "stats":
        _stats()
        return
    if args.command == "purge":
        _purge(args.days)
        return
    if args.command == "history":
        _history(args.author, args.channel, args.guild, args.limit)
        return
    if args.command == "reactions":
        _reactions(args.message_id)
        return
    _run()


if __name__ == "__main__":
    main()
