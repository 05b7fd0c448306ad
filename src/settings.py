"""Static configuration for rxrelay.

All user-editable settings (responder behaviour, storage, retention, logging)
live in a single JSON file for quick edits without touching Python. Secrets
stay in the environment.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("RXRELAY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite ledger, relative paths are under the project root.
_storage = _CONFIG.get("storage", {})
DB_PATH = _resolve_path(_storage.get("db_path", "data/messages.db"))
DB_BUSY_TIMEOUT = float(_storage.get("busy_timeout_seconds", 10))

# Responder switches consumed by the core processor.
# - CONTENT_MODE: "links" posts only converted links, "full_text" the rewritten message
# - AFFORDANCE_TARGET: "original" or "replacement", where the bot adds its emoji
# - SUPPRESS_EMBEDS: hide the original's Reddit embed while the replacement is up
_responder = _CONFIG.get("responder", {})
TRIGGER_EMOJI = _responder.get("trigger_emoji", "\N{ROBOT FACE}")
CONTENT_MODE = _responder.get("content_mode", "links")
AFFORDANCE_TARGET = _responder.get("affordance_target", "original")
SUPPRESS_EMBEDS = bool(_responder.get("suppress_embeds", False))
PLATFORM_TIMEOUT = float(_responder.get("platform_timeout_seconds", 10))
# Guild ids are kept as strings to match Discord snowflakes in the core.
ALLOWED_GUILD_IDS = frozenset(str(guild_id) for guild_id in _responder.get("allowed_guild_ids", []))

# Auto-revert is an optional policy: wait for embeds, revert when there is no
# video or gallery worth keeping.
_auto_revert = _CONFIG.get("auto_revert", {})
AUTO_REVERT_ENABLED = bool(_auto_revert.get("enabled", False))
AUTO_REVERT_WAIT = float(_auto_revert.get("embed_wait_seconds", 5))

# Retention keeps the ledger bounded; the sweep runs on startup and then on an interval.
_retention = _CONFIG.get("retention", {})
RETENTION_DAYS = int(_retention.get("days", 30))
RETENTION_INTERVAL_HOURS = float(_retention.get("interval_hours", 24))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
