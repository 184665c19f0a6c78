"""Static configuration for modwatch.

All user-editable settings (storage, pacing, schedule, notifications,
logging) live in a single JSON file for quick edits without touching Python.
Secrets such as the CurseForge API key come from the environment (.env).
"""

import json
import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def resolve_config_path(project_root: str) -> str:
    """Load the project .env, then pick the config file (MODWATCH_CONFIG wins)."""

    load_dotenv(os.path.join(project_root, ".env"))
    return os.environ.get("MODWATCH_CONFIG", os.path.join(project_root, "config.json"))


CONFIG_PATH = resolve_config_path(PROJECT_ROOT)


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

# Where to store the SQLite database (mods, webhooks, templates, activity, state).
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "modwatch.db"))
ACTIVITY_TTL_DAYS = int(_database.get("activity_ttl_days", 90))

# Catalog access. The API key itself is read from CURSEFORGE_API_KEY or the
# settings table, never from this file.
_catalog = _CONFIG.get("catalog", {})
CATALOG_BASE_URL = _catalog.get("base_url", "https://api.curseforge.com/v1")
HTTP_TIMEOUT_SECONDS = float(_CONFIG.get("http", {}).get("timeout_seconds", 10))

# Pacing between webhook deliveries:
# - DELIVERY_DELAY_SECONDS: wait before every delivery
# - RATE_LIMIT_BACKOFF_SECONDS: wait before the single retry after a 429
_pacing = _CONFIG.get("pacing", {})
DELIVERY_DELAY_SECONDS = float(_pacing.get("delivery_delay_seconds", 1.5))
RATE_LIMIT_BACKOFF_SECONDS = float(_pacing.get("rate_limit_backoff_seconds", 5))

# Scheduled checks run every N minutes unless the user stored another value.
_schedule = _CONFIG.get("schedule", {})
DEFAULT_INTERVAL_MINUTES = int(_schedule.get("default_interval_minutes", 30))
MANUAL_COOLDOWN_SECONDS = int(_CONFIG.get("cooldown", {}).get("manual_seconds", 30))

# Deduplication windows for update keys and completion events.
_dedup = _CONFIG.get("dedup", {})
UPDATE_BUCKET_SECONDS = int(_dedup.get("update_bucket_seconds", 60))
EVENT_WINDOW_SECONDS = float(_dedup.get("event_window_seconds", 60))

_notifications = _CONFIG.get("notifications", {})
DEFAULT_USERNAME = _notifications.get("default_username", "Mod Tracker")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
