"""SQLite storage adapter.

Implements the core store, state, and activity-log ports using a simple
SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from core.models import Activity, Destination, TrackedItem, WebhookTemplate

DEFAULT_INTERVAL_MINUTES = 30

DEFAULT_EMBED_FIELDS = [
    {"name": "Mod Name", "value": "{modName}", "inline": True},
    {"name": "Author", "value": "{modAuthorName}", "inline": True},
    {"name": "Previous Release", "value": "{oldPreviousDate}", "inline": False},
    {"name": "New Release", "value": "{newReleaseDate}", "inline": False},
    {"name": "Latest File", "value": "{lastestModFileName}", "inline": False},
]


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core port contracts."""

    def __init__(self, db_path: str, default_interval: int = DEFAULT_INTERVAL_MINUTES) -> None:
        self._db_path = db_path
        self._default_interval = default_interval

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - mods: tracked mods and the release date we last saw
        - webhooks: Discord destinations
        - mod_webhook_assignments: which webhooks hear about which mods
        - webhook_templates: the default template plus per-webhook overrides
        - settings: key/value user settings (api key, interval)
        - app_state: named timestamps that must survive restarts
        - activities: append-only activity log
        """

        with self._connect() as conn:
            # last_updated holds the catalog's release date verbatim; it is
            # compared as text, never parsed.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mods (
                    id INTEGER PRIMARY KEY,
                    curseforge_id INTEGER NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    game_name TEXT NOT NULL,
                    last_updated TEXT NOT NULL,
                    page_url TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS webhooks (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    avatar_url TEXT,
                    username TEXT,
                    enabled BOOLEAN NOT NULL DEFAULT 1,
                    use_custom_template BOOLEAN NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mod_webhook_assignments (
                    mod_id INTEGER NOT NULL,
                    webhook_id INTEGER NOT NULL,
                    PRIMARY KEY (mod_id, webhook_id),
                    FOREIGN KEY (mod_id) REFERENCES mods (id) ON DELETE CASCADE,
                    FOREIGN KEY (webhook_id) REFERENCES webhooks (id) ON DELETE CASCADE
                )
                """
            )
            # webhook_id is NULL for the single default template.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS webhook_templates (
                    id INTEGER PRIMARY KEY,
                    is_default BOOLEAN NOT NULL DEFAULT 0,
                    webhook_id INTEGER UNIQUE,
                    title TEXT NOT NULL,
                    color INTEGER NOT NULL,
                    content TEXT,
                    use_embed BOOLEAN NOT NULL DEFAULT 1,
                    author_name TEXT,
                    author_icon_url TEXT,
                    footer_text TEXT,
                    footer_icon_url TEXT,
                    include_timestamp BOOLEAN NOT NULL DEFAULT 0,
                    embed_fields TEXT NOT NULL,
                    FOREIGN KEY (webhook_id) REFERENCES webhooks (id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_state (
                    key TEXT PRIMARY KEY,
                    value TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS activities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    activity_type TEXT NOT NULL,
                    mod_id INTEGER,
                    mod_name TEXT,
                    description TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    metadata TEXT
                )
                """
            )

            has_default = conn.execute(
                "SELECT 1 FROM webhook_templates WHERE is_default = 1"
            ).fetchone()
            if not has_default:
                self._insert_template(conn, WebhookTemplate(embed_fields=DEFAULT_EMBED_FIELDS), None)

    # -- mods ---------------------------------------------------------------

    def add_mod(
        self,
        curseforge_id: int,
        name: str,
        game_name: str,
        last_updated: str,
        page_url: Optional[str] = None,
    ) -> int:
        """Insert a tracked mod and return its id."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO mods (curseforge_id, name, game_name, last_updated, page_url)
                VALUES (?, ?, ?, ?, ?)
                """,
                (curseforge_id, name, game_name, last_updated, page_url),
            )
            return int(cur.lastrowid)

    def has_mod(self, curseforge_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM mods WHERE curseforge_id = ?", (curseforge_id,)
            ).fetchone()
        return row is not None

    def list_tracked_items(self) -> list[TrackedItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, curseforge_id, name, game_name, last_updated, page_url FROM mods ORDER BY id"
            ).fetchall()
        return [
            TrackedItem(
                id=row["id"],
                curseforge_id=row["curseforge_id"],
                name=row["name"],
                game_name=row["game_name"],
                last_updated=row["last_updated"],
                page_url=row["page_url"],
            )
            for row in rows
        ]

    def set_last_updated(self, item_id: int, last_updated: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE mods SET last_updated = ? WHERE id = ?",
                (last_updated, item_id),
            )

    def get_mod(self, mod_id: int) -> Optional[TrackedItem]:
        return next((item for item in self.list_tracked_items() if item.id == mod_id), None)

    def delete_mod(self, mod_id: int) -> Optional[TrackedItem]:
        """Stop tracking a mod and return what was removed.

        Assignments go with the mod; past activity entries are kept but lose
        their link to it.
        """

        item = self.get_mod(mod_id)
        if item is None:
            return None
        with self._connect() as conn:
            conn.execute("UPDATE activities SET mod_id = NULL WHERE mod_id = ?", (mod_id,))
            conn.execute("DELETE FROM mod_webhook_assignments WHERE mod_id = ?", (mod_id,))
            conn.execute("DELETE FROM mods WHERE id = ?", (mod_id,))
        return item

    # -- webhooks -----------------------------------------------------------

    def add_webhook(
        self,
        name: str,
        url: str,
        username: Optional[str] = None,
        avatar_url: Optional[str] = None,
        enabled: bool = True,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO webhooks (name, url, avatar_url, username, enabled, use_custom_template)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (name, url, avatar_url, username, enabled),
            )
            return int(cur.lastrowid)

    def assign_webhook(self, mod_id: int, webhook_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO mod_webhook_assignments (mod_id, webhook_id) VALUES (?, ?)",
                (mod_id, webhook_id),
            )

    def remove_webhook_assignment(self, mod_id: int, webhook_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM mod_webhook_assignments WHERE mod_id = ? AND webhook_id = ?",
                (mod_id, webhook_id),
            )
            return cur.rowcount > 0

    def get_webhook(self, webhook_id: int) -> Optional[Destination]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone()
        return self._row_to_destination(row) if row else None

    def update_webhook(self, webhook: Destination) -> None:
        """Overwrite a webhook's editable fields; the template flag is left alone."""

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE webhooks
                SET name = ?, url = ?, avatar_url = ?, username = ?, enabled = ?
                WHERE id = ?
                """,
                (webhook.name, webhook.url, webhook.avatar_url, webhook.username, webhook.enabled, webhook.id),
            )

    def delete_webhook(self, webhook_id: int) -> Optional[Destination]:
        """Remove a webhook together with its assignments and custom template."""

        webhook = self.get_webhook(webhook_id)
        if webhook is None:
            return None
        with self._connect() as conn:
            conn.execute("DELETE FROM mod_webhook_assignments WHERE webhook_id = ?", (webhook_id,))
            conn.execute("DELETE FROM webhook_templates WHERE webhook_id = ?", (webhook_id,))
            conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
        return webhook

    def list_webhooks(self) -> list[Destination]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM webhooks ORDER BY name").fetchall()
        return [self._row_to_destination(row) for row in rows]

    def list_destinations_for_item(self, item_id: int) -> list[Destination]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT w.* FROM webhooks w
                JOIN mod_webhook_assignments a ON a.webhook_id = w.id
                WHERE a.mod_id = ?
                ORDER BY w.id
                """,
                (item_id,),
            ).fetchall()
        return [self._row_to_destination(row) for row in rows]

    @staticmethod
    def _row_to_destination(row: sqlite3.Row) -> Destination:
        return Destination(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            enabled=bool(row["enabled"]),
            username=row["username"],
            avatar_url=row["avatar_url"],
            use_custom_template=bool(row["use_custom_template"]),
        )

    # -- templates ----------------------------------------------------------

    def _insert_template(
        self, conn: sqlite3.Connection, template: WebhookTemplate, webhook_id: Optional[int]
    ) -> None:
        conn.execute(
            """
            INSERT INTO webhook_templates (
                is_default,
                webhook_id,
                title,
                color,
                content,
                use_embed,
                author_name,
                author_icon_url,
                footer_text,
                footer_icon_url,
                include_timestamp,
                embed_fields
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(webhook_id) DO UPDATE SET
                title = excluded.title,
                color = excluded.color,
                content = excluded.content,
                use_embed = excluded.use_embed,
                author_name = excluded.author_name,
                author_icon_url = excluded.author_icon_url,
                footer_text = excluded.footer_text,
                footer_icon_url = excluded.footer_icon_url,
                include_timestamp = excluded.include_timestamp,
                embed_fields = excluded.embed_fields
            """,
            (
                webhook_id is None,
                webhook_id,
                template.title,
                template.color,
                template.content,
                template.use_embed,
                template.author_name,
                template.author_icon_url,
                template.footer_text,
                template.footer_icon_url,
                template.include_timestamp,
                json.dumps(template.embed_fields),
            ),
        )

    def save_webhook_template(self, webhook_id: int, template: WebhookTemplate) -> None:
        """Store a custom template for a webhook and switch the webhook to it."""

        with self._connect() as conn:
            self._insert_template(conn, template, webhook_id)
            conn.execute(
                "UPDATE webhooks SET use_custom_template = 1 WHERE id = ?",
                (webhook_id,),
            )

    def delete_custom_template(self, webhook_id: int) -> None:
        """Drop a webhook's own template so it falls back to the default."""

        with self._connect() as conn:
            conn.execute("DELETE FROM webhook_templates WHERE webhook_id = ?", (webhook_id,))
            conn.execute(
                "UPDATE webhooks SET use_custom_template = 0 WHERE id = ?",
                (webhook_id,),
            )

    def get_template_for(self, destination: Destination) -> WebhookTemplate:
        """Return the webhook's own template when enabled, else the default."""

        with self._connect() as conn:
            row = None
            if destination.use_custom_template:
                row = conn.execute(
                    "SELECT * FROM webhook_templates WHERE webhook_id = ?",
                    (destination.id,),
                ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT * FROM webhook_templates WHERE is_default = 1"
                ).fetchone()
        if row is None:
            return WebhookTemplate(embed_fields=DEFAULT_EMBED_FIELDS)
        return WebhookTemplate(
            title=row["title"],
            color=row["color"],
            content=row["content"],
            use_embed=bool(row["use_embed"]),
            author_name=row["author_name"],
            author_icon_url=row["author_icon_url"],
            footer_text=row["footer_text"],
            footer_icon_url=row["footer_icon_url"],
            include_timestamp=bool(row["include_timestamp"]),
            embed_fields=json.loads(row["embed_fields"]),
        )

    # -- settings -----------------------------------------------------------

    def _get_setting(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set_setting(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def get_credential(self) -> Optional[str]:
        value = self._get_setting("api_key")
        return value or None

    def set_api_key(self, api_key: str) -> None:
        self._set_setting("api_key", api_key)

    def get_configured_interval(self) -> int:
        value = self._get_setting("update_interval")
        try:
            return int(value) if value is not None else self._default_interval
        except ValueError:
            return self._default_interval

    def set_update_interval(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("update interval must be a positive number of minutes")
        self._set_setting("update_interval", str(minutes))

    # -- persisted timestamps -----------------------------------------------

    def get_timestamp(self, name: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM app_state WHERE key = ?", (name,)).fetchone()
        return _parse_timestamp(row["value"]) if row else None

    def set_timestamp(self, name: str, value: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (name, value.isoformat()),
            )

    def clear_timestamp(self, name: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM app_state WHERE key = ?", (name,))

    # -- activity log -------------------------------------------------------

    def add_activity(self, activity: Activity) -> None:
        """Append an entry to the activity log."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO activities (activity_type, mod_id, mod_name, description, timestamp, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.activity_type,
                    activity.mod_id,
                    activity.mod_name,
                    activity.description,
                    activity.timestamp.isoformat(),
                    json.dumps(activity.metadata),
                ),
            )

    def list_activities(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return the most recent activities, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM activities ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            {
                "activity_type": row["activity_type"],
                "mod_id": row["mod_id"],
                "mod_name": row["mod_name"],
                "description": row["description"],
                "timestamp": row["timestamp"],
                "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
            }
            for row in rows
        ]

    def clear_activities(self) -> int:
        with self._connect() as conn:
            return conn.execute("DELETE FROM activities").rowcount

    def cleanup_activities(self, ttl_days: int) -> int:
        """Delete old activity entries and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM activities WHERE timestamp < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount
