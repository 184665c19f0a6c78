"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class TrackedItem:
    """A mod being watched for new releases."""

    id: int
    curseforge_id: int
    name: str
    game_name: str
    last_updated: str
    page_url: Optional[str] = None


@dataclass(frozen=True)
class UpdateResult:
    """A newer release found for one tracked item.

    Lives only for a single evaluate-then-dispatch cycle.
    """

    item_id: Optional[int]
    curseforge_id: int
    name: str
    author: str
    old_update_time: str
    new_update_time: str
    latest_file_name: str
    logo_url: Optional[str] = None
    changelog: Optional[str] = None


@dataclass(frozen=True)
class Destination:
    """A Discord webhook that notifications can be sent to."""

    id: int
    name: str
    url: str
    enabled: bool = True
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    use_custom_template: bool = False


@dataclass(frozen=True)
class NotificationFields:
    """Fields handed to a delivery adapter for rendering."""

    mod_id: int
    mod_name: str
    mod_author: str
    new_release_date: str
    old_release_date: str
    latest_file_name: str
    logo_url: Optional[str] = None

    @classmethod
    def from_update(cls, update: UpdateResult) -> "NotificationFields":
        return cls(
            mod_id=update.curseforge_id,
            mod_name=update.name,
            mod_author=update.author,
            new_release_date=update.new_update_time,
            old_release_date=update.old_update_time,
            latest_file_name=update.latest_file_name,
            logo_url=update.logo_url,
        )


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of delivering one update to one destination."""

    destination_id: int
    delivered: bool
    attempts: int
    error: Optional[str] = None


@dataclass
class CheckSession:
    """Ephemeral state for one sweep."""

    session_id: int
    started_at: datetime
    processed_keys: set[str] = field(default_factory=set)
    in_progress: bool = True


@dataclass(frozen=True)
class SweepResult:
    """What a sweep reports back to its caller."""

    success: bool
    mods: list[TrackedItem] = field(default_factory=list)
    updates_found: bool = False
    error: Optional[str] = None
    skipped: bool = False
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class WebhookTemplate:
    """Layout of a Discord notification, with template placeholders."""

    title: str = "🔄 Mod Update Available!"
    color: int = 5814783
    content: Optional[str] = None
    use_embed: bool = True
    author_name: Optional[str] = None
    author_icon_url: Optional[str] = None
    footer_text: Optional[str] = None
    footer_icon_url: Optional[str] = None
    include_timestamp: bool = False
    embed_fields: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Activity:
    """Entry for the activity log."""

    activity_type: str
    description: str
    mod_id: Optional[int] = None
    mod_name: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
