"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of which webhook template is in use.
"""

from __future__ import annotations

import dataclasses
import re
from datetime import datetime, timezone
from typing import Any, Optional

from core.models import Destination, NotificationFields, WebhookTemplate

DEFAULT_USERNAME = "Mod Tracker"
DEFAULT_CONTENT = "🔄 Mod Update Available!"
TEST_TITLE = "🧪 Test Message"

_ROLE_MENTION = re.compile(r"\{&(\d+)\}")
_CHANNEL_MENTION = re.compile(r"\{#(\d+)\}")


def _ordinal_suffix(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def format_release_date(value: str) -> str:
    """Render an ISO-8601 date as e.g. '5th March 2024 at 14:03 UTC'.

    Values that do not parse are returned unchanged.
    """

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    utc = parsed.astimezone(timezone.utc)
    day = utc.day
    return f"{day}{_ordinal_suffix(day)} {utc:%B %Y} at {utc:%H:%M} UTC"


def replace_template_variables(text: str, fields: NotificationFields) -> str:
    """Substitute the supported placeholders in a template string."""

    replacements = {
        "{modID}": str(fields.mod_id),
        "{modName}": fields.mod_name,
        "{newReleaseDate}": format_release_date(fields.new_release_date),
        "{oldPreviousDate}": format_release_date(fields.old_release_date),
        "{everyone}": "@everyone",
        "{here}": "@here",
        # Older templates carry the misspelled name; both must keep working.
        "{lastestModFileName}": fields.latest_file_name,
        "{latestModFileName}": fields.latest_file_name,
        "{modAuthorName}": fields.mod_author,
    }
    result = text
    for key, value in replacements.items():
        result = result.replace(key, value)

    result = _ROLE_MENTION.sub(lambda match: f"<@&{match.group(1)}>", result)
    return _CHANNEL_MENTION.sub(lambda match: f"<#{match.group(1)}>", result)


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


def build_embed(
    template: WebhookTemplate,
    fields: NotificationFields,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Create the Discord embed object for one update."""

    embed: dict[str, Any] = {
        "title": replace_template_variables(template.title, fields),
        "color": template.color,
        "fields": [
            {
                **field,
                "name": replace_template_variables(str(field.get("name", "")), fields),
                "value": replace_template_variables(str(field.get("value", "")), fields),
            }
            for field in template.embed_fields
        ],
    }

    author_name = _non_blank(template.author_name)
    if author_name:
        author = {"name": replace_template_variables(author_name, fields)}
        icon_url = _non_blank(template.author_icon_url)
        if icon_url:
            author["icon_url"] = replace_template_variables(icon_url, fields)
        embed["author"] = author

    footer_text = _non_blank(template.footer_text)
    footer_icon = _non_blank(template.footer_icon_url)
    if footer_text or footer_icon or template.include_timestamp:
        footer: dict[str, str] = {}
        if footer_text:
            footer["text"] = replace_template_variables(footer_text, fields)
        if footer_icon:
            footer["icon_url"] = replace_template_variables(footer_icon, fields)
        embed["footer"] = footer

    if template.include_timestamp:
        embed["timestamp"] = (now or datetime.now(timezone.utc)).isoformat()

    if fields.logo_url:
        embed["thumbnail"] = {"url": fields.logo_url}

    return embed


def _sender_identity(destination: Destination, default_username: str) -> dict[str, Any]:
    identity: dict[str, Any] = {"username": _non_blank(destination.username) or default_username}
    avatar_url = _non_blank(destination.avatar_url)
    if avatar_url:
        identity["avatar_url"] = avatar_url
    return identity


def build_webhook_payload(
    destination: Destination,
    template: WebhookTemplate,
    fields: NotificationFields,
    default_username: str = DEFAULT_USERNAME,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Return the JSON body posted to a Discord webhook."""

    payload = _sender_identity(destination, default_username)
    if template.use_embed:
        payload["embeds"] = [build_embed(template, fields, now=now)]
    else:
        content = template.content or DEFAULT_CONTENT
        payload["content"] = replace_template_variables(content, fields)
    return payload


def build_test_payload(
    destination: Destination,
    default_username: str = DEFAULT_USERNAME,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Return the fixed message used to check that a webhook works."""

    payload = _sender_identity(destination, default_username)
    payload["embeds"] = [
        {
            "title": TEST_TITLE,
            "description": "This is a test message from the CurseForge mod tracker!",
            "color": WebhookTemplate().color,
            "footer": {"text": "Test completed successfully"},
            "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        }
    ]
    return payload


_TEMPLATE_FIELDS = {field.name for field in dataclasses.fields(WebhookTemplate)}


def template_from_mapping(data: dict[str, Any]) -> WebhookTemplate:
    """Build a template from user-supplied JSON, keeping defaults for missing keys."""

    if not isinstance(data, dict):
        raise ValueError("a template must be a JSON object")
    unknown = sorted(set(data) - _TEMPLATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown template keys: {', '.join(unknown)}")
    if "color" in data:
        color = data["color"]
        if isinstance(color, str):
            color = int(color.lstrip("#"), 16)
        data = {**data, "color": int(color)}
    fields = data.get("embed_fields", [])
    if not isinstance(fields, list) or not all(isinstance(field, dict) for field in fields):
        raise ValueError("embed_fields must be a list of objects")
    return WebhookTemplate(**data)
