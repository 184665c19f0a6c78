from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest
import requests

from adapters.curseforge_client import CurseForgeClient, clean_changelog
from adapters.discord_webhook_notifier import DiscordWebhookNotifier
from core.errors import CredentialError, DeliveryError, RateLimited, TransportError
from core.models import Destination, NotificationFields, WebhookTemplate


class DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "", headers: Optional[dict] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class DummySession:
    def __init__(self, responses: dict[str, DummyResponse]) -> None:
        self.responses = responses
        self.requests: list[tuple[str, str, dict]] = []

    def get(self, url: str, headers=None, timeout=None) -> DummyResponse:
        self.requests.append(("GET", url, headers or {}))
        for suffix, response in self.responses.items():
            if url.endswith(suffix):
                return response
        return DummyResponse(404)

    def post(self, url: str, json=None, timeout=None) -> DummyResponse:
        self.requests.append(("POST", url, json))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


class StaticTemplates:
    def get_template_for(self, destination: Destination) -> WebhookTemplate:
        return WebhookTemplate(use_embed=False, content="{modName} updated")


MOD_PAYLOAD = {
    "data": {
        "id": 238222,
        "name": "JEI",
        "gameId": 432,
        "dateReleased": "2024-03-05T14:03:27.123Z",
        "mainFileId": 555,
        "authors": [{"name": "mezz", "url": "https://cf.test/mezz"}],
        "latestFiles": [{"fileName": "jei-15.3.jar"}],
        "logo": {"url": "https://img.test/jei.png"},
        "links": {"websiteUrl": "https://cf.test/jei"},
    }
}


def _fields() -> NotificationFields:
    return NotificationFields(
        mod_id=238222,
        mod_name="JEI",
        mod_author="mezz",
        new_release_date="2024-03-05T14:03:27.123Z",
        old_release_date="2024-02-01T00:00:00Z",
        latest_file_name="jei-15.3.jar",
    )


def _hook(url: str = "https://discord.test/1") -> Destination:
    return Destination(id=1, name="releases", url=url)


def test_curseforge_reports_new_release_with_changelog() -> None:
    session = DummySession(
        {
            "/mods/238222": DummyResponse(200, MOD_PAYLOAD),
            "/mods/238222/files/555/changelog": DummyResponse(200, {"data": "<p>Fixed &amp; improved</p><br/>More"}),
        }
    )
    client = CurseForgeClient("https://api.test/v1", session=session)

    result = asyncio.run(client.evaluate_item(238222, "2024-02-01T00:00:00Z", "key"))

    assert result is not None
    assert result.new_update_time == "2024-03-05T14:03:27.123Z"
    assert result.old_update_time == "2024-02-01T00:00:00Z"
    assert result.author == "mezz"
    assert result.latest_file_name == "jei-15.3.jar"
    assert result.logo_url == "https://img.test/jei.png"
    assert result.changelog == "Fixed & improved\n\nMore"
    assert session.requests[0][2] == {"x-api-key": "key"}


def test_curseforge_same_release_is_no_update() -> None:
    session = DummySession({"/mods/238222": DummyResponse(200, MOD_PAYLOAD)})
    client = CurseForgeClient("https://api.test/v1", session=session)

    assert client.check_for_update(238222, "2024-03-05T14:03:27.123Z", "key") is None
    assert len(session.requests) == 1


def test_curseforge_error_mapping() -> None:
    rejected = CurseForgeClient(session=DummySession({"/mods/1": DummyResponse(403)}))
    with pytest.raises(CredentialError):
        rejected.check_for_update(1, "x", "bad")

    broken = CurseForgeClient(session=DummySession({"/mods/1": DummyResponse(500)}))
    with pytest.raises(TransportError):
        broken.check_for_update(1, "x", "key")


def test_curseforge_lookup_mod_includes_game_name() -> None:
    session = DummySession(
        {
            "/mods/238222": DummyResponse(200, MOD_PAYLOAD),
            "/games/432": DummyResponse(200, {"data": {"id": 432, "name": "Minecraft"}}),
        }
    )
    mod = CurseForgeClient("https://api.test/v1", session=session).lookup_mod(238222, "key")

    assert mod.name == "JEI"
    assert mod.game_name == "Minecraft"
    assert mod.page_url == "https://cf.test/jei"


def test_clean_changelog_strips_tags() -> None:
    assert clean_changelog("<ul><li>One</li></ul>") == "One"


def test_discord_delivery_posts_rendered_payload() -> None:
    session = DummySession({"https://discord.test/1": DummyResponse(204)})
    notifier = DiscordWebhookNotifier(StaticTemplates(), session=session)

    asyncio.run(notifier.deliver(_hook(), _fields()))

    method, url, payload = session.requests[0]
    assert (method, url) == ("POST", "https://discord.test/1")
    assert payload == {"username": "Mod Tracker", "content": "JEI updated"}


def test_discord_rate_limit_is_reported_with_retry_after() -> None:
    session = DummySession({"https://discord.test/1": DummyResponse(429, {"retry_after": 2.5})})
    notifier = DiscordWebhookNotifier(StaticTemplates(), session=session)

    with pytest.raises(RateLimited) as excinfo:
        asyncio.run(notifier.deliver(_hook(), _fields()))
    assert excinfo.value.retry_after == 2.5


def test_discord_other_failures_are_delivery_errors() -> None:
    session = DummySession(
        {
            "https://discord.test/1": DummyResponse(404, text="Unknown Webhook"),
            "https://discord.test/2": requests.ConnectionError("refused"),
        }
    )
    notifier = DiscordWebhookNotifier(StaticTemplates(), session=session)

    with pytest.raises(DeliveryError, match="Unknown Webhook"):
        asyncio.run(notifier.deliver(_hook(), _fields()))
    with pytest.raises(DeliveryError, match="unreachable"):
        asyncio.run(notifier.deliver(_hook("https://discord.test/2"), _fields()))


def test_discord_test_message_uses_fixed_payload() -> None:
    session = DummySession({"https://discord.test/1": DummyResponse(204)})
    notifier = DiscordWebhookNotifier(StaticTemplates(), default_username="Watcher", session=session)

    asyncio.run(notifier.send_test(_hook()))

    payload = session.requests[0][2]
    assert payload["username"] == "Watcher"
    assert payload["embeds"][0]["title"] == "🧪 Test Message"


def test_discord_test_message_reports_rejection() -> None:
    session = DummySession({"https://discord.test/1": DummyResponse(401, text="Invalid Webhook Token")})
    notifier = DiscordWebhookNotifier(StaticTemplates(), session=session)

    with pytest.raises(DeliveryError, match="Invalid Webhook Token"):
        asyncio.run(notifier.send_test(_hook()))
