"""CurseForge catalog adapter.

Implements the core CatalogPort over the CurseForge REST API. A release is
new whenever the mod's `dateReleased` differs from the one we stored.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.errors import CredentialError, TransportError
from core.models import UpdateResult

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.curseforge.com/v1"


@dataclass(frozen=True)
class CatalogMod:
    """Mod details needed to start tracking a mod."""

    curseforge_id: int
    name: str
    game_name: str
    date_released: str
    page_url: Optional[str]


def clean_changelog(raw_html: str) -> str:
    """Turn CurseForge changelog HTML into plain text."""

    text = html.unescape(raw_html)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = "".join(ch for ch in text if ch.isascii() or ch.isspace())
    return text.strip()


class CurseForgeClient:
    """Small CurseForge API client with the error mapping the core expects."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _get(self, path: str, api_key: str) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, headers={"x-api-key": api_key}, timeout=self._timeout)
        except requests.RequestException as e:
            raise TransportError(f"CurseForge request failed: {e}") from e
        if response.status_code in (401, 403):
            raise CredentialError(f"CurseForge rejected the API key ({response.status_code})")
        return response

    def _get_json(self, path: str, api_key: str) -> dict[str, Any]:
        response = self._get(path, api_key)
        if response.status_code == 404:
            raise TransportError(f"Not found on CurseForge: {path}")
        if not response.ok:
            raise TransportError(f"Failed to fetch {path} from CurseForge: {response.status_code}")
        try:
            return response.json()["data"]
        except (ValueError, KeyError) as e:
            raise TransportError(f"Malformed CurseForge response for {path}") from e

    def _fetch_changelog(self, curseforge_id: int, file_id: Optional[int], api_key: str) -> Optional[str]:
        if not file_id:
            return None
        # The changelog is a nice-to-have; a failure here must not hide the update.
        try:
            response = self._get(f"/mods/{curseforge_id}/files/{file_id}/changelog", api_key)
            if not response.ok:
                return None
            data = response.json().get("data")
        except (TransportError, ValueError) as e:
            LOGGER.warning("Changelog unavailable for %s: %s", curseforge_id, e)
            return None
        return clean_changelog(data) if isinstance(data, str) else None

    def check_for_update(self, curseforge_id: int, last_known: str, api_key: str) -> Optional[UpdateResult]:
        """Blocking update check; see `evaluate_item` for the async port."""

        data = self._get_json(f"/mods/{curseforge_id}", api_key)
        new_date = data.get("dateReleased", "")
        if new_date == last_known:
            return None

        latest_files = data.get("latestFiles") or []
        authors = data.get("authors") or []
        logo = data.get("logo") or {}
        return UpdateResult(
            item_id=None,
            curseforge_id=curseforge_id,
            name=data.get("name", str(curseforge_id)),
            author=authors[0].get("name", "Unknown Author") if authors else "Unknown Author",
            old_update_time=last_known,
            new_update_time=new_date,
            latest_file_name=latest_files[0].get("fileName", "") if latest_files else "",
            logo_url=logo.get("url"),
            changelog=self._fetch_changelog(curseforge_id, data.get("mainFileId"), api_key),
        )

    async def evaluate_item(
        self, curseforge_id: int, last_known: str, credential: str
    ) -> Optional[UpdateResult]:
        return await asyncio.to_thread(self.check_for_update, curseforge_id, last_known, credential)

    def lookup_mod(self, curseforge_id: int, api_key: str) -> CatalogMod:
        """Fetch what we need to start tracking a mod, including its game name."""

        data = self._get_json(f"/mods/{curseforge_id}", api_key)
        game = self._get_json(f"/games/{data['gameId']}", api_key)
        links = data.get("links") or {}
        return CatalogMod(
            curseforge_id=curseforge_id,
            name=data["name"],
            game_name=game["name"],
            date_released=data["dateReleased"],
            page_url=links.get("websiteUrl"),
        )
