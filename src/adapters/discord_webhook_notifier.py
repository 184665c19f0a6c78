"""Discord webhook notification adapter.

Posts one rendered update to one webhook and translates Discord's answers
into the core's delivery errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import requests

from adapters.notification_formatting import DEFAULT_USERNAME, build_test_payload, build_webhook_payload
from core.errors import DeliveryError, RateLimited
from core.models import Destination, NotificationFields, WebhookTemplate

LOGGER = logging.getLogger(__name__)


class TemplateSource(Protocol):
    def get_template_for(self, destination: Destination) -> WebhookTemplate:
        ...


def _retry_after(response: requests.Response) -> Optional[float]:
    try:
        value = response.json().get("retry_after")
    except (ValueError, AttributeError):
        value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class DiscordWebhookNotifier:
    """Notifier adapter that posts embeds to Discord webhooks."""

    def __init__(
        self,
        templates: TemplateSource,
        default_username: str = DEFAULT_USERNAME,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._templates = templates
        self._default_username = default_username
        self._timeout = timeout
        self._session = session or requests.Session()

    async def deliver(self, destination: Destination, fields: NotificationFields) -> None:
        """Send the formatted notification to the destination's webhook."""

        template = self._templates.get_template_for(destination)
        payload = build_webhook_payload(destination, template, fields, self._default_username)
        # requests is blocking; run it off the loop so pacing timers stay accurate.
        await asyncio.to_thread(self._post, destination, payload)

    async def send_test(self, destination: Destination) -> None:
        """Post a fixed test message; raises the same errors as `deliver`."""

        payload = build_test_payload(destination, self._default_username)
        await asyncio.to_thread(self._post, destination, payload)

    def _post(self, destination: Destination, payload: dict) -> None:
        try:
            response = self._session.post(destination.url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise DeliveryError(f"Webhook {destination.name} unreachable: {e}") from e

        if response.status_code == 429:
            retry_after = _retry_after(response)
            raise RateLimited(f"Discord rate limit on webhook {destination.name}", retry_after=retry_after)
        if not response.ok:
            body = response.text[:300]
            raise DeliveryError(f"Discord API error {response.status_code}: {body}")
        LOGGER.debug("Webhook %s accepted payload (%s)", destination.name, response.status_code)
