"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, catalog, and notification
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from core.models import Activity, Destination, NotificationFields, TrackedItem, UpdateResult


class TrackedItemStore(Protocol):
    """Store operations required by the sweep."""

    def list_tracked_items(self) -> list[TrackedItem]:
        ...

    def list_destinations_for_item(self, item_id: int) -> list[Destination]:
        ...

    def set_last_updated(self, item_id: int, last_updated: str) -> None:
        ...

    def get_configured_interval(self) -> int:
        ...


class CatalogPort(Protocol):
    """Catalog query used to detect new releases."""

    async def evaluate_item(
        self, curseforge_id: int, last_known: str, credential: str
    ) -> Optional[UpdateResult]:
        ...


class DeliveryPort(Protocol):
    """Notification delivery to a single destination."""

    async def deliver(self, destination: Destination, fields: NotificationFields) -> None:
        ...


class StatePort(Protocol):
    """Named timestamps that must survive restarts."""

    def get_timestamp(self, name: str) -> Optional[datetime]:
        ...

    def set_timestamp(self, name: str, value: datetime) -> None:
        ...

    def clear_timestamp(self, name: str) -> None:
        ...


class ActivityLogPort(Protocol):
    """Sink for the user-visible activity log."""

    def add_activity(self, activity: Activity) -> None:
        ...
