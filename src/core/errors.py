"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations

from typing import Optional


class ModwatchError(Exception):
    """Base class for all modwatch errors."""


class CatalogError(ModwatchError):
    """Raised when the catalog could not answer an update query."""


class CredentialError(CatalogError):
    """The catalog rejected or did not receive a usable API key."""


class TransportError(CatalogError):
    """Network or protocol failure while talking to the catalog."""


class NotificationError(ModwatchError):
    """Raised when a notification could not be delivered."""


class RateLimited(NotificationError):
    """The destination asked us to slow down."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DeliveryError(NotificationError):
    """Any other delivery failure (bad status, unreachable host, ...)."""
