"""Delivery pacing policy."""

from __future__ import annotations

import asyncio

from core.config import PacingConfig


class PacingPolicy:
    """Spaces out deliveries so a webhook provider is never burst.

    The policy only defers work; it never drops or queues anything.
    """

    def __init__(self, config: PacingConfig) -> None:
        self._config = config

    @property
    def delivery_delay(self) -> float:
        return self._config.delivery_delay_seconds

    @property
    def backoff_delay(self) -> float:
        return self._config.rate_limit_backoff_seconds

    async def wait(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def pace(self) -> None:
        """Wait the standard inter-delivery delay."""

        await self.wait(self.delivery_delay)

    async def backoff(self) -> None:
        """Wait the longer delay used before a rate-limit retry."""

        await self.wait(self.backoff_delay)
