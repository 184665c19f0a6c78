"""Cooldown window for manually triggered checks."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.ports import StatePort

COOLDOWN_KEY = "manual_check_cooldown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ManualCheckGate:
    """Blocks manual re-checks for a fixed window after a successful one.

    The deadline lives in the state store so it survives restarts. It is
    only ever set when no window is active, so the remaining time can only
    go down.
    """

    def __init__(
        self,
        state: StatePort,
        duration_seconds: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._state = state
        self._duration = duration_seconds
        self._clock = clock

    def remaining(self) -> int:
        """Seconds left in the current window, 0 when checks are allowed."""

        deadline = self._state.get_timestamp(COOLDOWN_KEY)
        if deadline is None:
            return 0
        left = (deadline - self._clock()).total_seconds()
        if left <= 0:
            self._state.clear_timestamp(COOLDOWN_KEY)
            return 0
        return math.ceil(left)

    def is_open(self) -> bool:
        return self.remaining() == 0

    def start(self) -> None:
        if not self.is_open():
            return
        self._state.set_timestamp(COOLDOWN_KEY, self._clock() + timedelta(seconds=self._duration))
