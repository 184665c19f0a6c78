"""Interval-driven and manual triggering of update sweeps."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.cooldown import ManualCheckGate
from core.dedup import EventDedup
from core.events import CheckCompleted, EventBus, IntervalChanged
from core.models import SweepResult
from core.orchestrator import CheckOrchestrator
from core.ports import StatePort, TrackedItemStore

LOGGER = logging.getLogger(__name__)

NEXT_CHECK_KEY = "next_check_time"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpdateScheduler:
    """Owns the check timer and the manual-check entry point.

    Scheduled sweeps ignore the manual cooldown; only `trigger_manual` is
    gated by it.
    """

    def __init__(
        self,
        orchestrator: CheckOrchestrator,
        store: TrackedItemStore,
        state: StatePort,
        events: EventBus,
        cooldown: ManualCheckGate,
        event_dedup: Optional[EventDedup] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._state = state
        self._events = events
        self._cooldown = cooldown
        self._event_dedup = event_dedup or EventDedup()
        self._clock = clock
        self._timer: Optional[asyncio.Task] = None
        self._unsubscribers: list[Callable[[], None]] = []
        self.last_checked: Optional[datetime] = None
        self.next_check_time: Optional[datetime] = None

    @property
    def has_pending_check(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def subscribe(self) -> None:
        """Listen for interval and completion events without arming a timer."""

        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._events.subscribe(IntervalChanged, self._on_interval_changed),
            self._events.subscribe(CheckCompleted, self._on_check_completed),
        ]

    async def start(self) -> None:
        """Subscribe to events and run or arm the first check."""

        self.subscribe()

        stored_next = self._state.get_timestamp(NEXT_CHECK_KEY)
        now = self._clock()
        if stored_next is None or stored_next <= now:
            LOGGER.info("No pending check time, checking now")
            await self.perform_check()
            return

        self.next_check_time = stored_next
        delay = (stored_next - now).total_seconds()
        LOGGER.info("Next check at %s", stored_next.isoformat())
        self._arm(delay)

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._cancel_timer()

    def schedule_next(self, interval_minutes: int) -> datetime:
        """Persist and arm the next scheduled check."""

        next_check = self._clock() + timedelta(minutes=interval_minutes)
        self.next_check_time = next_check
        self._state.set_timestamp(NEXT_CHECK_KEY, next_check)
        self._arm(interval_minutes * 60)
        return next_check

    async def perform_check(self) -> SweepResult:
        """Run a scheduled sweep and arm the following one."""

        interval = self._store.get_configured_interval()
        result = await self._orchestrator.run_sweep(interval)
        if result.skipped:
            # Re-arm anyway: the running sweep may fail without a completion event.
            LOGGER.info("Scheduled check skipped, a sweep is already running")
        elif result.success:
            self.last_checked = result.completed_at
        self.schedule_next(interval)
        return result

    async def trigger_manual(self) -> SweepResult:
        """Run a user-requested sweep unless the cooldown window is active."""

        remaining = self._cooldown.remaining()
        if remaining > 0:
            LOGGER.info("Manual check refused, cooldown has %ss left", remaining)
            return SweepResult(
                success=False,
                skipped=True,
                error=f"Please wait {remaining}s before checking again",
            )

        result = await self._orchestrator.run_sweep()
        if result.success and not result.skipped:
            self._cooldown.start()
        return result

    def _on_interval_changed(self, event: IntervalChanged) -> None:
        LOGGER.info("Check interval changed to %s minutes", event.interval_minutes)
        self.schedule_next(event.interval_minutes)

    def _on_check_completed(self, event: CheckCompleted) -> None:
        if self._event_dedup.seen(event.event_id):
            return
        self._event_dedup.mark(event.event_id)
        self.last_checked = event.timestamp
        self.schedule_next(event.interval_minutes)

    def _arm(self, delay_seconds: float) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after(delay_seconds))

    def _cancel_timer(self) -> None:
        # Rescheduling from inside the timer's own sweep must not cancel that sweep.
        if self._timer is None or self._timer.done():
            return
        if self._timer is asyncio.current_task():
            return
        self._timer.cancel()

    async def _fire_after(self, delay_seconds: float) -> None:
        await asyncio.sleep(max(delay_seconds, 0))
        try:
            await self.perform_check()
        except Exception:
            LOGGER.exception("Scheduled update check failed")
