"""Core update-check sweep.

This module is integration-agnostic. It only relies on ports for the store,
catalog, and notifications, enabling other frontends or adapters without
changes here.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from core.config import DedupConfig
from core.dedup import SessionDedup, build_update_key
from core.dispatcher import NotificationDispatcher
from core.errors import CatalogError
from core.evaluator import UpdateEvaluator
from core.events import CheckCompleted, EventBus
from core.models import Activity, CheckSession, SweepResult, TrackedItem, UpdateResult
from core.ports import ActivityLogPort, TrackedItemStore

LOGGER = logging.getLogger(__name__)

SuccessCallback = Callable[[list[TrackedItem], datetime], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckOrchestrator:
    """Runs full sweeps over every tracked item, one sweep at a time."""

    def __init__(
        self,
        store: TrackedItemStore,
        evaluator: UpdateEvaluator,
        dispatcher: NotificationDispatcher,
        credential_provider: Callable[[], Optional[str]],
        events: EventBus,
        dedup_config: DedupConfig,
        activity_log: Optional[ActivityLogPort] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._credential_provider = credential_provider
        self._events = events
        self._dedup_config = dedup_config
        self._activity_log = activity_log
        self._clock = clock
        self._session_ids = itertools.count(1)
        self._session_dedup = SessionDedup()
        self._session: Optional[CheckSession] = None

    @property
    def is_running(self) -> bool:
        return self._session is not None and self._session.in_progress

    async def run_sweep(
        self,
        interval_hint: Optional[int] = None,
        on_success: Optional[SuccessCallback] = None,
    ) -> SweepResult:
        """Check every tracked item and notify destinations about updates."""

        # Check-and-set stays free of awaits so two callers on the loop
        # cannot both pass it.
        if self.is_running:
            LOGGER.info("Sweep already running, ignoring new request")
            return SweepResult(success=True, skipped=True)

        session = CheckSession(session_id=next(self._session_ids), started_at=self._clock())
        self._session = session
        self._session_dedup.reset(session.session_id, session.processed_keys)
        try:
            return await self._sweep(session, interval_hint, on_success)
        except Exception as exc:
            LOGGER.exception("Update sweep %s failed", session.session_id)
            return SweepResult(success=False, error=str(exc))
        finally:
            session.in_progress = False
            self._session = None

    async def _sweep(
        self,
        session: CheckSession,
        interval_hint: Optional[int],
        on_success: Optional[SuccessCallback],
    ) -> SweepResult:
        api_key = self._credential_provider()
        if not api_key:
            LOGGER.error("No API key configured, aborting update sweep")
            return SweepResult(success=False, error="No API key configured")

        # Snapshot so edits to the store during the sweep do not change what we iterate.
        items = list(self._store.list_tracked_items())
        LOGGER.info("Starting update sweep %s for %s mods", session.session_id, len(items))

        updates_found = False
        for item in items:
            if await self._check_item(session, item, api_key):
                updates_found = True

        interval = interval_hint if interval_hint is not None else self._store.get_configured_interval()
        completed_at = self._clock()
        self._events.emit(
            CheckCompleted(timestamp=completed_at, interval_minutes=interval, event_id=uuid.uuid4().hex)
        )

        refreshed = list(self._store.list_tracked_items())
        if on_success is not None:
            on_success(refreshed, completed_at)

        LOGGER.info(
            "Update sweep %s complete: mods=%s, updates_found=%s",
            session.session_id,
            len(items),
            updates_found,
        )
        return SweepResult(
            success=True,
            mods=refreshed,
            updates_found=updates_found,
            completed_at=completed_at,
        )

    async def _check_item(self, session: CheckSession, item: TrackedItem, api_key: str) -> bool:
        """Evaluate one item and dispatch its update; return True if one was found."""

        found = False
        try:
            update = await self._evaluator.evaluate(item, api_key)
            if update is None:
                return False
            found = True

            key = build_update_key(item.id, session.started_at, self._dedup_config.update_bucket_seconds)
            if not self._session_dedup.should_process(key):
                LOGGER.info("Dedup skip for %s (already dispatched this sweep)", item.name)
                return found
            self._session_dedup.mark_processed(key)
            self._record_update(item, update)

            destinations = self._store.list_destinations_for_item(item.id)
            await self._dispatcher.dispatch(update, destinations)
        except CatalogError as exc:
            LOGGER.warning("Update check failed for %s: %s", item.name, exc)
            self._record_failure(item, exc)
        except Exception as exc:
            LOGGER.exception("Unexpected error while checking %s", item.name)
            self._record_failure(item, exc)
        return found

    def _record_update(self, item: TrackedItem, update: UpdateResult) -> None:
        if self._activity_log is None:
            return
        self._activity_log.add_activity(
            Activity(
                activity_type="mod_updated",
                description=f'"{update.name}" has been updated',
                mod_id=item.id,
                mod_name=update.name,
                metadata={
                    "old_version_date": update.old_update_time,
                    "new_version_date": update.new_update_time,
                    "author": update.author,
                    "latest_file": update.latest_file_name,
                    "logo_url": update.logo_url,
                    "page_url": item.page_url,
                    "changelog": update.changelog,
                },
            )
        )

    def _record_failure(self, item: TrackedItem, exc: Exception) -> None:
        if self._activity_log is None:
            return
        self._activity_log.add_activity(
            Activity(
                activity_type="update_check_failed",
                description=f'Failed to check "{item.name}" for updates',
                mod_id=item.id,
                mod_name=item.name,
                metadata={"curseforge_id": item.curseforge_id, "error": str(exc)},
            )
        )
