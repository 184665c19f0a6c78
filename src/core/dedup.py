"""Deduplication helpers (core domain)."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Optional


def time_bucket(at: datetime, bucket_seconds: int) -> int:
    """Floor a timestamp to a coarse bucket number."""

    if bucket_seconds <= 0:
        raise ValueError(f"Unsupported bucket size: {bucket_seconds}")
    return int(at.timestamp()) // bucket_seconds


def build_update_key(item_id: int, at: datetime, bucket_seconds: int) -> str:
    """Return the dedup key for one item's update within a time bucket."""

    return f"{item_id}@{time_bucket(at, bucket_seconds)}"


class SessionDedup:
    """Update keys already dispatched during the current sweep."""

    def __init__(self) -> None:
        self._session_id: Optional[int] = None
        self._processed: set[str] = set()

    @property
    def session_id(self) -> Optional[int]:
        return self._session_id

    def reset(self, session_id: int, processed: Optional[set[str]] = None) -> None:
        """Start a new session, optionally tracking keys in a caller-owned set."""

        self._session_id = session_id
        self._processed = processed if processed is not None else set()

    def should_process(self, key: str) -> bool:
        return key not in self._processed

    def mark_processed(self, key: str) -> None:
        self._processed.add(key)

    def __len__(self) -> int:
        return len(self._processed)


class EventDedup:
    """Completion event ids seen recently.

    These events arrive from outside the sweep lifecycle, so entries expire on
    a rolling window instead of being cleared per sweep.
    """

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._window = window_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}

    def _evict(self) -> None:
        cutoff = self._clock() - self._window
        for event_id in [key for key, seen_at in self._seen.items() if seen_at <= cutoff]:
            del self._seen[event_id]

    def seen(self, event_id: Optional[str]) -> bool:
        # Events without an id cannot be matched, so they always go through.
        if not event_id:
            return False
        self._evict()
        return event_id in self._seen

    def mark(self, event_id: Optional[str]) -> None:
        if not event_id:
            return
        self._evict()
        self._seen[event_id] = self._clock()

    def __len__(self) -> int:
        self._evict()
        return len(self._seen)
