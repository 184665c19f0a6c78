"""In-process events exchanged between the sweep, the scheduler, and listeners."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckCompleted:
    """Emitted once at the end of every sweep."""

    timestamp: datetime
    interval_minutes: int
    event_id: Optional[str]


@dataclass(frozen=True)
class IntervalChanged:
    """Emitted when the user picks a new check interval."""

    interval_minutes: int


Listener = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event type."""

    def __init__(self) -> None:
        self._listeners: dict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""

        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event_type]:
                self._listeners[event_type].remove(listener)

        return unsubscribe

    def emit(self, event: Any) -> None:
        for listener in list(self._listeners[type(event)]):
            # A broken listener must not stop the others from hearing the event.
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Listener failed for %s", type(event).__name__)
