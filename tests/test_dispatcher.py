from __future__ import annotations

import asyncio
from typing import Optional

from core.config import PacingConfig
from core.dispatcher import NotificationDispatcher, select_destinations
from core.errors import DeliveryError, RateLimited
from core.models import Activity, Destination, NotificationFields, UpdateResult
from core.pacing import PacingPolicy


class RecordingPacer(PacingPolicy):
    def __init__(self, log: Optional[list] = None) -> None:
        super().__init__(PacingConfig(delivery_delay_seconds=1.5, rate_limit_backoff_seconds=5.0))
        self.log = log if log is not None else []

    async def wait(self, seconds: float) -> None:
        self.log.append(("wait", seconds))


class FakeNotifier:
    def __init__(self, log: list, failures: Optional[dict[int, list[Exception]]] = None) -> None:
        self.log = log
        self.failures = failures or {}
        self.attempts: list[int] = []

    async def deliver(self, destination: Destination, fields: NotificationFields) -> None:
        self.attempts.append(destination.id)
        self.log.append(("deliver", destination.id))
        queued = self.failures.get(destination.id)
        if queued:
            raise queued.pop(0)


class FakeActivityLog:
    def __init__(self) -> None:
        self.entries: list[Activity] = []

    def add_activity(self, activity: Activity) -> None:
        self.entries.append(activity)


def _update() -> UpdateResult:
    return UpdateResult(
        item_id=2,
        curseforge_id=1002,
        name="Better Foliage",
        author="octarine",
        old_update_time="2024-01-01T00:00:00Z",
        new_update_time="2024-02-01T00:00:00Z",
        latest_file_name="betterfoliage-2.0.jar",
    )


def _destination(destination_id: int, enabled: bool = True) -> Destination:
    return Destination(id=destination_id, name=f"hook-{destination_id}", url=f"https://x/{destination_id}", enabled=enabled)


def _dispatch(notifier: FakeNotifier, pacer: RecordingPacer, destinations, activity_log=None):
    dispatcher = NotificationDispatcher(notifier, pacer, activity_log=activity_log)
    return asyncio.run(dispatcher.dispatch(_update(), destinations))


def test_select_destinations_drops_disabled_and_repeated_ids() -> None:
    destinations = [_destination(1), _destination(2, enabled=False), _destination(1), _destination(3)]
    assert [d.id for d in select_destinations(destinations)] == [1, 3]


def test_disabled_destinations_are_never_delivered_to() -> None:
    log: list = []
    notifier = FakeNotifier(log)
    _dispatch(notifier, RecordingPacer(log), [_destination(1, enabled=False), _destination(2)])
    assert notifier.attempts == [2]


def test_each_delivery_is_preceded_by_standard_delay() -> None:
    log: list = []
    notifier = FakeNotifier(log)
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1), _destination(2)])

    assert log == [("wait", 1.5), ("deliver", 1), ("wait", 1.5), ("deliver", 2)]
    assert all(outcome.delivered for outcome in outcomes)


def test_failure_does_not_stop_later_destinations() -> None:
    log: list = []
    notifier = FakeNotifier(log, failures={1: [DeliveryError("boom")]})
    activity = FakeActivityLog()
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1), _destination(2)], activity)

    assert notifier.attempts == [1, 2]
    assert [outcome.delivered for outcome in outcomes] == [False, True]
    assert outcomes[0].attempts == 1
    assert [entry.activity_type for entry in activity.entries] == ["webhook_error", "notification_sent"]


def test_unexpected_exception_is_absorbed() -> None:
    log: list = []
    notifier = FakeNotifier(log, failures={1: [KeyError("template")]})
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1), _destination(2)])

    assert [outcome.delivered for outcome in outcomes] == [False, True]


def test_rate_limit_retries_once_after_backoff() -> None:
    log: list = []
    notifier = FakeNotifier(log, failures={1: [RateLimited("slow down")]})
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1)])

    assert log == [("wait", 1.5), ("deliver", 1), ("wait", 5.0), ("deliver", 1)]
    assert outcomes[0].delivered
    assert outcomes[0].attempts == 2


def test_second_rate_limit_abandons_destination() -> None:
    log: list = []
    notifier = FakeNotifier(
        log,
        failures={1: [RateLimited("slow down"), RateLimited("still slow"), RateLimited("again")]},
    )
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1), _destination(2)])

    assert notifier.attempts == [1, 1, 2]
    assert not outcomes[0].delivered
    assert outcomes[0].attempts == 2
    assert outcomes[1].delivered


def test_other_error_after_rate_limit_is_not_retried() -> None:
    log: list = []
    notifier = FakeNotifier(log, failures={1: [RateLimited("slow down"), DeliveryError("gone")]})
    outcomes = _dispatch(notifier, RecordingPacer(log), [_destination(1)])

    assert notifier.attempts == [1, 1]
    assert outcomes[0].error == "gone"


def test_backoff_is_longer_than_standard_delay() -> None:
    pacer = RecordingPacer()
    assert pacer.backoff_delay > pacer.delivery_delay
