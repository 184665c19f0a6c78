"""Notification fan-out to webhook destinations.

Destinations are processed one after another, never concurrently: they
usually share one provider, and parallel posts are what trip its rate limit.
Each destination is handled in a strict order:
1) Standard pacing delay
2) Delivery attempt
3) On a rate-limit failure only: backoff delay and exactly one more attempt
4) Record the outcome and move on, whatever happened
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from core.errors import DeliveryError, RateLimited
from core.models import Activity, DeliveryOutcome, Destination, NotificationFields, UpdateResult
from core.pacing import PacingPolicy
from core.ports import ActivityLogPort, DeliveryPort

LOGGER = logging.getLogger(__name__)


def select_destinations(destinations: Iterable[Destination]) -> list[Destination]:
    """Keep enabled destinations, first occurrence of each id, in order."""

    selected: list[Destination] = []
    seen_ids: set[int] = set()
    for destination in destinations:
        if not destination.enabled:
            continue
        if destination.id in seen_ids:
            continue
        seen_ids.add(destination.id)
        selected.append(destination)
    return selected


class NotificationDispatcher:
    """Delivers one update to every eligible destination."""

    def __init__(
        self,
        notifier: DeliveryPort,
        pacer: PacingPolicy,
        activity_log: Optional[ActivityLogPort] = None,
    ) -> None:
        self._notifier = notifier
        self._pacer = pacer
        self._activity_log = activity_log

    async def dispatch(
        self, update: UpdateResult, destinations: Iterable[Destination]
    ) -> list[DeliveryOutcome]:
        """Deliver `update` to each destination; never raises per destination."""

        fields = NotificationFields.from_update(update)
        outcomes: list[DeliveryOutcome] = []
        for destination in select_destinations(destinations):
            await self._pacer.pace()
            outcome = await self._deliver_with_retry(destination, fields)
            self._record(update, destination, outcome)
            outcomes.append(outcome)
        return outcomes

    async def _deliver_with_retry(
        self, destination: Destination, fields: NotificationFields
    ) -> DeliveryOutcome:
        try:
            await self._notifier.deliver(destination, fields)
            return DeliveryOutcome(destination_id=destination.id, delivered=True, attempts=1)
        except RateLimited as exc:
            LOGGER.warning(
                "Webhook %s rate limited, retrying once after %.1fs: %s",
                destination.name,
                self._pacer.backoff_delay,
                exc,
            )
        except DeliveryError as exc:
            return DeliveryOutcome(
                destination_id=destination.id, delivered=False, attempts=1, error=str(exc)
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error delivering to webhook %s", destination.name)
            return DeliveryOutcome(
                destination_id=destination.id, delivered=False, attempts=1, error=str(exc)
            )

        await self._pacer.backoff()
        try:
            await self._notifier.deliver(destination, fields)
        except Exception as exc:
            # Second failure of any kind: abandon this destination for the cycle.
            return DeliveryOutcome(
                destination_id=destination.id, delivered=False, attempts=2, error=str(exc)
            )
        return DeliveryOutcome(destination_id=destination.id, delivered=True, attempts=2)

    def _record(self, update: UpdateResult, destination: Destination, outcome: DeliveryOutcome) -> None:
        if outcome.delivered:
            LOGGER.info("Notification for %s sent to webhook %s", update.name, destination.name)
            activity_type = "notification_sent"
            description = f'Sent update notification for "{update.name}" to webhook "{destination.name}"'
        else:
            LOGGER.error(
                "Notification for %s failed on webhook %s after %s attempt(s): %s",
                update.name,
                destination.name,
                outcome.attempts,
                outcome.error,
            )
            activity_type = "webhook_error"
            description = (
                f'Failed to send update notification for "{update.name}" to webhook "{destination.name}"'
            )

        if self._activity_log is None:
            return
        self._activity_log.add_activity(
            Activity(
                activity_type=activity_type,
                description=description,
                mod_id=update.item_id,
                mod_name=update.name,
                metadata={
                    "webhook_name": destination.name,
                    "webhook_id": destination.id,
                    "attempts": outcome.attempts,
                    "error": outcome.error,
                },
            )
        )
