"""Per-item update evaluation."""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from core.models import TrackedItem, UpdateResult
from core.ports import CatalogPort, TrackedItemStore

LOGGER = logging.getLogger(__name__)


class UpdateEvaluator:
    """Asks the catalog whether one tracked item has a newer release.

    Catalog errors propagate unchanged; the orchestrator decides what a
    failed item means for the sweep. No retry happens here.
    """

    def __init__(self, catalog: CatalogPort, store: TrackedItemStore) -> None:
        self._catalog = catalog
        self._store = store

    async def evaluate(self, item: TrackedItem, api_key: str) -> Optional[UpdateResult]:
        result = await self._catalog.evaluate_item(item.curseforge_id, item.last_updated, api_key)
        if result is None:
            LOGGER.debug("No update for %s", item.name)
            return None

        result = dataclasses.replace(result, item_id=item.id)
        # Persist first so a later sweep does not report the same release again.
        self._store.set_last_updated(item.id, result.new_update_time)
        LOGGER.info(
            "Update found for %s: %s -> %s",
            item.name,
            result.old_update_time,
            result.new_update_time,
        )
        return result
