"""
Offline queue of usage events awaiting backend acknowledgement.

Events land here when a real-time sync fails or the tracker is offline.
The whole queue is persisted as one JSON array under a fixed key, so it
survives restarts.

The queue guarantees:
    1. A pending event is only removed by ``remove`` after a confirmed sync
    2. Events appended after a snapshot are never dropped by that snapshot's removal
    3. Corrupt persisted entries are skipped on load, never fatal
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from ..models.usage import UsageEvent
from ..storage.base import KeyValueStore

logger = logging.getLogger(__name__)


class OfflineEventQueue:
    """Persisted FIFO of unsynced ``UsageEvent`` records."""

    def __init__(self, store: KeyValueStore, storage_key: str = "usage_pending_events"):
        """
        Args:
            store: Key/value store holding the persisted array
            storage_key: Key for the JSON array of pending events
        """
        self._store = store
        self._storage_key = storage_key
        self._events: list[UsageEvent] = []
        self._stats = {"enqueued": 0, "removed": 0, "load_skipped": 0}

    @property
    def storage_key(self) -> str:
        return self._storage_key

    def __len__(self) -> int:
        return len(self._events)

    def is_empty(self) -> bool:
        return not self._events

    async def load(self) -> int:
        """
        Replace the in-memory queue with the persisted array.

        Returns:
            Number of events loaded
        """
        try:
            raw = await self._store.get(self._storage_key)
        except Exception as e:
            logger.error(f"Failed to load pending usage events: {e}")
            self._events = []
            return 0

        if not raw:
            self._events = []
            return 0

        try:
            items: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Pending usage events are not valid JSON, discarding: {e}")
            self._events = []
            return 0

        if not isinstance(items, list):
            logger.error("Pending usage events are not a JSON array, discarding")
            self._events = []
            return 0

        events: list[UsageEvent] = []
        for item in items:
            try:
                events.append(UsageEvent.model_validate(item))
            except ValidationError as e:
                self._stats["load_skipped"] += 1
                logger.warning(f"Skipping malformed pending usage event: {e.error_count()} errors")

        self._events = events
        logger.info(f"Loaded {len(events)} pending usage events")
        return len(events)

    async def append(self, event: UsageEvent) -> None:
        """Queue *event* and persist.

        The event stays queued in memory even if persisting fails.

        Raises:
            StorageError: the store rejected the write
        """
        self._events.append(event)
        self._stats["enqueued"] += 1
        logger.debug(f"Queued usage event {event.id} ({event.event_type.value}) for later sync")
        await self._save()

    def snapshot(self) -> list[UsageEvent]:
        """Copy of the pending events, oldest first."""
        return list(self._events)

    async def remove(self, event_ids: Iterable[str]) -> int:
        """Drop the events with the given ids and persist.

        Returns:
            Number of events removed
        """
        ids = set(event_ids)
        before = len(self._events)
        self._events = [e for e in self._events if e.id not in ids]
        removed = before - len(self._events)
        self._stats["removed"] += removed
        if removed:
            await self._save()
        return removed

    async def _save(self) -> None:
        payload = json.dumps([event.to_wire() for event in self._events])
        await self._store.set(self._storage_key, payload)

    def get_stats(self) -> dict[str, Any]:
        return {"storage_key": self._storage_key, "pending": len(self._events), **self._stats}
