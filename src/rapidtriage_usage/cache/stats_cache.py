"""
Per-user usage stats cache.

In-memory entries with a freshness TTL, backed by best-effort JSON
snapshots in the key/value store for offline fallback:
- Fresh entries are served without I/O
- Stale or missing entries are refetched from the backend
- Backend failures fall back to stale memory, then snapshot, then defaults
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..api.client import UsageApiClient
from ..models.tiers import SubscriptionTier
from ..models.usage import UsageStats
from ..storage.base import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    stats: UsageStats
    fetched_at: float


class UsageStatsCache:
    """
    Cache of ``UsageStats`` keyed by user id.

    The cache owns the stats objects it hands out: callers that mutate an
    entry in place must call ``persist`` (or ``put``) afterwards. ``get``
    never raises.
    """

    def __init__(
        self,
        api: UsageApiClient,
        store: KeyValueStore | None = None,
        ttl_seconds: int = 900,
        snapshot_prefix: str = "usage_stats_cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            api: Backend client used for remote fetches
            store: Key/value store for snapshots (None disables snapshots)
            ttl_seconds: Freshness window for in-memory entries
            snapshot_prefix: Store key prefix, one key per user
            clock: Monotonic clock for TTL checks
        """
        self._api = api
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._snapshot_prefix = snapshot_prefix
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._stats = {"hits": 0, "misses": 0, "fetch_errors": 0}

    def _snapshot_key(self, user_id: str) -> str:
        return f"{self._snapshot_prefix}:{user_id}"

    def _is_fresh(self, entry: _Entry) -> bool:
        # Age only; period dates roll over on the backend via reset-period
        return self._clock() - entry.fetched_at < self.ttl_seconds

    async def get(self, user_id: str, force_refresh: bool = False) -> UsageStats:
        """Return stats for *user_id*, fetching from the backend when stale."""
        entry = self._entries.get(user_id)
        if entry is not None and not force_refresh and self._is_fresh(entry):
            self._stats["hits"] += 1
            return entry.stats

        self._stats["misses"] += 1
        try:
            payload = await self._api.get_stats(user_id)
            if payload is None:
                logger.info(f"No usage record for user {user_id}; starting on free tier")
                stats = UsageStats.default(user_id, SubscriptionTier.FREE)
            else:
                stats = UsageStats.from_server(payload)
        except Exception as e:
            self._stats["fetch_errors"] += 1
            logger.warning(f"Usage stats fetch failed for user {user_id}: {e}")
            return await self._fallback(user_id)

        await self.put(user_id, stats)
        return stats

    async def _fallback(self, user_id: str) -> UsageStats:
        entry = self._entries.get(user_id)
        if entry is not None:
            logger.debug(f"Serving stale usage stats for user {user_id}")
            return entry.stats

        snapshot = await self._load_snapshot(user_id)
        if snapshot is not None:
            logger.debug(f"Serving persisted usage snapshot for user {user_id}")
            return snapshot

        # Not cached: the next call retries the backend
        return UsageStats.default(user_id, SubscriptionTier.FREE)

    def peek(self, user_id: str) -> UsageStats | None:
        """Return the in-memory entry regardless of freshness, without I/O."""
        entry = self._entries.get(user_id)
        return entry.stats if entry else None

    async def put(self, user_id: str, stats: UsageStats) -> None:
        """Overwrite the entry, stamp it fresh and write its snapshot."""
        self._entries[user_id] = _Entry(stats=stats, fetched_at=self._clock())
        await self._save_snapshot(user_id, stats)

    async def persist(self, user_id: str) -> None:
        """Rewrite the snapshot of the current entry; freshness is unchanged."""
        entry = self._entries.get(user_id)
        if entry is not None:
            await self._save_snapshot(user_id, entry.stats)

    async def invalidate(self, user_id: str) -> None:
        """Drop the entry and its snapshot so the next ``get`` fetches remotely."""
        self._entries.pop(user_id, None)
        if self._store is None:
            return
        try:
            await self._store.delete(self._snapshot_key(user_id))
        except Exception as e:
            logger.warning(f"Usage snapshot delete failed for user {user_id}: {e}")

    def get_stats(self) -> dict[str, int]:
        return {"entries": len(self._entries), **self._stats}

    # ── Snapshots (best effort) ─────────────────────────────────────────

    async def _save_snapshot(self, user_id: str, stats: UsageStats) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(self._snapshot_key(user_id), stats.model_dump_json(by_alias=True))
        except Exception as e:
            logger.warning(f"Usage snapshot save failed for user {user_id}: {e}")

    async def _load_snapshot(self, user_id: str) -> UsageStats | None:
        if self._store is None:
            return None
        try:
            raw = await self._store.get(self._snapshot_key(user_id))
            if raw is None:
                return None
            return UsageStats.from_server(json.loads(raw))
        except Exception as e:
            logger.warning(f"Usage snapshot load failed for user {user_id}: {e}")
            return None
