"""Usage tracker: records feature usage and enforces tier quotas.

The tracker is the only writer of the stats cache and the offline
queue. ``track_usage`` fails open: an infrastructure fault anywhere in
the flow yields ``allowed=True`` and never reaches the caller.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from ..api.client import UsageApiClient, UsageApiError
from ..cache.stats_cache import UsageStatsCache
from ..models.tiers import SubscriptionTier
from ..models.usage import (
    LimitCheckResult,
    SyncResult,
    UsageAlert,
    UsageAnalytics,
    UsageEvent,
    UsageEventType,
    UsageStats,
)
from ..utils.fail_open import fail_open
from .alerts import alerts_for
from .event_queue import OfflineEventQueue
from .limit_evaluator import check_usage_limit

logger = logging.getLogger(__name__)


class UsageTracker:
    """Orchestrates quota checks, local accounting and backend sync."""

    def __init__(
        self,
        api: UsageApiClient,
        cache: UsageStatsCache,
        queue: OfflineEventQueue,
        enable_real_time_sync: bool = True,
        sync_interval_seconds: float = 300,
        warning_threshold: int = 80,
        critical_threshold: int = 95,
    ):
        """
        Args:
            api: Backend client
            cache: Stats cache (owned by this tracker)
            queue: Offline event queue (owned by this tracker)
            enable_real_time_sync: Send each event as it is tracked; when False
                events are queued and sent in batches by the periodic sync
            sync_interval_seconds: Period of the background sync task
            warning_threshold: Percentage for warning alerts
            critical_threshold: Percentage for critical alerts
        """
        self._api = api
        self._cache = cache
        self._queue = queue
        self._enable_real_time_sync = enable_real_time_sync
        self._sync_interval = sync_interval_seconds
        self._warning_threshold = warning_threshold
        self._critical_threshold = critical_threshold

        self._user_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._sync_lock = asyncio.Lock()
        self._online = True
        self._running = False
        self._sync_task: asyncio.Task | None = None

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Restore pending events and start the background sync."""
        await self._queue.load()
        await self.start_periodic_sync()
        logger.info(f"Usage tracking initialized (real_time_sync={self._enable_real_time_sync})")

    async def close(self) -> None:
        await self.stop_periodic_sync()

    @property
    def is_online(self) -> bool:
        return self._online

    async def set_online(self, online: bool) -> SyncResult | None:
        """Record connectivity; regaining it flushes the offline queue."""
        was_online = self._online
        self._online = online

        if online and not was_online:
            logger.info("Connectivity restored; syncing pending usage events")
            return await self.sync_pending_usage()
        if not online and was_online:
            logger.info("Connectivity lost; usage events will be queued")
        return None

    # ── Tracking ────────────────────────────────────────────────────────

    @fail_open(lambda: LimitCheckResult(allowed=True))
    async def track_usage(
        self,
        user_id: str,
        event_type: UsageEventType | str,
        metadata: dict[str, Any] | None = None,
    ) -> LimitCheckResult:
        """
        Check and record one usage event.

        Args:
            user_id: User performing the action
            event_type: Kind of action
            metadata: Free-form event data (``dataSize`` in bytes for exports)

        Returns:
            ``allowed=False`` with an ``exceeded`` alert when the quota is used up,
            ``allowed=True`` otherwise (including on any internal failure)
        """
        try:
            event_type = UsageEventType(event_type)
        except ValueError:
            logger.warning(f"Ignoring unknown usage event type {event_type!r} for user {user_id}")
            return LimitCheckResult(allowed=True)

        event = UsageEvent.create(user_id, event_type, metadata)

        async with self._user_locks[user_id]:
            stats = await self._cache.get(user_id)

            result = check_usage_limit(stats, event_type, metadata)
            if not result.allowed:
                logger.info(f"Usage limit exceeded for user {user_id}: {event_type.value}")
                return result

            stats.record(event_type, metadata)
            if self._cache.peek(user_id) is stats:
                await self._cache.persist(user_id)

        await self._deliver(event)
        return result

    async def _deliver(self, event: UsageEvent) -> None:
        """Send *event* now if possible, otherwise queue it."""
        if self._enable_real_time_sync and self._online:
            try:
                await self._api.post_events([event])
            except Exception as e:
                logger.warning(f"Real-time sync failed for usage event {event.id}: {e}")
            else:
                synced = event.mark_synced()
                logger.debug(f"Usage event {synced.id} synced ({synced.event_type.value}, user {synced.user_id})")
                return

        await self._queue.append(event)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_user_usage_stats(self, user_id: str, force_refresh: bool = False) -> UsageStats:
        """Return a copy of the user's stats; changes to it never reach the cache."""
        stats = await self._cache.get(user_id, force_refresh=force_refresh)
        return stats.model_copy(deep=True)

    async def get_user_usage_alerts(self, user_id: str) -> list[UsageAlert]:
        """Threshold alerts for UI banners; empty on any failure."""
        try:
            stats = await self._cache.get(user_id)
            return alerts_for(stats, self._warning_threshold, self._critical_threshold)
        except Exception as e:
            logger.error(f"Failed to get usage alerts for user {user_id}: {e}")
            return []

    async def get_usage_analytics(self, user_id: str, start_date: datetime, end_date: datetime) -> UsageAnalytics:
        """
        Fetch reporting analytics for a date range.

        Raises:
            UsageApiError: request failed or the payload was malformed
        """
        payload = await self._api.get_analytics(user_id, start_date, end_date)
        try:
            return UsageAnalytics.model_validate(payload)
        except ValidationError as e:
            raise UsageApiError(f"Malformed usage analytics for user {user_id}: {e.error_count()} errors") from e

    # ── Tier and period changes ─────────────────────────────────────────

    async def update_subscription_tier(self, user_id: str, new_tier: SubscriptionTier | str) -> None:
        """
        Tell the backend about a tier change and drop cached stats.

        Raises:
            UsageApiError: backend rejected the change (cache left untouched)
        """
        tier = SubscriptionTier(new_tier)
        await self._api.update_tier(user_id, tier)
        await self._cache.invalidate(user_id)
        logger.info(f"Subscription tier updated for user {user_id}: {tier.value}")

    async def reset_usage_for_new_period(self, user_id: str) -> None:
        """
        Tell the backend a new billing period started and drop cached stats.

        Raises:
            UsageApiError: backend rejected the reset (cache left untouched)
        """
        await self._api.reset_period(user_id)
        await self._cache.invalidate(user_id)
        logger.info(f"Usage reset for new period: {user_id}")

    # ── Offline sync ────────────────────────────────────────────────────

    async def sync_pending_usage(self) -> SyncResult:
        """
        Send all queued events in one batch.

        Returns:
            ``SyncResult(synced=n)`` on success, ``SyncResult(failed=n)`` with the
            queue untouched on failure, ``SyncResult()`` when nothing is pending
        """
        async with self._sync_lock:
            events = self._queue.snapshot()
            if not events:
                return SyncResult()

            try:
                await self._api.post_events(events)
            except Exception as e:
                logger.warning(f"Usage sync failed for {len(events)} pending events: {e}")
                return SyncResult(synced=0, failed=len(events))

            try:
                await self._queue.remove(event.id for event in events)
            except Exception as e:
                # Already dropped from memory; only the persisted copy is stale
                logger.error(f"Failed to persist usage queue after sync: {e}")

            logger.info(f"Synced {len(events)} pending usage events")
            return SyncResult(synced=len(events), failed=0)

    async def start_periodic_sync(self) -> None:
        """Start the background task that flushes the queue every interval."""
        if self._running:
            logger.warning("Periodic usage sync already running")
            return

        self._running = True
        self._sync_task = asyncio.create_task(self._sync_loop())
        logger.info(f"Periodic usage sync started (interval={self._sync_interval}s)")

    async def stop_periodic_sync(self) -> None:
        """Cancel the background sync task."""
        self._running = False
        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
            logger.info("Periodic usage sync stopped")

    async def _sync_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._sync_interval)

            if not self._online or self._queue.is_empty():
                continue

            try:
                await self.sync_pending_usage()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic usage sync error: {e}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "online": self._online,
            "periodic_sync_running": self._running,
            "cache": self._cache.get_stats(),
            "queue": self._queue.get_stats(),
        }
