"""Unit tests for UsageTracker: quota enforcement, accounting and sync."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from rapidtriage_usage.api.client import UsageApiError
from rapidtriage_usage.cache.stats_cache import UsageStatsCache
from rapidtriage_usage.models.tiers import SubscriptionTier
from rapidtriage_usage.models.usage import BYTES_PER_GB, SyncResult, UsageEvent, UsageEventType
from rapidtriage_usage.services.event_queue import OfflineEventQueue
from rapidtriage_usage.services.usage_tracker import UsageTracker
from rapidtriage_usage.storage.base import StorageError
from rapidtriage_usage.storage.memory import InMemoryKeyValueStore


def _pending(store) -> list[dict]:
    raw = store._data.get("usage_pending_events")
    return json.loads(raw) if raw else []


class TestTrackUsageAllowed:
    @pytest.mark.asyncio
    async def test_allowed_event_increments_counter_and_syncs(self, tracker, mock_api, stats_payload):
        mock_api.get_stats.return_value = stats_payload(triageSessions=10)

        result = await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is True
        assert result.alert is None
        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.triage_sessions == 11
        mock_api.post_events.assert_awaited_once()
        (sent,) = mock_api.post_events.await_args.args[0]
        assert sent.user_id == "user_123"
        assert sent.event_type == UsageEventType.TRIAGE_SESSION

    @pytest.mark.asyncio
    async def test_successful_sync_is_not_queued(self, tracker, queue):
        await tracker.track_usage("user_123", UsageEventType.REPORT_GENERATION)

        assert queue.is_empty()

    @pytest.mark.asyncio
    async def test_counters_increase_by_one_per_allowed_event(self, tracker):
        for _ in range(5):
            await tracker.track_usage("user_123", UsageEventType.API_CALL)

        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.api_calls == 5

    @pytest.mark.asyncio
    async def test_export_adds_storage_from_data_size(self, tracker):
        await tracker.track_usage("user_123", UsageEventType.DATA_EXPORT, {"dataSize": BYTES_PER_GB // 4})

        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.data_exports == 1
        assert stats.usage.storage_used_gb == pytest.approx(0.25)
        assert stats.percentages_used.storage == 25

    @pytest.mark.asyncio
    async def test_mutation_written_to_snapshot(self, tracker, store):
        await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        snapshot = json.loads(await store.get("usage_stats_cache:user_123"))
        assert snapshot["usage"]["triageSessions"] == 1

    @pytest.mark.asyncio
    async def test_unknown_event_type_allowed_without_side_effects(self, tracker, mock_api, queue):
        result = await tracker.track_usage("user_123", "time_travel")

        assert result.allowed is True
        mock_api.get_stats.assert_not_awaited()
        mock_api.post_events.assert_not_awaited()
        assert queue.is_empty()


class TestTrackUsageDenied:
    @pytest.mark.asyncio
    async def test_free_user_at_session_limit(self, tracker, mock_api, queue, stats_payload):
        mock_api.get_stats.return_value = stats_payload(tier="free", triageSessions=100)

        result = await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is False
        assert result.alert.type == "exceeded"
        assert result.alert.feature == UsageEventType.TRIAGE_SESSION
        assert result.alert.upgrade_required is True
        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.triage_sessions == 100
        mock_api.post_events.assert_not_awaited()
        assert queue.is_empty()

    @pytest.mark.asyncio
    async def test_free_user_export_after_two(self, tracker, mock_api, stats_payload):
        mock_api.get_stats.return_value = stats_payload(dataExports=2)

        first = await tracker.track_usage("user_123", UsageEventType.DATA_EXPORT, {"format": "csv"})
        second = await tracker.track_usage("user_123", UsageEventType.DATA_EXPORT, {"format": "csv"})

        assert first.allowed is True
        assert second.allowed is False
        assert second.alert.feature == UsageEventType.DATA_EXPORT
        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.data_exports == 3

    @pytest.mark.asyncio
    async def test_team_invitation_at_seat_limit(self, tracker, mock_api, stats_payload):
        mock_api.get_stats.return_value = stats_payload(tier="team", activeUsers=5)

        result = await tracker.track_usage("user_123", UsageEventType.USER_INVITATION)

        assert result.allowed is False
        assert result.alert.feature == UsageEventType.USER_INVITATION

    @pytest.mark.asyncio
    async def test_concurrent_calls_cannot_overshoot_limit(self, tracker, mock_api, stats_payload):
        mock_api.get_stats.return_value = stats_payload(triageSessions=99)

        results = await asyncio.gather(
            *(tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION) for _ in range(3))
        )

        assert sorted(r.allowed for r in results) == [False, False, True]
        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.usage.triage_sessions == 100

    @pytest.mark.asyncio
    async def test_limit_enforced_when_backend_reports_ended_period(self, tracker, mock_api, stats_payload):
        payload = stats_payload(triageSessions=99)
        payload["currentPeriod"] = {"startDate": "2024-01-01T00:00:00Z", "endDate": "2024-01-31T23:59:59Z"}
        mock_api.get_stats.return_value = payload
        mock_api.post_events.side_effect = UsageApiError("offline")

        results = [await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION) for _ in range(3)]

        assert [r.allowed for r in results] == [True, False, False]
        mock_api.get_stats.assert_awaited_once()


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_backend_down_allows_and_queues(self, tracker, mock_api, queue, store):
        mock_api.get_stats.side_effect = UsageApiError("connection refused")
        mock_api.post_events.side_effect = UsageApiError("connection refused")

        result = await tracker.track_usage("new_user", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is True
        assert len(queue) == 1
        persisted = _pending(store)
        assert len(persisted) == 1
        assert persisted[0]["userId"] == "new_user"
        assert persisted[0]["syncedToServer"] is False

    @pytest.mark.asyncio
    async def test_storage_failure_still_allows(self, mock_api):
        store = InMemoryKeyValueStore()
        store.set = AsyncMock(side_effect=StorageError("quota exceeded"))
        mock_api.post_events.side_effect = UsageApiError("offline")
        tracker = UsageTracker(
            api=mock_api,
            cache=UsageStatsCache(api=mock_api, store=store),
            queue=OfflineEventQueue(store),
        )

        result = await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is True
        assert result.alert is None

    @pytest.mark.asyncio
    async def test_unexpected_error_allows(self, mock_api, queue):
        cache = AsyncMock(spec=UsageStatsCache)
        cache.get.side_effect = RuntimeError("unexpected")
        tracker = UsageTracker(api=mock_api, cache=cache, queue=queue)

        result = await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_stale_stats_still_enforced_when_backend_down(self, tracker, mock_api, stats_payload, cache):
        mock_api.get_stats.return_value = stats_payload(triageSessions=100)
        await cache.get("user_123")
        cache.ttl_seconds = 0
        mock_api.get_stats.side_effect = UsageApiError("offline")

        result = await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        assert result.allowed is False


class TestOffline:
    @pytest.mark.asyncio
    async def test_offline_events_are_queued(self, tracker, mock_api, queue):
        await tracker.set_online(False)

        await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)
        await tracker.track_usage("user_123", UsageEventType.REPORT_GENERATION)

        mock_api.post_events.assert_not_awaited()
        assert [e.event_type for e in queue.snapshot()] == [
            UsageEventType.TRIAGE_SESSION,
            UsageEventType.REPORT_GENERATION,
        ]

    @pytest.mark.asyncio
    async def test_reconnect_flushes_queue(self, tracker, mock_api, queue):
        await tracker.set_online(False)
        await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)

        result = await tracker.set_online(True)

        assert result == SyncResult(synced=1, failed=0)
        assert queue.is_empty()
        assert tracker.is_online

    @pytest.mark.asyncio
    async def test_repeated_online_does_not_sync(self, tracker, mock_api):
        assert await tracker.set_online(True) is None
        mock_api.post_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_mode_queues_everything(self, mock_api, cache, queue):
        tracker = UsageTracker(api=mock_api, cache=cache, queue=queue, enable_real_time_sync=False)

        await tracker.track_usage("user_123", UsageEventType.API_CALL)

        mock_api.post_events.assert_not_awaited()
        assert len(queue) == 1


class TestSyncPendingUsage:
    @pytest.mark.asyncio
    async def test_sends_all_pending_in_one_batch(self, tracker, mock_api, queue, store):
        events = [UsageEvent.create("user_123", UsageEventType.TRIAGE_SESSION) for _ in range(3)]
        for event in events:
            await queue.append(event)

        result = await tracker.sync_pending_usage()

        assert result == SyncResult(synced=3, failed=0)
        mock_api.post_events.assert_awaited_once()
        assert [e.id for e in mock_api.post_events.await_args.args[0]] == [e.id for e in events]
        assert queue.is_empty()
        assert _pending(store) == []

    @pytest.mark.asyncio
    async def test_failure_keeps_queue(self, tracker, mock_api, queue):
        for _ in range(3):
            await queue.append(UsageEvent.create("user_123", UsageEventType.API_CALL))
        mock_api.post_events.side_effect = UsageApiError("gateway timeout", status_code=504)

        result = await tracker.sync_pending_usage()

        assert result == SyncResult(synced=0, failed=3)
        assert len(queue) == 3

    @pytest.mark.asyncio
    async def test_empty_queue_makes_no_request(self, tracker, mock_api):
        result = await tracker.sync_pending_usage()

        assert result == SyncResult()
        mock_api.post_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_queued_during_sync_survive(self, tracker, mock_api, queue):
        await queue.append(UsageEvent.create("user_123", UsageEventType.API_CALL))
        late = UsageEvent.create("user_123", UsageEventType.DATA_EXPORT)

        async def post_and_enqueue(events):
            await queue.append(late)
            return {"success": True}

        mock_api.post_events.side_effect = post_and_enqueue

        result = await tracker.sync_pending_usage()

        assert result.synced == 1
        assert [e.id for e in queue.snapshot()] == [late.id]

    @pytest.mark.asyncio
    async def test_persist_failure_after_sync_still_reports_success(self, tracker, mock_api, queue, store):
        await queue.append(UsageEvent.create("user_123", UsageEventType.API_CALL))
        store.set = AsyncMock(side_effect=StorageError("disk full"))

        result = await tracker.sync_pending_usage()

        assert result.synced == 1
        assert queue.is_empty()


class TestPeriodicSync:
    @pytest.mark.asyncio
    async def test_background_task_flushes_queue(self, tracker, mock_api, queue):
        await queue.append(UsageEvent.create("user_123", UsageEventType.API_CALL))

        await tracker.start_periodic_sync()
        await asyncio.sleep(0.1)
        await tracker.stop_periodic_sync()

        mock_api.post_events.assert_awaited()
        assert queue.is_empty()

    @pytest.mark.asyncio
    async def test_empty_queue_skips_request(self, tracker, mock_api):
        await tracker.start_periodic_sync()
        await asyncio.sleep(0.05)
        await tracker.stop_periodic_sync()

        mock_api.post_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_skips_request(self, tracker, mock_api, queue):
        await queue.append(UsageEvent.create("user_123", UsageEventType.API_CALL))
        await tracker.set_online(False)

        await tracker.start_periodic_sync()
        await asyncio.sleep(0.05)
        await tracker.stop_periodic_sync()

        mock_api.post_events.assert_not_awaited()
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, tracker):
        await tracker.start_periodic_sync()
        task = tracker._sync_task
        await tracker.start_periodic_sync()

        assert tracker._sync_task is task
        await tracker.stop_periodic_sync()
        assert tracker.get_stats()["periodic_sync_running"] is False

    @pytest.mark.asyncio
    async def test_initialize_loads_queue_and_starts_sync(self, mock_api, cache, store):
        await OfflineEventQueue(store).append(UsageEvent.create("user_123", UsageEventType.API_CALL))
        queue = OfflineEventQueue(store)
        tracker = UsageTracker(api=mock_api, cache=cache, queue=queue, sync_interval_seconds=60)

        await tracker.initialize()
        try:
            assert len(queue) == 1
            assert tracker.get_stats()["periodic_sync_running"] is True
        finally:
            await tracker.close()

        assert tracker.get_stats()["periodic_sync_running"] is False

    @pytest.mark.asyncio
    async def test_batch_mode_flushes_on_timer(self, mock_api, cache, queue):
        tracker = UsageTracker(
            api=mock_api, cache=cache, queue=queue, enable_real_time_sync=False, sync_interval_seconds=0.01
        )

        await tracker.initialize()
        try:
            await tracker.track_usage("user_123", UsageEventType.API_CALL)
            await asyncio.sleep(0.1)

            assert queue.is_empty()
            mock_api.post_events.assert_awaited_once()
            assert tracker.get_stats()["periodic_sync_running"] is True
        finally:
            await tracker.close()


class TestTierAndPeriodChanges:
    @pytest.mark.asyncio
    async def test_tier_update_invalidates_cache(self, tracker, mock_api, cache, stats_payload):
        await tracker.get_user_usage_stats("user_123")
        mock_api.get_stats.return_value = stats_payload(tier="pro")

        await tracker.update_subscription_tier("user_123", SubscriptionTier.PRO)

        mock_api.update_tier.assert_awaited_once_with("user_123", SubscriptionTier.PRO)
        assert cache.peek("user_123") is None
        stats = await tracker.get_user_usage_stats("user_123")
        assert stats.subscription_tier == SubscriptionTier.PRO
        assert stats.limits.monthly_session_limit.unlimited

    @pytest.mark.asyncio
    async def test_tier_update_failure_propagates_and_keeps_cache(self, tracker, mock_api, cache):
        cached = await cache.get("user_123")
        mock_api.update_tier.side_effect = UsageApiError("forbidden", status_code=403)

        with pytest.raises(UsageApiError):
            await tracker.update_subscription_tier("user_123", "team")

        assert cache.peek("user_123") is cached

    @pytest.mark.asyncio
    async def test_reset_invalidates_cache(self, tracker, mock_api, cache):
        await tracker.get_user_usage_stats("user_123")

        await tracker.reset_usage_for_new_period("user_123")

        mock_api.reset_period.assert_awaited_once_with("user_123")
        assert cache.peek("user_123") is None

    @pytest.mark.asyncio
    async def test_reset_failure_propagates(self, tracker, mock_api, cache):
        await tracker.get_user_usage_stats("user_123")
        mock_api.reset_period.side_effect = UsageApiError("server error", status_code=500)

        with pytest.raises(UsageApiError):
            await tracker.reset_usage_for_new_period("user_123")

        assert cache.peek("user_123") is not None


class TestReads:
    @pytest.mark.asyncio
    async def test_alerts_for_user(self, tracker, mock_api, stats_payload):
        mock_api.get_stats.return_value = stats_payload(triageSessions=85)

        alerts = await tracker.get_user_usage_alerts("user_123")

        assert [(a.feature, a.type) for a in alerts] == [(UsageEventType.TRIAGE_SESSION, "warning")]

    @pytest.mark.asyncio
    async def test_alerts_empty_on_failure(self, mock_api, queue):
        cache = AsyncMock(spec=UsageStatsCache)
        cache.get.side_effect = RuntimeError("boom")
        tracker = UsageTracker(api=mock_api, cache=cache, queue=queue)

        assert await tracker.get_user_usage_alerts("user_123") == []

    @pytest.mark.asyncio
    async def test_analytics(self, tracker, mock_api):
        mock_api.get_analytics.return_value = {
            "dailyUsage": [{"date": "2024-05-01", "sessions": 2, "apiCalls": 5}],
            "featureUsage": {"triage_session": 2},
            "peakUsageTimes": [],
            "totalEvents": 7,
        }
        start = datetime(2024, 5, 1, tzinfo=timezone.utc)
        end = datetime(2024, 5, 31, tzinfo=timezone.utc)

        analytics = await tracker.get_usage_analytics("user_123", start, end)

        assert analytics.total_events == 7
        mock_api.get_analytics.assert_awaited_once_with("user_123", start, end)

    @pytest.mark.asyncio
    async def test_malformed_analytics_raises(self, tracker, mock_api):
        mock_api.get_analytics.return_value = {"totalEvents": -4}

        with pytest.raises(UsageApiError):
            await tracker.get_usage_analytics(
                "user_123", datetime(2024, 5, 1, tzinfo=timezone.utc), datetime(2024, 5, 2, tzinfo=timezone.utc)
            )

    @pytest.mark.asyncio
    async def test_stats_force_refresh(self, tracker, mock_api):
        await tracker.get_user_usage_stats("user_123")
        await tracker.get_user_usage_stats("user_123", force_refresh=True)

        assert mock_api.get_stats.await_count == 2

    @pytest.mark.asyncio
    async def test_returned_stats_are_a_copy(self, tracker, cache):
        stats = await tracker.get_user_usage_stats("user_123")
        stats.usage.triage_sessions = 50

        assert cache.peek("user_123").usage.triage_sessions == 0
        await tracker.track_usage("user_123", UsageEventType.TRIAGE_SESSION)
        assert (await tracker.get_user_usage_stats("user_123")).usage.triage_sessions == 1
