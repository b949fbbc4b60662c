import os
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

# Keep developer RT_* settings out of the test run
for _key in [k for k in os.environ if k.startswith("RT_")]:
    del os.environ[_key]

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from rapidtriage_usage.api.client import UsageApiClient  # noqa: E402
from rapidtriage_usage.cache.stats_cache import UsageStatsCache  # noqa: E402
from rapidtriage_usage.models.tiers import SubscriptionTier  # noqa: E402
from rapidtriage_usage.models.usage import UsageCounters, UsageStats  # noqa: E402
from rapidtriage_usage.services.event_queue import OfflineEventQueue  # noqa: E402
from rapidtriage_usage.services.usage_tracker import UsageTracker  # noqa: E402
from rapidtriage_usage.storage.memory import InMemoryKeyValueStore  # noqa: E402


def current_period_payload() -> dict:
    """Billing period covering the current month, as the backend sends it."""
    now = datetime.now(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    end = datetime(now.year + (now.month == 12), now.month % 12 + 1, 1, tzinfo=timezone.utc)
    return {"startDate": start.isoformat(), "endDate": end.isoformat()}


def server_stats(user_id: str = "user_123", tier: str = "free", **usage) -> dict:
    """Backend ``/usage/{userId}/stats`` payload."""
    counters = {
        "triageSessions": 0,
        "apiCalls": 0,
        "reportsGenerated": 0,
        "dataExports": 0,
        "activeUsers": 0,
        "storageUsedGB": 0,
    }
    counters.update(usage)
    return {
        "userId": user_id,
        "subscriptionTier": tier,
        "currentPeriod": current_period_payload(),
        "usage": counters,
        "percentagesUsed": {"sessions": 0, "users": 0, "reports": 0, "exports": 0, "storage": 0},
    }


@pytest.fixture
def make_stats():
    """Factory for UsageStats in the current period."""

    def _make(tier: SubscriptionTier = SubscriptionTier.FREE, user_id: str = "user_123", **usage) -> UsageStats:
        stats = UsageStats.default(user_id, tier)
        stats.usage = UsageCounters(**usage)
        stats.recompute_percentages()
        return stats

    return _make


@pytest.fixture
def mock_api():
    """Backend client double; every endpoint succeeds by default."""
    api = AsyncMock(spec=UsageApiClient)
    api.get_stats = AsyncMock(return_value=server_stats())
    api.post_events = AsyncMock(return_value={"success": True, "syncedCount": 1, "failedCount": 0})
    api.update_tier = AsyncMock(return_value=None)
    api.reset_period = AsyncMock(return_value=None)
    api.get_analytics = AsyncMock(return_value={})
    return api


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def cache(mock_api, store):
    return UsageStatsCache(api=mock_api, store=store, ttl_seconds=900)


@pytest.fixture
def queue(store):
    return OfflineEventQueue(store=store, storage_key="usage_pending_events")


@pytest.fixture
def tracker(mock_api, cache, queue):
    """Tracker with real-time sync on and no background task started."""
    return UsageTracker(api=mock_api, cache=cache, queue=queue, sync_interval_seconds=0.01)


@pytest.fixture
def stats_payload():
    """Factory for backend stats payloads."""
    return server_stats
