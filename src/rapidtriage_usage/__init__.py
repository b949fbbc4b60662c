"""
RapidTriage usage tracking.

Tier-based quota enforcement with local accounting, offline queuing and
backend reconciliation. Typical use::

    tracker = await get_usage_tracker()
    result = await tracker.track_usage(user_id, UsageEventType.TRIAGE_SESSION)
    if not result.allowed:
        show_banner(result.alert.message)
"""

from .api.client import UsageApiClient, UsageApiError
from .cache.stats_cache import UsageStatsCache
from .factory import create_usage_tracker, get_usage_tracker, shutdown_usage_tracker
from .models import (
    TIER_LIMITS,
    UNLIMITED,
    Limit,
    LimitCheckResult,
    SubscriptionTier,
    SyncResult,
    UsageAlert,
    UsageAnalytics,
    UsageEvent,
    UsageEventType,
    UsageLimits,
    UsageStats,
    limits_for,
)
from .services import OfflineEventQueue, UsageTracker, alerts_for, check_usage_limit
from .storage import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore, StorageError

__version__ = "1.0.0"

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "Limit",
    "LimitCheckResult",
    "OfflineEventQueue",
    "RedisKeyValueStore",
    "StorageError",
    "SubscriptionTier",
    "SyncResult",
    "TIER_LIMITS",
    "UNLIMITED",
    "UsageAlert",
    "UsageAnalytics",
    "UsageApiClient",
    "UsageApiError",
    "UsageEvent",
    "UsageEventType",
    "UsageLimits",
    "UsageStats",
    "UsageStatsCache",
    "UsageTracker",
    "alerts_for",
    "check_usage_limit",
    "create_usage_tracker",
    "get_usage_tracker",
    "limits_for",
    "shutdown_usage_tracker",
]
