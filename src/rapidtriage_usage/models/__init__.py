"""Usage accounting data models."""

from .tiers import TIER_LIMITS, SubscriptionTier, UsageLimits, limits_for
from .usage import (
    DailyUsage,
    LimitCheckResult,
    PeakUsage,
    PercentagesUsed,
    SyncResult,
    UsageAlert,
    UsageAnalytics,
    UsageCounters,
    UsageEvent,
    UsageEventType,
    UsagePeriod,
    UsageStats,
)
from .validators import UNLIMITED, Limit

__all__ = [
    "DailyUsage",
    "Limit",
    "LimitCheckResult",
    "PeakUsage",
    "PercentagesUsed",
    "SubscriptionTier",
    "SyncResult",
    "TIER_LIMITS",
    "UNLIMITED",
    "UsageAlert",
    "UsageAnalytics",
    "UsageCounters",
    "UsageEvent",
    "UsageEventType",
    "UsageLimits",
    "UsagePeriod",
    "UsageStats",
    "limits_for",
]
