"""Subscription tiers and their static usage limits.

``TIER_LIMITS`` holds exactly one ``UsageLimits`` row per tier and is
read-only for the lifetime of the process. Limits are always resolved
from this table, never taken from a server payload.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from .validators import UNLIMITED, WIRE_CONFIG, Limit, LimitField


class SubscriptionTier(str, Enum):
    """Subscription plans, ordered FREE < PRO < TEAM < ENTERPRISE."""

    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank >= other.rank

    def is_upgrade_from(self, other: SubscriptionTier) -> bool:
        """True when moving from *other* to this tier is an upgrade."""
        return self > other


_TIER_RANK = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.PRO: 1,
    SubscriptionTier.TEAM: 2,
    SubscriptionTier.ENTERPRISE: 3,
}


class UsageLimits(BaseModel):
    """Per-tier quota record."""

    model_config = ConfigDict(**WIRE_CONFIG, frozen=True)

    tier: SubscriptionTier
    monthly_session_limit: LimitField
    max_users: LimitField
    max_reports_per_month: LimitField
    max_exports_per_month: LimitField
    api_calls_per_minute: int = Field(gt=0)
    max_storage_gb: LimitField = Field(alias="maxStorageGB")


TIER_LIMITS: MappingProxyType[SubscriptionTier, UsageLimits] = MappingProxyType(
    {
        SubscriptionTier.FREE: UsageLimits(
            tier=SubscriptionTier.FREE,
            monthly_session_limit=Limit.finite(100),
            max_users=Limit.finite(1),
            max_reports_per_month=Limit.finite(10),
            max_exports_per_month=Limit.finite(3),
            api_calls_per_minute=60,
            max_storage_gb=Limit.finite(1),
        ),
        SubscriptionTier.PRO: UsageLimits(
            tier=SubscriptionTier.PRO,
            monthly_session_limit=UNLIMITED,
            max_users=Limit.finite(1),
            max_reports_per_month=UNLIMITED,
            max_exports_per_month=UNLIMITED,
            api_calls_per_minute=300,
            max_storage_gb=Limit.finite(10),
        ),
        SubscriptionTier.TEAM: UsageLimits(
            tier=SubscriptionTier.TEAM,
            monthly_session_limit=UNLIMITED,
            max_users=Limit.finite(5),
            max_reports_per_month=UNLIMITED,
            max_exports_per_month=UNLIMITED,
            api_calls_per_minute=600,
            max_storage_gb=Limit.finite(50),
        ),
        SubscriptionTier.ENTERPRISE: UsageLimits(
            tier=SubscriptionTier.ENTERPRISE,
            monthly_session_limit=UNLIMITED,
            max_users=UNLIMITED,
            max_reports_per_month=UNLIMITED,
            max_exports_per_month=UNLIMITED,
            api_calls_per_minute=1200,
            max_storage_gb=UNLIMITED,
        ),
    }
)


def limits_for(tier: SubscriptionTier | str) -> UsageLimits:
    """Return the static limits for *tier* (enum member or its string value)."""
    return TIER_LIMITS[SubscriptionTier(tier)]
