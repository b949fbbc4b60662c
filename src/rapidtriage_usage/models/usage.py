"""Usage accounting models.

Pydantic v2 models for the per-user usage record, tracked events,
alerts and the results returned by the tracker. Every model round-trips
through the backend's camelCase JSON.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..utils.periods import calendar_month_bounds, ensure_aware, utcnow
from .tiers import SubscriptionTier, UsageLimits, limits_for
from .validators import WIRE_CONFIG, AlertType, NonNegativeFloat, NonNegativeInt, Percentage

BYTES_PER_GB = 1024**3


class UsageEventType(str, Enum):
    """Actions that count towards a quota."""

    TRIAGE_SESSION = "triage_session"
    API_CALL = "api_call"
    REPORT_GENERATION = "report_generation"
    DATA_EXPORT = "data_export"
    USER_INVITATION = "user_invitation"


# ---------------------------------------------------------------------------
# Usage record
# ---------------------------------------------------------------------------


class UsageCounters(BaseModel):
    """Current-period counters. Only ever incremented locally by the tracker."""

    model_config = WIRE_CONFIG

    triage_sessions: NonNegativeInt = 0
    api_calls: NonNegativeInt = 0
    reports_generated: NonNegativeInt = 0
    data_exports: NonNegativeInt = 0
    active_users: NonNegativeInt = 0
    storage_used_gb: NonNegativeFloat = Field(default=0.0, alias="storageUsedGB")


class UsagePeriod(BaseModel):
    model_config = WIRE_CONFIG

    start_date: datetime
    end_date: datetime

    def contains(self, moment: datetime) -> bool:
        moment = ensure_aware(moment)
        return ensure_aware(self.start_date) <= moment <= ensure_aware(self.end_date)

    @classmethod
    def current_month(cls, now: datetime | None = None) -> UsagePeriod:
        start, end = calendar_month_bounds(now)
        return cls(start_date=start, end_date=end)


class PercentagesUsed(BaseModel):
    """Rounded percentage of each cap consumed; ``-1`` when unlimited."""

    model_config = WIRE_CONFIG

    sessions: Percentage = 0
    users: Percentage = 0
    reports: Percentage = 0
    exports: Percentage = 0
    storage: Percentage = 0


class UsageStats(BaseModel):
    """A user's usage for the current billing period, with resolved limits."""

    model_config = WIRE_CONFIG

    user_id: str
    subscription_tier: SubscriptionTier
    current_period: UsagePeriod
    usage: UsageCounters
    limits: UsageLimits
    percentages_used: PercentagesUsed = Field(default_factory=PercentagesUsed)

    def recompute_percentages(self) -> None:
        """Re-derive ``percentages_used`` from ``usage`` and ``limits``."""
        usage, limits = self.usage, self.limits
        self.percentages_used = PercentagesUsed(
            sessions=limits.monthly_session_limit.percentage_of(usage.triage_sessions),
            users=limits.max_users.percentage_of(usage.active_users),
            reports=limits.max_reports_per_month.percentage_of(usage.reports_generated),
            exports=limits.max_exports_per_month.percentage_of(usage.data_exports),
            storage=limits.max_storage_gb.percentage_of(usage.storage_used_gb),
        )

    def record(self, event_type: UsageEventType, metadata: dict[str, Any] | None = None) -> None:
        """Apply one allowed event to the counters, then refresh percentages."""
        metadata = metadata or {}
        usage = self.usage

        if event_type == UsageEventType.TRIAGE_SESSION:
            usage.triage_sessions += 1
        elif event_type == UsageEventType.REPORT_GENERATION:
            usage.reports_generated += 1
        elif event_type == UsageEventType.DATA_EXPORT:
            usage.data_exports += 1
            data_size = metadata.get("dataSize")
            if isinstance(data_size, (int, float)) and not isinstance(data_size, bool) and data_size > 0:
                usage.storage_used_gb += data_size / BYTES_PER_GB
        elif event_type == UsageEventType.API_CALL:
            usage.api_calls += 1
        # USER_INVITATION: seats are counted by the backend once accepted

        self.recompute_percentages()

    @classmethod
    def default(
        cls,
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        now: datetime | None = None,
    ) -> UsageStats:
        """Zero usage for *tier* over the calendar month containing *now*."""
        stats = cls(
            user_id=user_id,
            subscription_tier=tier,
            current_period=UsagePeriod.current_month(now or utcnow()),
            usage=UsageCounters(),
            limits=limits_for(tier),
        )
        stats.recompute_percentages()
        return stats

    @classmethod
    def from_server(cls, payload: Any) -> UsageStats:
        """Build stats from a ``GET /usage/{userId}/stats`` payload.

        Limits are re-resolved from the tier table and percentages are
        recomputed locally; the server's values for either are ignored.

        Raises:
            ValueError: payload is not an object or fails validation
        """
        if not isinstance(payload, dict):
            raise ValueError(f"expected stats object, got {type(payload).__name__}")

        data = {k: v for k, v in payload.items() if k not in ("limits", "percentagesUsed", "percentages_used")}
        tier = SubscriptionTier(data.get("subscriptionTier", data.get("subscription_tier")))
        data["limits"] = limits_for(tier)

        stats = cls.model_validate(data)
        stats.recompute_percentages()
        return stats


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def generate_event_id() -> str:
    """Opaque unique id: ``usage_<epoch-ms>_<9 hex chars>``."""
    return f"usage_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class UsageEvent(BaseModel):
    """Immutable record of one tracked action."""

    model_config = ConfigDict(**WIRE_CONFIG, frozen=True)

    id: str = Field(min_length=1)
    user_id: str
    event_type: UsageEventType
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    synced_to_server: bool = False

    @classmethod
    def create(
        cls,
        user_id: str,
        event_type: UsageEventType,
        metadata: dict[str, Any] | None = None,
    ) -> UsageEvent:
        return cls(
            id=generate_event_id(),
            user_id=user_id,
            event_type=event_type,
            timestamp=utcnow(),
            metadata=dict(metadata or {}),
        )

    def mark_synced(self) -> UsageEvent:
        """Return a copy acknowledged by the server."""
        return self.model_copy(update={"synced_to_server": True})

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class UsageAlert(BaseModel):
    """Warning, critical or exceeded notice for one feature. Never stored."""

    model_config = ConfigDict(**WIRE_CONFIG, frozen=True)

    type: AlertType
    feature: UsageEventType
    current_usage: int | float
    limit: int | float
    percentage_used: int
    message: str
    recommended_action: str
    upgrade_required: bool = False


class LimitCheckResult(BaseModel):
    """Outcome of a quota check: whether to proceed and what to show."""

    model_config = WIRE_CONFIG

    allowed: bool
    alert: UsageAlert | None = None


class SyncResult(BaseModel):
    synced: NonNegativeInt = 0
    failed: NonNegativeInt = 0


class DailyUsage(BaseModel):
    model_config = WIRE_CONFIG

    date: str
    sessions: NonNegativeInt = 0
    api_calls: NonNegativeInt = 0


class PeakUsage(BaseModel):
    hour: int = Field(ge=0, le=23)
    usage: NonNegativeInt = 0


class UsageAnalytics(BaseModel):
    """Read-only reporting data from ``GET /usage/{userId}/analytics``."""

    model_config = WIRE_CONFIG

    daily_usage: list[DailyUsage] = Field(default_factory=list)
    feature_usage: dict[str, int] = Field(default_factory=dict)
    peak_usage_times: list[PeakUsage] = Field(default_factory=list)
    total_events: NonNegativeInt = 0
