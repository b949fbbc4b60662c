"""Quota decision for a single attempted action.

Each event type is checked against its own counter and cap; there is no
coupling between features. A denial always carries an ``exceeded`` alert.
API calls are never denied here: the per-minute cap in the tier table is
a rate limit, which this package does not enforce.
"""

import logging
from typing import Any

from ..models.usage import LimitCheckResult, UsageEventType, UsageStats
from .alerts import build_alert

logger = logging.getLogger(__name__)


def check_usage_limit(
    stats: UsageStats,
    event_type: UsageEventType | str,
    metadata: dict[str, Any] | None = None,
) -> LimitCheckResult:
    """
    Decide whether *event_type* may proceed given *stats*.

    Args:
        stats: Current usage stats (limits already resolved from the tier)
        event_type: Action being attempted
        metadata: Event metadata (accepted for interface symmetry; no check uses it)

    Returns:
        ``LimitCheckResult(allowed=True)`` or a denial with an ``exceeded`` alert
    """
    try:
        event_type = UsageEventType(event_type)
    except ValueError:
        logger.warning(f"Unknown usage event type {event_type!r}; allowing")
        return LimitCheckResult(allowed=True)

    usage, limits = stats.usage, stats.limits

    if event_type == UsageEventType.TRIAGE_SESSION:
        exhausted = limits.monthly_session_limit.exhausted_by(usage.triage_sessions)
    elif event_type == UsageEventType.REPORT_GENERATION:
        exhausted = limits.max_reports_per_month.exhausted_by(usage.reports_generated)
    elif event_type == UsageEventType.DATA_EXPORT:
        exhausted = limits.max_exports_per_month.exhausted_by(usage.data_exports)
    elif event_type == UsageEventType.USER_INVITATION:
        exhausted = limits.max_users.exhausted_by(usage.active_users)
    else:
        exhausted = False

    if exhausted:
        return LimitCheckResult(allowed=False, alert=build_alert("exceeded", event_type, stats))
    return LimitCheckResult(allowed=True)
