"""Usage alerts derived from percentage-used thresholds.

``alerts_for`` answers "what should the user be warned about right now"
for UI banners; it never gates an action and never emits ``exceeded``.
``exceeded`` alerts come only from a denied limit check.
"""

from __future__ import annotations

from collections.abc import Callable

from ..models.usage import UsageAlert, UsageEventType, UsageStats
from ..models.validators import AlertType, Limit

_MESSAGES: dict[UsageEventType, dict[str, str]] = {
    UsageEventType.TRIAGE_SESSION: {
        "warning": "You're approaching your monthly session limit.",
        "critical": "You've used 95% of your monthly sessions.",
        "exceeded": "You've reached your monthly session limit.",
    },
    UsageEventType.REPORT_GENERATION: {
        "warning": "You're approaching your monthly report limit.",
        "critical": "You've used 95% of your monthly reports.",
        "exceeded": "You've reached your monthly report limit.",
    },
    UsageEventType.DATA_EXPORT: {
        "warning": "You're approaching your monthly export limit.",
        "critical": "You've used 95% of your monthly exports.",
        "exceeded": "You've reached your monthly export limit.",
    },
    UsageEventType.USER_INVITATION: {
        "warning": "You're approaching your user limit.",
        "critical": "You've nearly reached your user limit.",
        "exceeded": "You've reached your maximum user limit.",
    },
    UsageEventType.API_CALL: {
        "warning": "High API usage detected.",
        "critical": "API rate limit nearly reached.",
        "exceeded": "API rate limit exceeded.",
    },
}

_RECOMMENDED_ACTIONS: dict[UsageEventType, dict[str, str]] = {
    UsageEventType.TRIAGE_SESSION: {
        "warning": "Monitor your session usage for the rest of the month.",
        "critical": "Upgrade to Pro for unlimited triage sessions.",
        "exceeded": "Upgrade to Pro to continue running triage sessions this month.",
    },
    UsageEventType.REPORT_GENERATION: {
        "warning": "Monitor your report usage for the rest of the month.",
        "critical": "Upgrade to Pro for unlimited reports.",
        "exceeded": "Upgrade to Pro to generate more reports this month.",
    },
    UsageEventType.DATA_EXPORT: {
        "warning": "Monitor your export usage for the rest of the month.",
        "critical": "Upgrade to Pro for unlimited exports.",
        "exceeded": "Upgrade to Pro to export more data this month.",
    },
    UsageEventType.USER_INVITATION: {
        "warning": "Review active users on your team.",
        "critical": "Remove inactive users or upgrade for more seats.",
        "exceeded": "Upgrade your plan to invite more users.",
    },
    UsageEventType.API_CALL: {
        "warning": "Reduce request frequency.",
        "critical": "Batch requests or upgrade for a higher rate limit.",
        "exceeded": "Wait before retrying or upgrade for a higher rate limit.",
    },
}

# feature -> (limit, current usage, percentage used)
_FEATURE_READERS: dict[UsageEventType, Callable[[UsageStats], tuple[Limit, int | float, int]]] = {
    UsageEventType.TRIAGE_SESSION: lambda s: (
        s.limits.monthly_session_limit,
        s.usage.triage_sessions,
        s.percentages_used.sessions,
    ),
    UsageEventType.REPORT_GENERATION: lambda s: (
        s.limits.max_reports_per_month,
        s.usage.reports_generated,
        s.percentages_used.reports,
    ),
    UsageEventType.DATA_EXPORT: lambda s: (
        s.limits.max_exports_per_month,
        s.usage.data_exports,
        s.percentages_used.exports,
    ),
    UsageEventType.USER_INVITATION: lambda s: (
        s.limits.max_users,
        s.usage.active_users,
        s.percentages_used.users,
    ),
}

ALERT_FEATURES = tuple(_FEATURE_READERS)
"""Features examined by ``alerts_for``, in output order."""


def build_alert(alert_type: AlertType, feature: UsageEventType, stats: UsageStats) -> UsageAlert:
    """Construct an alert for *feature* from the current stats."""
    reader = _FEATURE_READERS.get(feature)
    if reader is None:
        # API calls are capped per minute, not per period
        limit_value, current, percentage = stats.limits.api_calls_per_minute, stats.usage.api_calls, 0
    else:
        limit, current, percentage = reader(stats)
        limit_value = 0 if limit.unlimited else limit.value

    return UsageAlert(
        type=alert_type,
        feature=feature,
        current_usage=current,
        limit=limit_value,
        percentage_used=percentage,
        message=_MESSAGES[feature][alert_type],
        recommended_action=_RECOMMENDED_ACTIONS[feature][alert_type],
        upgrade_required=alert_type == "exceeded",
    )


def alerts_for(
    stats: UsageStats,
    warning_threshold: int = 80,
    critical_threshold: int = 95,
) -> list[UsageAlert]:
    """
    Return at most one threshold alert per finite-limit feature.

    Args:
        stats: Current usage stats
        warning_threshold: Percentage used at which a warning is raised
        critical_threshold: Percentage used at which a critical alert replaces the warning

    Returns:
        Alerts ordered sessions, reports, exports, users
    """
    alerts: list[UsageAlert] = []

    for feature, reader in _FEATURE_READERS.items():
        limit, _, percentage = reader(stats)
        if limit.unlimited:
            continue

        if percentage >= critical_threshold:
            alerts.append(build_alert("critical", feature, stats))
        elif percentage >= warning_threshold:
            alerts.append(build_alert("warning", feature, stats))

    return alerts
