"""Usage quota services."""

from .alerts import alerts_for, build_alert
from .event_queue import OfflineEventQueue
from .limit_evaluator import check_usage_limit
from .usage_tracker import UsageTracker

__all__ = [
    "OfflineEventQueue",
    "UsageTracker",
    "alerts_for",
    "build_alert",
    "check_usage_limit",
]
