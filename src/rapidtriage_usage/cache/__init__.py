"""Per-user usage stats cache."""

from .stats_cache import UsageStatsCache

__all__ = ["UsageStatsCache"]
