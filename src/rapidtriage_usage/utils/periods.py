"""Billing period helpers.

A billing period is the calendar month (UTC) containing a given moment.
"""

import calendar
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def calendar_month_bounds(moment: datetime | None = None) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` of the calendar month containing *moment*.

    ``start`` is midnight on the 1st; ``end`` is the last microsecond of
    the month's final day.
    """
    moment = ensure_aware(moment or utcnow()).astimezone(timezone.utc)
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    start = datetime(moment.year, moment.month, 1, tzinfo=timezone.utc)
    end = datetime(moment.year, moment.month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end
