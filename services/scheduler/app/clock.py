"""Calendar-day arithmetic in the scheduler's reference timezone.

Quota rows are keyed by the reference-timezone date so day boundaries do not
depend on where the scheduler happens to run.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def reference_day(now: datetime, tz: ZoneInfo) -> date:
    return ensure_aware(now).astimezone(tz).date()


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` of ``day`` as UTC datetimes."""

    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def minutes_remaining(now: datetime, day: date, tz: ZoneInfo) -> float:
    _, end = day_bounds(day, tz)
    return max((end - ensure_aware(now)).total_seconds() / 60.0, 0.0)
