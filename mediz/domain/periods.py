"""Calendar arithmetic for billing periods.

Month and year additions land on the same day-of-month as the start,
clamped to the last valid day of the target month (Jan 31 + 1 month is
Feb 29 in a leap year, never Mar 2). Time-of-day is preserved.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_seconds(seconds: Optional[float]) -> Optional[datetime]:
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_interval(start: datetime, interval: Any, interval_count: int = 1) -> datetime:
    """Advance ``start`` by ``interval`` x ``interval_count``.

    ``interval`` may be a ``PlanInterval`` or any casing of its name.
    """
    if interval_count < 1:
        raise ValueError("interval_count must be a positive integer")
    unit = str(getattr(interval, "value", interval) or "").upper()
    start = ensure_utc(start)
    if unit == "DAY":
        return start + timedelta(days=interval_count)
    if unit == "WEEK":
        return start + timedelta(weeks=interval_count)
    if unit == "MONTH":
        return _add_months(start, interval_count)
    if unit == "YEAR":
        return _add_months(start, 12 * interval_count)
    raise ValueError(f"Unsupported plan interval: {interval!r}")


def utc_day(value: datetime) -> date:
    return ensure_utc(value).date()


def same_day(a: datetime, b: datetime) -> bool:
    """Compare two instants at UTC day granularity, ignoring time-of-day."""
    return utc_day(a) == utc_day(b)


@dataclass(slots=True)
class PeriodDrift:
    """Report of a stored period end that disagreed with its recomputation."""

    subscription_id: int
    stored_end: datetime
    expected_end: datetime

    @property
    def days_off(self) -> int:
        return (utc_day(self.stored_end) - utc_day(self.expected_end)).days
