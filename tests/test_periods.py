from datetime import datetime, timedelta, timezone

import pytest

from mediz.domain.models import PlanInterval
from mediz.domain.periods import PeriodDrift, add_interval, ensure_utc, from_epoch_seconds, same_day


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_month_end_clamps_to_leap_day():
    assert add_interval(_utc(2024, 1, 31), PlanInterval.MONTH) == _utc(2024, 2, 29)


def test_month_end_clamps_in_common_year():
    assert add_interval(_utc(2023, 1, 31), "month") == _utc(2023, 2, 28)


def test_yearly_period():
    assert add_interval(_utc(2023, 3, 10), PlanInterval.YEAR) == _utc(2024, 3, 10)


def test_leap_day_plus_one_year_clamps():
    assert add_interval(_utc(2024, 2, 29), "YEAR") == _utc(2025, 2, 28)


def test_interval_count_and_year_rollover():
    assert add_interval(_utc(2024, 11, 30, 15, 45), "MONTH", 3) == _utc(2025, 2, 28, 15, 45)


def test_day_and_week_intervals():
    start = _utc(2024, 5, 1, 8)
    assert add_interval(start, "DAY", 10) == start + timedelta(days=10)
    assert add_interval(start, PlanInterval.WEEK, 2) == start + timedelta(weeks=2)


@pytest.mark.parametrize("interval, count", [("FORTNIGHT", 1), ("MONTH", 0)])
def test_invalid_interval_rejected(interval, count):
    with pytest.raises(ValueError):
        add_interval(_utc(2024, 1, 1), interval, count)


def test_naive_datetimes_are_treated_as_utc():
    assert ensure_utc(datetime(2024, 1, 1)) == _utc(2024, 1, 1)
    assert from_epoch_seconds(0) == _utc(1970, 1, 1)
    assert from_epoch_seconds(None) is None


def test_same_day_ignores_time_of_day():
    assert same_day(_utc(2024, 6, 1, 0, 0), _utc(2024, 6, 1, 23, 59))
    assert not same_day(_utc(2024, 6, 1), _utc(2024, 6, 2))


def test_drift_reports_signed_days():
    drift = PeriodDrift(1, stored_end=_utc(2024, 5, 25), expected_end=_utc(2024, 6, 1))
    assert drift.days_off == -7
