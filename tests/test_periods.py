from datetime import datetime, time, timedelta, timezone

import pytest

from errors import ValidationError
from periods import (
    as_instant,
    default_period,
    month_period,
    resolve_period,
    to_reference,
    trailing_periods,
)


def test_month_period_covers_whole_month_including_leap_day() -> None:
    period = month_period(2, 2024)
    assert period.start == datetime(2024, 2, 1, 0, 0)
    assert period.end == datetime.combine(datetime(2024, 2, 29), time.max)
    assert period.contains(datetime(2024, 2, 29, 23, 59, 59))
    assert not period.contains(datetime(2024, 3, 1))


def test_december_period_ends_on_new_years_eve() -> None:
    period = month_period(12, 2025)
    assert period.end.date() == datetime(2025, 12, 31).date()
    assert (period.month, period.year) == (12, 2025)


def test_trailing_periods_are_oldest_first_and_cross_year_boundary() -> None:
    periods = trailing_periods(3, datetime(2025, 1, 15, 10, 0))
    assert [(p.year, p.month) for p in periods] == [(2024, 11), (2024, 12), (2025, 1)]
    for earlier, later in zip(periods, periods[1:]):
        assert earlier.end < later.start


@pytest.mark.parametrize("n", [0, -3])
def test_trailing_periods_non_positive_is_empty(n: int) -> None:
    assert trailing_periods(n, datetime(2025, 6, 1)) == []


def test_default_period_contains_reference() -> None:
    reference = datetime(2025, 3, 31, 23, 30)
    period = default_period(reference)
    assert (period.month, period.year) == (3, 2025)
    assert period.contains(reference)


def test_aware_reference_is_converted_to_configured_zone() -> None:
    # 01:00 at UTC+2 on Jan 1st is still Dec 31st in UTC.
    reference = datetime(2025, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_reference(reference) == datetime(2024, 12, 31, 23, 0)
    assert default_period(reference).month == 12


def test_as_instant_attaches_zone_to_naive_values() -> None:
    value = as_instant(datetime(2025, 5, 1, 12, 0))
    assert value.utcoffset() == timedelta(0)
    assert value.isoformat() == "2025-05-01T12:00:00+00:00"


def test_resolve_period_uses_explicit_month_when_both_given() -> None:
    period = resolve_period(7, 2023, reference=datetime(2025, 1, 1))
    assert (period.month, period.year) == (7, 2023)


def test_resolve_period_falls_back_to_reference_month() -> None:
    period = resolve_period(7, None, reference=datetime(2025, 1, 10))
    assert (period.month, period.year) == (1, 2025)


@pytest.mark.parametrize("month,year", [(0, 2025), (13, 2025), (5, 1969), (5, 3001)])
def test_resolve_period_rejects_out_of_range(month: int, year: int) -> None:
    with pytest.raises(ValidationError):
        resolve_period(month, year)
