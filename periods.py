from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def year(self) -> int:
        return self.start.year

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


def reference_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_now() -> datetime:
    return datetime.now(reference_zone()).replace(tzinfo=None)


def to_reference(value: datetime) -> datetime:
    """Naive wall-clock time in the configured zone; naive input is taken as-is."""
    if value.tzinfo is None:
        return value
    return value.astimezone(reference_zone()).replace(tzinfo=None)


def as_instant(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=reference_zone())


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def _add_months(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def month_period(month: int, year: int) -> Period:
    start = datetime.combine(date(year, month, 1), time.min)
    end = datetime.combine(_month_end(year, month), time.max)
    return Period(start, end)


def default_period(reference: Optional[datetime] = None) -> Period:
    reference = to_reference(reference) if reference else local_now()
    return month_period(reference.month, reference.year)


def trailing_periods(n: int, reference: Optional[datetime] = None) -> list[Period]:
    if n <= 0:
        return []
    reference = to_reference(reference) if reference else local_now()
    periods: list[Period] = []
    for offset in range(n - 1, -1, -1):
        year, month = _add_months(reference.year, reference.month, -offset)
        periods.append(month_period(month, year))
    return periods


def validate_month(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if not 1970 <= year <= 3000:
        raise ValidationError("Year must be between 1970 and 3000")


def resolve_period(
    month: Optional[int],
    year: Optional[int],
    *,
    reference: Optional[datetime] = None,
) -> Period:
    if month is not None and year is not None:
        validate_month(month, year)
        return month_period(month, year)
    return default_period(reference)
