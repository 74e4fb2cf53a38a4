"""
Calendar helpers for period bucketing.

Periods are calendar months, not rolling 30-day windows.
All timestamps are naive UTC.
"""

import calendar
from datetime import date, datetime, timezone
from typing import Iterator, Optional, Tuple

Period = Tuple[int, int]  # (year, month)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def period_of(value: datetime) -> Period:
    return (value.year, value.month)


def month_key(year: int, month: int) -> str:
    """'2025-03' style key, sortable as text."""
    return f"{year:04d}-{month:02d}"


def month_name(year: int, month: int) -> str:
    """'March 2025' style label."""
    return f"{calendar.month_name[month]} {year}"


def parse_month_key(value: str) -> Period:
    """
    Parse 'YYYY-MM' into (year, month).

    Raises:
        ValueError: if the text is not a valid month key
    """
    try:
        year_text, month_text = value.strip().split("-", 1)
        year, month = int(year_text), int(month_text)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid month key: {value!r} (expected YYYY-MM)")
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in key: {value!r}")
    return (year, month)


def is_closed_period(year: int, month: int, now: Optional[datetime] = None) -> bool:
    """A period is closed once the calendar has rolled past it."""
    now = now or utcnow()
    return (year, month) < (now.year, now.month)


def next_period(year: int, month: int) -> Period:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def iter_periods(start: Period, end: Period) -> Iterator[Period]:
    """Yield every (year, month) from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current = next_period(*current)


def as_datetime(value: date) -> datetime:
    """Promote a date to midnight of that day."""
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)
