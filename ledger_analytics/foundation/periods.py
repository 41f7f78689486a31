"""Calendar period utilities for time-bucketed aggregates."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum


class Granularity(str, Enum):
    """Supported calendar bucket sizes."""

    DAY = "day"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


def period_start(dt: datetime, granularity: Granularity) -> datetime:
    """Truncate ``dt`` to the start of its calendar period."""
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.DAY:
        return midnight
    if granularity is Granularity.MONTH:
        return midnight.replace(day=1)
    if granularity is Granularity.QUARTER:
        start_month = ((dt.month - 1) // 3) * 3 + 1
        return midnight.replace(month=start_month, day=1)
    if granularity is Granularity.YEAR:
        return midnight.replace(month=1, day=1)
    raise ValueError(f"Unsupported granularity: {granularity}")  # pragma: no cover


def next_period_start(start: datetime, granularity: Granularity) -> datetime:
    """Return the start of the period following the one starting at ``start``."""
    if granularity is Granularity.DAY:
        return start + timedelta(days=1)
    if granularity is Granularity.MONTH:
        return (start.replace(day=28) + timedelta(days=4)).replace(day=1)
    if granularity is Granularity.QUARTER:
        month = start.month + 3
        if month > 12:
            return start.replace(year=start.year + 1, month=month - 12)
        return start.replace(month=month)
    if granularity is Granularity.YEAR:
        return start.replace(year=start.year + 1)
    raise ValueError(f"Unsupported granularity: {granularity}")  # pragma: no cover


def period_label(start: datetime, granularity: Granularity) -> str:
    """Return a sortable label such as ``2024-01-15``, ``2024-01``, ``2024-Q1`` or ``2024``."""
    if granularity is Granularity.DAY:
        return start.strftime("%Y-%m-%d")
    if granularity is Granularity.MONTH:
        return start.strftime("%Y-%m")
    if granularity is Granularity.QUARTER:
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    if granularity is Granularity.YEAR:
        return f"{start.year}"
    raise ValueError(f"Unsupported granularity: {granularity}")  # pragma: no cover


def calendar_range(first: datetime, last: datetime, granularity: Granularity) -> list[datetime]:
    """Return every period start from ``first``'s period through ``last``'s period.

    Both ends are inclusive, so periods with no activity are still present.
    """
    current = period_start(first, granularity)
    stop = period_start(last, granularity)
    if current > stop:
        raise ValueError(
            f"first must not be after last: first={first.isoformat()}, last={last.isoformat()}"
        )
    periods: list[datetime] = []
    while current <= stop:
        periods.append(current)
        current = next_period_start(current, granularity)
    return periods


def months_between(earlier: datetime, later: datetime) -> int:
    """Return the whole number of calendar months from ``earlier`` to ``later``."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def one_year_earlier(start: datetime) -> datetime:
    """Return the same calendar position one year earlier (Feb 29 maps to Feb 28)."""
    try:
        return start.replace(year=start.year - 1)
    except ValueError:
        return start.replace(year=start.year - 1, day=28)
