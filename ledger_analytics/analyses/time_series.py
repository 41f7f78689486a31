"""Time-Series Aggregator: calendar-bucketed sales and growth.

Lines are grouped by truncating ``order_date`` to a day, month, quarter or
year. The bucket sequence always covers the full calendar range between the
first and last observed period, so a period with no orders appears with zero
sales instead of being skipped. Growth is a pairwise comparison over that
gap-free sequence.

Quick Start
-----------
>>> from ledger_analytics.foundation.periods import Granularity
>>> from ledger_analytics.analyses.time_series import aggregate_time_series
>>> series = aggregate_time_series(completed_lines, Granularity.MONTH)  # doctest: +SKIP
>>> [(p.period_label, p.sales, p.pct_change) for p in series]  # doctest: +SKIP
[('2024-01', Decimal('250.00'), None), ('2024-02', Decimal('0.00'), Decimal('-100.00'))]
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence

from ledger_analytics.foundation.measures import (
    HUNDRED,
    ZERO,
    ProfitPolicy,
    ProfitTotal,
    quantize_money,
    quantize_pct,
)
from ledger_analytics.foundation.periods import (
    Granularity,
    calendar_range,
    one_year_earlier,
    period_label,
    period_start,
)
from ledger_analytics.foundation.records import OrderLine


class GrowthComparison(str, Enum):
    """Which earlier period a bucket is compared against."""

    PERIOD_OVER_PERIOD = "period_over_period"
    YEAR_OVER_YEAR = "year_over_year"


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Aggregated metrics for one calendar bucket.

    Attributes
    ----------
    period_start:
        Start of the bucket (inclusive).
    period_label:
        Sortable label, e.g. ``2024-01``.
    sales:
        Sum of ``total_amount`` in the bucket; zero for empty buckets.
    profit:
        Sum of known profit in the bucket (``None`` if all unknown).
    profit_rows:
        Lines contributing a known profit.
    orders:
        Distinct orders in the bucket.
    pct_change:
        Sales change versus the previous bucket, in percent. ``None`` for the
        first bucket or when the previous bucket had zero sales.
    """

    granularity: Granularity
    period_start: datetime
    period_label: str
    sales: Decimal
    profit: Decimal | None
    profit_rows: int
    orders: int
    pct_change: Decimal | None


@dataclass(frozen=True)
class GrowthPoint:
    """Sales of a bucket compared with an earlier bucket."""

    period_start: datetime
    period_label: str
    sales: Decimal
    previous_sales: Decimal | None
    pct_change: Decimal | None


@dataclass(frozen=True)
class HourOfDayPoint:
    """Sales and distinct orders placed during one hour of the day."""

    hour: int
    sales: Decimal
    orders: int

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {self.hour}")


def pct_change(current: Decimal, previous: Decimal | None) -> Decimal | None:
    """Return ``100 * (current - previous) / previous`` rounded to 2 places.

    Undefined (``None``) when there is no previous value or it is zero.
    """
    if previous is None or previous == 0:
        return None
    return quantize_pct(HUNDRED * (current - previous) / previous)


def aggregate_time_series(
    records: Sequence[OrderLine],
    granularity: Granularity | str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    profit_policy: ProfitPolicy = ProfitPolicy.EXCLUDE_UNKNOWN,
) -> list[TimeSeriesPoint]:
    """Bucket lines by calendar period and sum sales and profit per bucket.

    Parameters
    ----------
    records:
        Order lines to aggregate, normally the revenue-eligible subset.
    granularity:
        Bucket size.
    start, end:
        Optional range bounds. When given they replace the observed first or
        last date, so the series can be padded or clipped to a reporting
        window. Lines outside the range are ignored. A single bound lying
        beyond the observed data yields just that bound's own period, with
        zero sales.
    profit_policy:
        How unknown profit values are treated in each bucket.

    Returns
    -------
    list[TimeSeriesPoint]
        Exactly one point per calendar period in the range, in order. Empty
        when there are no lines and not both bounds are given.
    """
    granularity = Granularity(granularity)
    if start is not None and end is not None and start > end:
        raise ValueError(
            f"start must not be after end: start={start.isoformat()}, end={end.isoformat()}"
        )
    if records:
        first = start if start is not None else min(r.order_date for r in records)
        last = end if end is not None else max(r.order_date for r in records)
    elif start is not None and end is not None:
        first, last = start, end
    else:
        return []
    if first > last:
        # only one bound was given and it lies past the observed data
        if start is not None:
            last = first
        else:
            first = last

    periods = calendar_range(first, last, granularity)
    sales: dict[datetime, Decimal] = {p: ZERO for p in periods}
    profits: dict[datetime, ProfitTotal] = {p: ProfitTotal() for p in periods}
    orders: dict[datetime, set[str]] = {p: set() for p in periods}

    for record in records:
        bucket = period_start(record.order_date, granularity)
        if bucket not in sales:
            continue
        sales[bucket] += record.total_amount
        profits[bucket].add(record.profit_amount)
        orders[bucket].add(record.order_id)

    points: list[TimeSeriesPoint] = []
    previous: Decimal | None = None
    for bucket in periods:
        bucket_sales = quantize_money(sales[bucket])
        points.append(
            TimeSeriesPoint(
                granularity=granularity,
                period_start=bucket,
                period_label=period_label(bucket, granularity),
                sales=bucket_sales,
                profit=profits[bucket].resolve(profit_policy),
                profit_rows=profits[bucket].known_rows,
                orders=len(orders[bucket]),
                pct_change=pct_change(bucket_sales, previous),
            )
        )
        previous = bucket_sales
    return points


def calculate_growth(
    points: Sequence[TimeSeriesPoint],
    comparison: GrowthComparison | str = GrowthComparison.PERIOD_OVER_PERIOD,
) -> list[GrowthPoint]:
    """Compare each bucket's sales with an earlier bucket.

    ``PERIOD_OVER_PERIOD`` compares with the immediately preceding bucket
    (month-over-month for a monthly series). ``YEAR_OVER_YEAR`` compares with
    the same period one year earlier, and is undefined when that period lies
    outside the series.
    """
    comparison = GrowthComparison(comparison)
    by_start = {point.period_start: point.sales for point in points}

    growth: list[GrowthPoint] = []
    for idx, point in enumerate(points):
        if comparison is GrowthComparison.PERIOD_OVER_PERIOD:
            previous = points[idx - 1].sales if idx > 0 else None
        else:
            previous = by_start.get(one_year_earlier(point.period_start))
        growth.append(
            GrowthPoint(
                period_start=point.period_start,
                period_label=point.period_label,
                sales=point.sales,
                previous_sales=previous,
                pct_change=pct_change(point.sales, previous),
            )
        )
    return growth


def aggregate_hour_of_day(records: Sequence[OrderLine]) -> list[HourOfDayPoint]:
    """Return sales and distinct orders for each of the 24 hours of the day.

    Only meaningful when ``order_date`` carries a time of day; date-only lines
    all fall into hour 0.
    """
    sales = [ZERO] * 24
    orders: list[set[str]] = [set() for _ in range(24)]
    for record in records:
        hour = record.order_date.hour
        sales[hour] += record.total_amount
        orders[hour].add(record.order_id)
    return [
        HourOfDayPoint(hour=hour, sales=quantize_money(sales[hour]), orders=len(orders[hour]))
        for hour in range(24)
    ]
