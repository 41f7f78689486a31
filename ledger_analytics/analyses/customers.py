"""Customer Analytics Engine: repeat rate, cohorts, RFM and lifetime value.

All customer metrics derive from one customer-grouped pass over completed
order lines (:func:`summarize_customers`). Each summary carries the distinct
order count, spend, first/last order timestamps and the set of months in
which the customer was active, which is everything the downstream analyses
need:

- Repeat-customer classification (more than one distinct completed order)
- Monthly acquisition cohorts and their retention matrix
- RFM quintile scoring with deterministic tie-breaking
- Lifetime-value ranking

Quick Start
-----------
>>> from datetime import date
>>> from ledger_analytics.analyses.customers import (
...     summarize_customers, calculate_rfm_table, rank_lifetime_value,
... )
>>> summaries = summarize_customers(lines)  # doctest: +SKIP
>>> rfm = calculate_rfm_table(summaries, as_of=date(2024, 6, 30))  # doctest: +SKIP
>>> ltv = rank_lifetime_value(summaries, as_of=date(2024, 6, 30), limit=200)  # doctest: +SKIP
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from ledger_analytics.foundation.filters import is_revenue_eligible, within_window
from ledger_analytics.foundation.measures import (
    ZERO,
    quantize_money,
    safe_pct,
    safe_ratio,
)
from ledger_analytics.foundation.periods import Granularity, months_between, period_start
from ledger_analytics.foundation.records import OrderLine

logger = logging.getLogger(__name__)

#: Number of RFM buckets per dimension (quintiles).
DEFAULT_RFM_BINS = 5


@dataclass(frozen=True)
class CustomerSummary:
    """Per-customer aggregate over completed order lines.

    Attributes
    ----------
    customer_id:
        Customer identifier.
    orders:
        Distinct completed orders.
    spend:
        Sum of ``total_amount`` over completed lines.
    first_order_date:
        Timestamp of the earliest completed line.
    last_order_date:
        Timestamp of the latest completed line.
    active_months:
        Start of every calendar month with at least one completed line,
        ascending.
    """

    customer_id: str
    orders: int
    spend: Decimal
    first_order_date: datetime
    last_order_date: datetime
    active_months: tuple[datetime, ...]

    def __post_init__(self) -> None:
        """Validate customer summary."""
        if self.orders <= 0:
            raise ValueError(
                f"Orders must be positive: {self.orders} (customer_id={self.customer_id})"
            )
        if self.first_order_date > self.last_order_date:
            raise ValueError(
                f"first_order_date ({self.first_order_date}) cannot be after "
                f"last_order_date ({self.last_order_date}) (customer_id={self.customer_id})"
            )

    @property
    def is_repeat(self) -> bool:
        return self.orders > 1

    @property
    def cohort_month(self) -> datetime:
        return period_start(self.first_order_date, Granularity.MONTH)


@dataclass(frozen=True)
class RepeatRate:
    """Share of customers with more than one completed order."""

    total_customers: int
    single_order_customers: int
    repeat_customers: int
    repeat_rate_pct: Decimal | None

    def __post_init__(self) -> None:
        """Validate repeat rate."""
        if self.single_order_customers + self.repeat_customers != self.total_customers:
            raise ValueError(
                f"Single ({self.single_order_customers}) + repeat ({self.repeat_customers}) "
                f"customers must equal total customers ({self.total_customers})"
            )


@dataclass(frozen=True)
class CohortCell:
    """Active customers of one acquisition cohort in one activity month.

    Attributes
    ----------
    cohort_month:
        Month of the customers' first completed order.
    activity_month:
        Month in which the customers ordered; never before ``cohort_month``.
    months_since_acquisition:
        Whole months from ``cohort_month`` to ``activity_month``.
    active_customers:
        Distinct customers of the cohort ordering in ``activity_month``.
    cohort_size:
        Customers in the cohort.
    retention_pct:
        ``100 * active_customers / cohort_size`` rounded to 2 places.
    """

    cohort_month: datetime
    activity_month: datetime
    months_since_acquisition: int
    active_customers: int
    cohort_size: int
    retention_pct: Decimal

    def __post_init__(self) -> None:
        """Validate cohort cell constraints."""
        if self.activity_month < self.cohort_month:
            raise ValueError(
                f"activity_month ({self.activity_month.isoformat()}) cannot precede "
                f"cohort_month ({self.cohort_month.isoformat()})"
            )
        if not 0 < self.active_customers <= self.cohort_size:
            raise ValueError(
                f"active_customers must be between 1 and cohort_size "
                f"({self.cohort_size}), got {self.active_customers}"
            )


@dataclass(frozen=True)
class RFMRow:
    """RFM metrics and bucket ranks for one customer.

    Ranks run from 1 (best) to the number of bins (worst): most recent,
    most frequent and highest spending customers rank 1.
    """

    customer_id: str
    recency_days: int
    frequency: int
    monetary: Decimal
    recency_rank: int
    frequency_rank: int
    monetary_rank: int
    rfm_segment: str

    def __post_init__(self) -> None:
        """Validate RFM row."""
        if self.recency_days < 0:
            raise ValueError(
                f"Recency cannot be negative: {self.recency_days} (customer_id={self.customer_id})"
            )
        if self.frequency <= 0:
            raise ValueError(
                f"Frequency must be positive: {self.frequency} (customer_id={self.customer_id})"
            )
        expected = f"{self.recency_rank}{self.frequency_rank}{self.monetary_rank}"
        if self.rfm_segment != expected:
            raise ValueError(
                f"rfm_segment ({self.rfm_segment}) does not match ranks ({expected}) "
                f"(customer_id={self.customer_id})"
            )


@dataclass(frozen=True)
class LTVRow:
    """Lifetime value of one customer and its position in the ranking."""

    rank: int
    customer_id: str
    orders: int
    lifetime_value: Decimal
    avg_order_value: Decimal
    first_order_date: datetime
    last_order_date: datetime
    customer_age_days: int


@dataclass(frozen=True)
class PurchaseBehaviour:
    """Average order value and order frequency across customers.

    ``avg_order_value`` is the mean of each customer's own average order
    value, so every customer weighs the same regardless of order count.
    """

    customers: int
    avg_order_value: Decimal | None
    avg_orders_per_customer: Decimal | None


@dataclass(frozen=True)
class TopCustomerRow:
    """A customer's completed orders and sales within a trailing window."""

    customer_id: str
    orders: int
    sales: Decimal


def _as_of_date(as_of: date | datetime) -> date:
    return as_of.date() if isinstance(as_of, datetime) else as_of


def _days_since(as_of: date, moment: datetime, customer_id: str) -> int:
    days = (as_of - moment.date()).days
    if days < 0:
        raise ValueError(
            f"Order date ({moment.isoformat()}) cannot be after as_of "
            f"({as_of.isoformat()}) for customer {customer_id}"
        )
    return days


@dataclass(slots=True)
class _CustomerAccumulator:
    first_order_date: datetime
    last_order_date: datetime
    spend: Decimal = ZERO
    order_ids: set[str] = field(default_factory=set)
    months: set[datetime] = field(default_factory=set)

    def add(self, record: OrderLine) -> None:
        self.order_ids.add(record.order_id)
        self.spend += record.total_amount
        self.first_order_date = min(self.first_order_date, record.order_date)
        self.last_order_date = max(self.last_order_date, record.order_date)
        self.months.add(period_start(record.order_date, Granularity.MONTH))

    def summary(self, customer_id: str) -> CustomerSummary:
        return CustomerSummary(
            customer_id=customer_id,
            orders=len(self.order_ids),
            spend=quantize_money(self.spend),
            first_order_date=self.first_order_date,
            last_order_date=self.last_order_date,
            active_months=tuple(sorted(self.months)),
        )


def summarize_customers(records: Iterable[OrderLine]) -> list[CustomerSummary]:
    """Group completed lines by customer in a single pass.

    Lines that are not revenue-eligible are skipped, so a customer appears
    only once they have at least one completed order.

    Returns
    -------
    list[CustomerSummary]
        One summary per customer, sorted by customer_id.
    """
    grouped: dict[str, _CustomerAccumulator] = {}
    for record in records:
        if not is_revenue_eligible(record):
            continue
        accumulator = grouped.get(record.customer_id)
        if accumulator is None:
            accumulator = grouped[record.customer_id] = _CustomerAccumulator(
                first_order_date=record.order_date,
                last_order_date=record.order_date,
            )
        accumulator.add(record)

    return [grouped[customer_id].summary(customer_id) for customer_id in sorted(grouped)]


def calculate_repeat_rate(summaries: Sequence[CustomerSummary]) -> RepeatRate:
    """Classify customers as single-order or repeat and compute the repeat rate.

    Examples
    --------
    >>> rate = calculate_repeat_rate(summaries)  # doctest: +SKIP
    >>> rate.repeat_customers, rate.repeat_rate_pct  # doctest: +SKIP
    (1, Decimal('50.00'))
    """
    repeat = sum(1 for summary in summaries if summary.is_repeat)
    total = len(summaries)
    return RepeatRate(
        total_customers=total,
        single_order_customers=total - repeat,
        repeat_customers=repeat,
        repeat_rate_pct=safe_pct(repeat, total),
    )


def build_cohort_matrix(summaries: Sequence[CustomerSummary]) -> list[CohortCell]:
    """Build the sparse cohort × activity-month retention matrix.

    Cohorts are the months of each customer's first completed order. Only
    cells with at least one active customer are returned; consumers rendering
    a dense matrix should treat absent cells as zero. A customer's first
    order always lands in the diagonal cell ``(cohort_month, cohort_month)``.

    Returns
    -------
    list[CohortCell]
        Cells sorted by cohort month, then activity month.
    """
    cohort_sizes: dict[datetime, int] = {}
    active: dict[tuple[datetime, datetime], int] = {}
    for summary in summaries:
        cohort = summary.cohort_month
        cohort_sizes[cohort] = cohort_sizes.get(cohort, 0) + 1
        for month in summary.active_months:
            active[(cohort, month)] = active.get((cohort, month), 0) + 1

    cells: list[CohortCell] = []
    for (cohort, month), count in sorted(active.items()):
        size = cohort_sizes[cohort]
        cells.append(
            CohortCell(
                cohort_month=cohort,
                activity_month=month,
                months_since_acquisition=months_between(cohort, month),
                active_customers=count,
                cohort_size=size,
                retention_pct=safe_pct(count, size),
            )
        )
    return cells


def ntile(ordered_ids: Sequence[str], bins: int) -> dict[str, int]:
    """Split an ordered sequence into ``bins`` buckets numbered from 1.

    Bucket sizes differ by at most one; the first ``len % bins`` buckets
    take the extra member. With fewer members than bins, each member gets
    its own bucket.
    """
    if bins < 1:
        raise ValueError(f"bins must be at least 1, got {bins}")
    size, remainder = divmod(len(ordered_ids), bins)
    buckets: dict[str, int] = {}
    position = 0
    for bucket in range(1, bins + 1):
        bucket_size = size + (1 if bucket <= remainder else 0)
        for customer_id in ordered_ids[position : position + bucket_size]:
            buckets[customer_id] = bucket
        position += bucket_size
    return buckets


def calculate_rfm_table(
    summaries: Sequence[CustomerSummary],
    as_of: date | datetime,
    bins: int = DEFAULT_RFM_BINS,
) -> list[RFMRow]:
    """Score customers on recency, frequency and monetary value.

    Each dimension is ranked independently over every customer with a
    completed order and split into ``bins`` ordinal buckets, 1 being best:
    fewest days since last order, most distinct orders, highest spend.
    Equal values are ordered by customer_id, so identical input always
    yields identical buckets.

    Parameters
    ----------
    summaries:
        Output of :func:`summarize_customers`.
    as_of:
        Reference date for recency ("today").
    bins:
        Buckets per dimension (default: 5 for quintiles).

    Returns
    -------
    list[RFMRow]
        Rows ordered by monetary value descending, then customer_id.

    Raises
    ------
    ValueError
        If a customer's last order falls after ``as_of``.
    """
    if not summaries:
        return []
    reference = _as_of_date(as_of)
    recency = {
        s.customer_id: _days_since(reference, s.last_order_date, s.customer_id)
        for s in summaries
    }

    recency_rank = ntile(
        sorted(recency, key=lambda cid: (recency[cid], cid)),
        bins,
    )
    frequency_rank = ntile(
        [s.customer_id for s in sorted(summaries, key=lambda s: (-s.orders, s.customer_id))],
        bins,
    )
    monetary_rank = ntile(
        [s.customer_id for s in sorted(summaries, key=lambda s: (-s.spend, s.customer_id))],
        bins,
    )

    rows = [
        RFMRow(
            customer_id=s.customer_id,
            recency_days=recency[s.customer_id],
            frequency=s.orders,
            monetary=s.spend,
            recency_rank=recency_rank[s.customer_id],
            frequency_rank=frequency_rank[s.customer_id],
            monetary_rank=monetary_rank[s.customer_id],
            rfm_segment=(
                f"{recency_rank[s.customer_id]}"
                f"{frequency_rank[s.customer_id]}"
                f"{monetary_rank[s.customer_id]}"
            ),
        )
        for s in summaries
    ]
    rows.sort(key=lambda row: (-row.monetary, row.customer_id))
    return rows


def rank_lifetime_value(
    summaries: Sequence[CustomerSummary],
    as_of: date | datetime,
    limit: int | None = None,
) -> list[LTVRow]:
    """Rank customers by cumulative completed-order spend.

    Ties are broken by customer_id ascending. ``customer_age_days`` counts
    days from the first completed order to ``as_of``.
    """
    if limit is not None and limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    reference = _as_of_date(as_of)
    ordered = sorted(summaries, key=lambda s: (-s.spend, s.customer_id))
    if limit is not None:
        ordered = ordered[:limit]

    rows: list[LTVRow] = []
    for position, summary in enumerate(ordered, start=1):
        # orders after as_of are rejected even when the first order is earlier
        _days_since(reference, summary.last_order_date, summary.customer_id)
        rows.append(
            LTVRow(
                rank=position,
                customer_id=summary.customer_id,
                orders=summary.orders,
                lifetime_value=summary.spend,
                avg_order_value=quantize_money(safe_ratio(summary.spend, summary.orders)),
                first_order_date=summary.first_order_date,
                last_order_date=summary.last_order_date,
                customer_age_days=_days_since(
                    reference, summary.first_order_date, summary.customer_id
                ),
            )
        )
    return rows


def calculate_purchase_behaviour(summaries: Sequence[CustomerSummary]) -> PurchaseBehaviour:
    """Average the per-customer order value and order count."""
    if not summaries:
        return PurchaseBehaviour(customers=0, avg_order_value=None, avg_orders_per_customer=None)
    per_customer_aov = sum((s.spend / s.orders for s in summaries), ZERO)
    total_orders = sum(s.orders for s in summaries)
    return PurchaseBehaviour(
        customers=len(summaries),
        avg_order_value=quantize_money(per_customer_aov / len(summaries)),
        avg_orders_per_customer=quantize_money(Decimal(total_orders) / len(summaries)),
    )


def top_customers(
    records: Iterable[OrderLine],
    as_of: date | datetime,
    window_days: int = 365,
    limit: int = 10,
) -> list[TopCustomerRow]:
    """Return the highest-spending customers over the trailing ``window_days``.

    The window starts ``window_days`` before ``as_of`` (at midnight) and
    includes every later completed line.
    """
    if window_days <= 0:
        raise ValueError(f"window_days must be positive, got {window_days}")
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    reference = _as_of_date(as_of)
    window_start = datetime(reference.year, reference.month, reference.day) - timedelta(
        days=window_days
    )
    summaries = summarize_customers(within_window(records, start=window_start))
    logger.debug(f"{len(summaries)} customers ordered since {window_start.date()}")
    ordered = sorted(summaries, key=lambda s: (-s.spend, s.customer_id))[:limit]
    return [
        TopCustomerRow(customer_id=s.customer_id, orders=s.orders, sales=s.spend)
        for s in ordered
    ]
