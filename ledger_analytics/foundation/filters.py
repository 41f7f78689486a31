"""Record inclusion rules shared by every aggregate.

Revenue and profit metrics are computed over completed orders only. Keeping
the predicate in one place means the "completed-only" policy cannot drift
between aggregates. Cancellation and return rates are the exception: they run
over the unfiltered set and use :func:`is_outcome_record`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ledger_analytics.foundation.records import OrderLine, OrderStatus

#: Statuses counted by cancellation/return-rate metrics.
OUTCOME_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})


def is_revenue_eligible(record: OrderLine) -> bool:
    """Return True if the line counts towards revenue and profit metrics."""
    return record.order_status is OrderStatus.COMPLETED


def is_outcome_record(record: OrderLine) -> bool:
    """Return True if the line is a cancellation or a return."""
    return record.order_status in OUTCOME_STATUSES


def revenue_eligible(records: Iterable[OrderLine]) -> list[OrderLine]:
    """Return the completed-order subset, the default basis for revenue metrics."""
    return [record for record in records if is_revenue_eligible(record)]


def filter_by_status(records: Iterable[OrderLine], *statuses: OrderStatus) -> list[OrderLine]:
    """Return lines whose status is one of ``statuses``."""
    if not statuses:
        raise ValueError("At least one status is required")
    wanted = frozenset(statuses)
    return [record for record in records if record.order_status in wanted]


def within_window(
    records: Iterable[OrderLine],
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[OrderLine]:
    """Return lines with ``start <= order_date < end``.

    Either bound may be omitted to leave that side open.
    """
    if start is not None and end is not None and start >= end:
        raise ValueError(
            f"start must be before end: start={start.isoformat()}, end={end.isoformat()}"
        )
    return [
        record
        for record in records
        if (start is None or record.order_date >= start)
        and (end is None or record.order_date < end)
    ]
