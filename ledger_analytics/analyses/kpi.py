"""KPI Aggregator: scalar summary metrics over a ledger.

Answers the headline questions of a sales dashboard:
- How many orders were placed, and how much did they bring in?
- How much profit was made, and at what margin?
- What is the average order value?
- How often are orders cancelled or returned?

Orders are always counted as distinct ``order_id`` values, never as lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from ledger_analytics.foundation.filters import is_outcome_record
from ledger_analytics.foundation.measures import (
    ZERO,
    ProfitPolicy,
    ProfitTotal,
    quantize_money,
    safe_pct,
    safe_ratio,
)
from ledger_analytics.foundation.records import OrderLine, OrderStatus


@dataclass(frozen=True)
class KPISummary:
    """Headline KPIs for a filtered set of order lines.

    Attributes
    ----------
    total_orders:
        Number of distinct order ids.
    total_sales:
        Sum of ``total_amount``.
    total_profit:
        Sum of known profit values, or ``None`` when every line's profit is
        unknown (under :attr:`ProfitPolicy.EXCLUDE_UNKNOWN`).
    profit_rows:
        Number of lines whose profit contributed to ``total_profit``.
    unknown_profit_rows:
        Number of lines excluded from ``total_profit`` as unknown.
    profit_margin_pct:
        ``round(100 * total_profit / total_sales, 2)``; ``None`` when sales
        are zero or profit is unknown.
    average_order_value:
        ``total_sales / total_orders``; ``None`` when there are no orders.
    total_units:
        Sum of line quantities.
    line_count:
        Number of ledger lines aggregated.
    """

    total_orders: int
    total_sales: Decimal
    total_profit: Decimal | None
    profit_rows: int
    unknown_profit_rows: int
    profit_margin_pct: Decimal | None
    average_order_value: Decimal | None
    total_units: int
    line_count: int

    def __post_init__(self) -> None:
        """Validate KPI summary."""
        if self.total_orders < 0:
            raise ValueError(f"Total orders cannot be negative: {self.total_orders}")
        if self.total_orders > self.line_count:
            raise ValueError(
                f"Total orders ({self.total_orders}) cannot exceed line count ({self.line_count})"
            )
        if self.profit_rows + self.unknown_profit_rows != self.line_count:
            raise ValueError(
                f"Profit rows ({self.profit_rows}) + unknown profit rows "
                f"({self.unknown_profit_rows}) must equal line count ({self.line_count})"
            )


@dataclass(frozen=True)
class OutcomeRates:
    """Cancellation and return rates over all orders regardless of status."""

    cancelled_orders: int
    returned_orders: int
    total_orders_all: int
    cancel_rate_pct: Decimal | None
    return_rate_pct: Decimal | None

    def __post_init__(self) -> None:
        """Validate outcome counts."""
        for name, value in (
            ("cancelled_orders", self.cancelled_orders),
            ("returned_orders", self.returned_orders),
        ):
            if not 0 <= value <= self.total_orders_all:
                raise ValueError(
                    f"{name} must be between 0 and total_orders_all "
                    f"({self.total_orders_all}): {value}"
                )


def calculate_kpis(
    records: Sequence[OrderLine],
    *,
    profit_policy: ProfitPolicy = ProfitPolicy.EXCLUDE_UNKNOWN,
) -> KPISummary:
    """Compute headline KPIs over an already-filtered set of lines.

    Parameters
    ----------
    records:
        Order lines to aggregate. Pass the revenue-eligible subset (see
        :func:`ledger_analytics.foundation.filters.revenue_eligible`) for
        the standard completed-orders KPIs.
    profit_policy:
        How unknown profit values are treated in ``total_profit``.

    Examples
    --------
    >>> from ledger_analytics.foundation.records import normalize_order_lines
    >>> lines = normalize_order_lines([
    ...     {"order_id": "O1", "order_date": "2024-01-05", "customer_id": "C1",
    ...      "quantity": 1, "unit_price": "100", "profit_amount": "20",
    ...      "order_status": "Completed"},
    ...     {"order_id": "O1", "order_date": "2024-01-05", "customer_id": "C1",
    ...      "quantity": 1, "unit_price": "60", "order_status": "Completed"},
    ... ]).records
    >>> kpis = calculate_kpis(lines)
    >>> kpis.total_orders, kpis.total_sales, kpis.total_profit, kpis.profit_rows
    (1, Decimal('160.00'), Decimal('20.00'), 1)
    """
    order_ids: set[str] = set()
    sales = ZERO
    profit = ProfitTotal()
    units = 0
    for record in records:
        order_ids.add(record.order_id)
        sales += record.total_amount
        profit.add(record.profit_amount)
        units += record.quantity

    total_sales = quantize_money(sales)
    total_profit = profit.resolve(profit_policy)
    total_orders = len(order_ids)

    margin = None if total_profit is None else safe_pct(total_profit, total_sales)
    aov = safe_ratio(total_sales, total_orders)

    return KPISummary(
        total_orders=total_orders,
        total_sales=total_sales,
        total_profit=total_profit,
        profit_rows=profit.known_rows,
        unknown_profit_rows=profit.unknown_rows,
        profit_margin_pct=margin,
        average_order_value=None if aov is None else quantize_money(aov),
        total_units=units,
        line_count=len(records),
    )


def calculate_outcome_rates(records: Sequence[OrderLine]) -> OutcomeRates:
    """Compute cancellation and return rates over the unfiltered ledger.

    An order counts as cancelled (or returned) when any of its lines carries
    that status. Rates are percentages of all distinct orders, ``None`` when
    the ledger is empty.
    """
    all_orders: set[str] = set()
    cancelled: set[str] = set()
    returned: set[str] = set()
    for record in records:
        all_orders.add(record.order_id)
        if not is_outcome_record(record):
            continue
        if record.order_status is OrderStatus.CANCELLED:
            cancelled.add(record.order_id)
        else:
            returned.add(record.order_id)

    total = len(all_orders)
    return OutcomeRates(
        cancelled_orders=len(cancelled),
        returned_orders=len(returned),
        total_orders_all=total,
        cancel_rate_pct=safe_pct(len(cancelled), total),
        return_rate_pct=safe_pct(len(returned), total),
    )

