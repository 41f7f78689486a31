"""Dimensional Breakdown Aggregator: group-by-and-sum over ledger dimensions.

Each group reports distinct orders, sales, profit, units and its share of the
grand sales total. The grand total is taken once from the same filtered set
and reused for every group row. Rows are ordered by sales descending, with
the group label as a stable tie-breaker.

Large ledgers can be sharded across worker processes. Shard partials combine
by addition (sales, profit, units) and by set union (order ids), so the result
does not depend on where shard boundaries fall.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from ledger_analytics.foundation.measures import (
    ZERO,
    ProfitPolicy,
    ProfitTotal,
    quantize_money,
    safe_pct,
)
from ledger_analytics.foundation.records import UNKNOWN, OrderLine

logger = logging.getLogger(__name__)


class BreakdownDimension(str, Enum):
    """Categorical dimensions a ledger can be broken down by."""

    CHANNEL = "channel"
    CATEGORY = "category"
    CATEGORY_SUB_CATEGORY = "category_sub_category"
    STATE_CITY = "state_city"
    PAYMENT_METHOD = "payment_method"
    CUSTOMER_SEGMENT = "customer_segment"
    PRODUCT = "product"


#: OrderLine attributes forming the group key of each dimension.
DIMENSION_FIELDS: dict[BreakdownDimension, tuple[str, ...]] = {
    BreakdownDimension.CHANNEL: ("channel",),
    BreakdownDimension.CATEGORY: ("category",),
    BreakdownDimension.CATEGORY_SUB_CATEGORY: ("category", "sub_category"),
    BreakdownDimension.STATE_CITY: ("state", "city"),
    BreakdownDimension.PAYMENT_METHOD: ("payment_method",),
    BreakdownDimension.CUSTOMER_SEGMENT: ("customer_segment",),
    BreakdownDimension.PRODUCT: ("product_id", "product_name", "category"),
}

_DRILLDOWN_FIELDS = ("category", "sub_category", "product_id", "product_name")


@dataclass(frozen=True)
class BreakdownRow:
    """Aggregated metrics for one group of a dimension.

    Attributes
    ----------
    key_fields:
        Names of the attributes making up ``key`` (e.g. ``("state", "city")``).
    key:
        Group values, ``"Unknown"`` where the attribute was missing.
    label:
        ``key`` joined with ``" / "``; used as the sort tie-breaker.
    pct_of_total_sales:
        Share of the grand sales total in percent, ``None`` when the grand
        total is zero.
    """

    key_fields: tuple[str, ...]
    key: tuple[str, ...]
    label: str
    orders: int
    sales: Decimal
    profit: Decimal | None
    profit_rows: int
    units: int
    pct_of_total_sales: Decimal | None


@dataclass(slots=True)
class _GroupAccumulator:
    sales: Decimal = ZERO
    profit: ProfitTotal = field(default_factory=ProfitTotal)
    units: int = 0
    order_ids: set[str] = field(default_factory=set)

    def add(self, record: OrderLine) -> None:
        self.sales += record.total_amount
        self.profit.add(record.profit_amount)
        self.units += record.quantity
        self.order_ids.add(record.order_id)

    def merge(self, other: _GroupAccumulator) -> None:
        self.sales += other.sales
        self.profit.merge(other.profit)
        self.units += other.units
        self.order_ids |= other.order_ids


def _group_key(record: OrderLine, key_fields: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(getattr(record, name) or UNKNOWN for name in key_fields)


def _aggregate_shard(
    records: Sequence[OrderLine], key_fields: tuple[str, ...]
) -> dict[tuple[str, ...], _GroupAccumulator]:
    """Group one shard of lines. Module-level so worker processes can run it."""
    groups: dict[tuple[str, ...], _GroupAccumulator] = {}
    for record in records:
        key = _group_key(record, key_fields)
        accumulator = groups.get(key)
        if accumulator is None:
            accumulator = groups[key] = _GroupAccumulator()
        accumulator.add(record)
    return groups


def _aggregate_groups(
    records: Sequence[OrderLine],
    key_fields: tuple[str, ...],
    parallel: bool,
    parallel_threshold: int,
    n_workers: Optional[int],
) -> dict[tuple[str, ...], _GroupAccumulator]:
    use_parallel = parallel and len(records) >= parallel_threshold
    if not use_parallel:
        return _aggregate_shard(records, key_fields)

    if n_workers is None:
        workers = os.cpu_count() or 1
    else:
        workers = max(1, n_workers)
    chunk_size = max(1, -(-len(records) // workers))
    chunks = [
        (list(records[i : i + chunk_size]), key_fields)
        for i in range(0, len(records), chunk_size)
    ]
    logger.info(
        f"Aggregating {len(records)} lines by {key_fields} across "
        f"{len(chunks)} shards ({workers} workers)"
    )
    with multiprocessing.Pool(processes=workers) as pool:
        partials = pool.starmap(_aggregate_shard, chunks)

    merged: dict[tuple[str, ...], _GroupAccumulator] = {}
    for partial in partials:
        for key, accumulator in partial.items():
            if key in merged:
                merged[key].merge(accumulator)
            else:
                merged[key] = accumulator
    return merged


def _build_rows(
    groups: dict[tuple[str, ...], _GroupAccumulator],
    key_fields: tuple[str, ...],
    profit_policy: ProfitPolicy,
) -> list[BreakdownRow]:
    grand_total = quantize_money(sum((acc.sales for acc in groups.values()), ZERO))
    rows: list[BreakdownRow] = []
    for key, accumulator in groups.items():
        sales = quantize_money(accumulator.sales)
        rows.append(
            BreakdownRow(
                key_fields=key_fields,
                key=key,
                label=" / ".join(key),
                orders=len(accumulator.order_ids),
                sales=sales,
                profit=accumulator.profit.resolve(profit_policy),
                profit_rows=accumulator.profit.known_rows,
                units=accumulator.units,
                pct_of_total_sales=safe_pct(sales, grand_total),
            )
        )
    return rows


def aggregate_breakdown(
    records: Sequence[OrderLine],
    dimension: BreakdownDimension | str,
    *,
    limit: int | None = None,
    profit_policy: ProfitPolicy = ProfitPolicy.EXCLUDE_UNKNOWN,
    parallel: bool = True,
    parallel_threshold: int = 1_000_000,
    n_workers: Optional[int] = None,
) -> list[BreakdownRow]:
    """Group lines by ``dimension`` and aggregate each group.

    Parameters
    ----------
    records:
        Order lines to aggregate, normally the revenue-eligible subset.
    dimension:
        Dimension to group by.
    limit:
        Keep only the top ``limit`` rows. Percentages are still shares of the
        total over all groups.
    profit_policy:
        How unknown profit values are treated in each group.
    parallel:
        Enable sharded aggregation across worker processes for ledgers of at
        least ``parallel_threshold`` lines.
    parallel_threshold:
        Number of lines above which sharding is used.
    n_workers:
        Worker process count; defaults to the CPU count.

    Returns
    -------
    list[BreakdownRow]
        Rows sorted by sales descending, then label ascending.

    Examples
    --------
    >>> rows = aggregate_breakdown(completed_lines, BreakdownDimension.CHANNEL)  # doctest: +SKIP
    >>> [(row.label, row.pct_of_total_sales) for row in rows]  # doctest: +SKIP
    [('Website', Decimal('62.50')), ('App', Decimal('37.50'))]
    """
    if limit is not None and limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    key_fields = DIMENSION_FIELDS[BreakdownDimension(dimension)]
    groups = _aggregate_groups(records, key_fields, parallel, parallel_threshold, n_workers)
    rows = _build_rows(groups, key_fields, profit_policy)
    rows.sort(key=lambda row: (-row.sales, row.label))
    return rows if limit is None else rows[:limit]


def product_drilldown(
    records: Sequence[OrderLine],
    *,
    profit_policy: ProfitPolicy = ProfitPolicy.EXCLUDE_UNKNOWN,
) -> list[BreakdownRow]:
    """Return per-product rows nested under category and sub-category.

    Ordered by category, sub-category, then sales descending, ready for a
    category → sub-category → product drill-down.
    """
    groups = _aggregate_shard(records, _DRILLDOWN_FIELDS)
    rows = _build_rows(groups, _DRILLDOWN_FIELDS, profit_policy)
    rows.sort(key=lambda row: (row.key[0], row.key[1], -row.sales, row.label))
    return rows
