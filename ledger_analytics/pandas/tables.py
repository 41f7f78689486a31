"""Pandas DataFrame adapters for ledger result tables."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import pandas as pd  # type: ignore

from ledger_analytics.analyses.breakdown import (
    DIMENSION_FIELDS,
    BreakdownDimension,
    BreakdownRow,
)
from ledger_analytics.analyses.customers import CohortCell, LTVRow, RFMRow
from ledger_analytics.analyses.kpi import KPISummary
from ledger_analytics.analyses.time_series import TimeSeriesPoint
from ledger_analytics.foundation.records import (
    NormalizationResult,
    load_customers,
    load_products,
    normalize_order_lines,
)
from ._utils import dataclass_columns, to_cell


def _to_dataframe(items: Sequence[Any], cls: type) -> pd.DataFrame:
    columns = dataclass_columns(cls)
    if not items:
        return pd.DataFrame(columns=columns)
    rows = [{name: to_cell(getattr(item, name)) for name in columns} for item in items]
    return pd.DataFrame(rows, columns=columns)


def kpi_to_dataframe(kpi: KPISummary) -> pd.DataFrame:
    """Convert a KPISummary to a single-row DataFrame.

    Undefined ratios (zero sales or orders) become NaN.
    """
    return _to_dataframe([kpi], KPISummary)


def time_series_to_dataframe(points: Sequence[TimeSeriesPoint]) -> pd.DataFrame:
    """Convert a time series to a DataFrame, one row per calendar bucket.

    Example:
        >>> series = aggregate_time_series(lines, Granularity.MONTH)
        >>> df = time_series_to_dataframe(series)
        >>> df.plot(x="period_label", y="sales")
    """
    return _to_dataframe(points, TimeSeriesPoint)


def breakdown_to_dataframe(
    rows: Sequence[BreakdownRow],
    dimension: Optional[BreakdownDimension] = None,
) -> pd.DataFrame:
    """Convert breakdown rows to a DataFrame with one column per key field.

    Args:
        rows: Rows from aggregate_breakdown or product_drilldown
        dimension: Used to name the key columns when ``rows`` is empty

    Returns:
        DataFrame with the key columns (e.g. ``state``, ``city``) followed by
        label, orders, sales, profit, profit_rows, units, pct_of_total_sales
    """
    metric_columns = dataclass_columns(BreakdownRow, exclude=("key_fields", "key"))
    if rows:
        key_fields = list(rows[0].key_fields)
    elif dimension is not None:
        key_fields = list(DIMENSION_FIELDS[BreakdownDimension(dimension)])
    else:
        key_fields = []

    columns = key_fields + metric_columns
    if not rows:
        return pd.DataFrame(columns=columns)
    records = []
    for row in rows:
        record = dict(zip(row.key_fields, row.key))
        record.update({name: to_cell(getattr(row, name)) for name in metric_columns})
        records.append(record)
    return pd.DataFrame(records, columns=columns)


def cohort_matrix_to_dataframe(cells: Sequence[CohortCell]) -> pd.DataFrame:
    """Convert the sparse cohort matrix to a long-format DataFrame."""
    return _to_dataframe(cells, CohortCell)


def cohort_matrix_to_dense(
    cells: Sequence[CohortCell],
    value: str = "active_customers",
    columns: str = "months_since_acquisition",
) -> pd.DataFrame:
    """Pivot the sparse cohort matrix into a dense cohort × period grid.

    Cells absent from the sparse matrix had no active customers and are
    filled with zero.

    Args:
        cells: Output of build_cohort_matrix
        value: Cell metric to show (``active_customers`` or ``retention_pct``)
        columns: ``months_since_acquisition`` for a left-aligned triangle, or
            ``activity_month`` for calendar columns

    Example:
        >>> dense = cohort_matrix_to_dense(build_cohort_matrix(summaries))
        >>> dense.loc[pd.Timestamp("2024-01-01"), 1]  # month-1 retention of Jan cohort
    """
    if value not in ("active_customers", "retention_pct"):
        raise ValueError(f"Unsupported cohort value: {value}")
    if columns not in ("months_since_acquisition", "activity_month"):
        raise ValueError(f"Unsupported cohort columns: {columns}")
    long_df = cohort_matrix_to_dataframe(cells)
    if long_df.empty:
        return pd.DataFrame()
    dense = long_df.pivot_table(
        index="cohort_month",
        columns=columns,
        values=value,
        aggfunc="sum",
        fill_value=0,
    )
    # Periods where no cohort was active still get a column
    if columns == "months_since_acquisition":
        full_columns = list(range(int(long_df[columns].max()) + 1))
    else:
        full_columns = pd.date_range(
            long_df[columns].min(), long_df[columns].max(), freq="MS"
        )
    return dense.reindex(columns=full_columns, fill_value=0)


def rfm_to_dataframe(rows: Sequence[RFMRow]) -> pd.DataFrame:
    """Convert the RFM table to a DataFrame, keeping its monetary ordering."""
    return _to_dataframe(rows, RFMRow)


def ltv_to_dataframe(rows: Sequence[LTVRow]) -> pd.DataFrame:
    """Convert the lifetime-value ranking to a DataFrame."""
    return _to_dataframe(rows, LTVRow)


def _dataframe_records(df: pd.DataFrame) -> list[dict[str, Any]]:
    return df.to_dict("records")


def normalize_dataframe(
    orders_df: pd.DataFrame,
    products_df: Optional[pd.DataFrame] = None,
    customers_df: Optional[pd.DataFrame] = None,
    *,
    derive_profit_from_cost: bool = False,
) -> NormalizationResult:
    """Normalize an order-line DataFrame, joining optional dimension frames.

    NaN/NaT cells are treated as missing values.

    Example:
        >>> result = normalize_dataframe(orders_df, products_df, customers_df)
        >>> kpis = calculate_kpis(revenue_eligible(result.records))
    """
    products = (
        load_products(_dataframe_records(products_df)).items
        if products_df is not None
        else None
    )
    customers = (
        load_customers(_dataframe_records(customers_df)).items
        if customers_df is not None
        else None
    )
    return normalize_order_lines(
        _dataframe_records(orders_df),
        products,
        customers,
        derive_profit_from_cost=derive_profit_from_cost,
    )
