"""Full analytics run: normalize once, filter once, fan out to every aggregator.

The report is the output contract for presentation layers: a set of named
tables, each an ordered list of flat rows with stable column names.

Quick Start
-----------
>>> from ledger_analytics import ReportConfig, build_report
>>> report = build_report(
...     order_rows, products=product_rows, customers=customer_rows,
...     config=ReportConfig(as_of="2024-06-30"),
... )  # doctest: +SKIP
>>> tables = report.as_tables()  # doctest: +SKIP
>>> tables["kpi_summary"][0]["total_orders"]  # doctest: +SKIP
1423
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping

import structlog

from ledger_analytics.analyses.breakdown import (
    BreakdownDimension,
    BreakdownRow,
    aggregate_breakdown,
    product_drilldown,
)
from ledger_analytics.analyses.customers import (
    CohortCell,
    LTVRow,
    PurchaseBehaviour,
    RepeatRate,
    RFMRow,
    TopCustomerRow,
    build_cohort_matrix,
    calculate_purchase_behaviour,
    calculate_repeat_rate,
    calculate_rfm_table,
    rank_lifetime_value,
    summarize_customers,
    top_customers,
)
from ledger_analytics.analyses.kpi import (
    KPISummary,
    OutcomeRates,
    calculate_kpis,
    calculate_outcome_rates,
)
from ledger_analytics.analyses.time_series import (
    GrowthComparison,
    GrowthPoint,
    HourOfDayPoint,
    TimeSeriesPoint,
    aggregate_hour_of_day,
    aggregate_time_series,
    calculate_growth,
)
from ledger_analytics.config import ReportConfig
from ledger_analytics.foundation.filters import revenue_eligible
from ledger_analytics.foundation.periods import Granularity
from ledger_analytics.foundation.records import (
    NormalizationResult,
    RowRejection,
    load_customers,
    load_products,
    normalize_order_lines,
)

logger = structlog.get_logger(__name__)


def _serialise_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return [_serialise_value(item) for item in value]
    return value


def _serialise(obj: Any, exclude: Iterable[str] = ()) -> dict[str, Any]:
    skip = set(exclude)
    return {
        item.name: _serialise_value(getattr(obj, item.name))
        for item in dataclasses.fields(obj)
        if item.name not in skip
    }


def _serialise_breakdown(row: BreakdownRow) -> dict[str, Any]:
    payload: dict[str, Any] = dict(zip(row.key_fields, row.key))
    payload.update(_serialise(row, exclude=("key_fields", "key")))
    return payload


@dataclass(frozen=True)
class AnalyticsReport:
    """Every result table of one analytics run.

    Attributes
    ----------
    as_of:
        Reference date used for recency and customer age.
    normalization:
        Accepted order lines and the rejection report.
    dimension_rejections:
        Product and customer dimension rows that failed validation.
    kpi_summary, outcome_rates:
        Headline KPIs (completed orders) and cancel/return rates (all orders).
    time_series, growth, year_over_year:
        Per-granularity bucket series and growth comparisons.
    breakdown:
        Per-dimension group tables.
    lines_after_as_of:
        Completed lines dated after ``as_of``. They count in the KPIs and
        series but are left out of the RFM, LTV and top-customer tables.
    """

    as_of: date
    normalization: NormalizationResult
    dimension_rejections: tuple[RowRejection, ...]
    kpi_summary: KPISummary
    outcome_rates: OutcomeRates
    time_series: dict[Granularity, list[TimeSeriesPoint]]
    growth: dict[Granularity, list[GrowthPoint]]
    year_over_year: dict[Granularity, list[GrowthPoint]]
    hour_of_day: list[HourOfDayPoint]
    breakdown: dict[BreakdownDimension, list[BreakdownRow]]
    product_drilldown: list[BreakdownRow]
    repeat_rate: RepeatRate
    cohort_matrix: list[CohortCell]
    rfm_table: list[RFMRow]
    ltv_ranking: list[LTVRow]
    purchase_behaviour: PurchaseBehaviour
    top_customers: list[TopCustomerRow]
    lines_after_as_of: int = 0

    def as_tables(self) -> dict[str, list[dict[str, Any]]]:
        """Return JSON-serialisable named tables of flat rows."""
        tables: dict[str, list[dict[str, Any]]] = {
            "kpi_summary": [_serialise(self.kpi_summary)],
            "outcome_rates": [_serialise(self.outcome_rates)],
        }
        for granularity, points in self.time_series.items():
            tables[f"time_series[{granularity.value}]"] = [_serialise(p) for p in points]
        for granularity, points in self.growth.items():
            tables[f"growth[{granularity.value}]"] = [_serialise(p) for p in points]
        for granularity, points in self.year_over_year.items():
            tables[f"year_over_year[{granularity.value}]"] = [_serialise(p) for p in points]
        tables["hour_of_day"] = [_serialise(p) for p in self.hour_of_day]
        for dimension, rows in self.breakdown.items():
            tables[f"breakdown[{dimension.value}]"] = [_serialise_breakdown(r) for r in rows]
        tables["product_drilldown"] = [_serialise_breakdown(r) for r in self.product_drilldown]
        tables["repeat_rate"] = [_serialise(self.repeat_rate)]
        tables["cohort_matrix"] = [_serialise(cell) for cell in self.cohort_matrix]
        tables["rfm_table"] = [_serialise(row) for row in self.rfm_table]
        tables["ltv_ranking"] = [_serialise(row) for row in self.ltv_ranking]
        tables["purchase_behaviour"] = [_serialise(self.purchase_behaviour)]
        tables["top_customers"] = [_serialise(row) for row in self.top_customers]
        tables["as_of_scope"] = [
            {"as_of": self.as_of.isoformat(), "lines_after_as_of": self.lines_after_as_of}
        ]
        tables["rejections"] = [
            rejection.as_dict()
            for rejection in (*self.normalization.rejections, *self.dimension_rejections)
        ]
        return tables


def build_report(
    rows: Iterable[Mapping[str, Any]],
    products: Iterable[Mapping[str, Any]] | None = None,
    customers: Iterable[Mapping[str, Any]] | None = None,
    config: ReportConfig | None = None,
) -> AnalyticsReport:
    """Run every aggregator over a raw order ledger.

    Parameters
    ----------
    rows:
        Raw order-line rows.
    products:
        Raw product dimension rows (``product_id``, ``product_name``,
        ``category``, ``sub_category``, ``cost_price``).
    customers:
        Raw customer dimension rows (``customer_id``, ``customer_name``,
        ``customer_segment``, ``signup_date``).
    config:
        Run parameters; defaults to :class:`ReportConfig` defaults.

    Returns
    -------
    AnalyticsReport
        All result tables. Malformed rows are reported in the rejection
        report instead of failing the run.
    """
    config = config or ReportConfig()
    as_of = config.resolved_as_of()
    log = logger.bind(as_of=as_of.isoformat())

    product_load = load_products(products or [])
    customer_load = load_customers(customers or [])
    normalization = normalize_order_lines(
        rows,
        product_load.items,
        customer_load.items,
        derive_profit_from_cost=config.derive_profit_from_cost,
    )
    log.info(
        "ledger_normalized",
        accepted=normalization.accepted,
        rejected=normalization.rejected,
        rejection_counts=normalization.rejection_counts(),
        products=len(product_load.items),
        customers=len(customer_load.items),
    )

    records = list(normalization.records)
    completed = revenue_eligible(records)
    policy = config.profit_policy

    time_series = {
        granularity: aggregate_time_series(completed, granularity, profit_policy=policy)
        for granularity in config.granularities
    }
    growth = {
        granularity: calculate_growth(points, GrowthComparison.PERIOD_OVER_PERIOD)
        for granularity, points in time_series.items()
    }
    year_over_year = {
        granularity: calculate_growth(points, GrowthComparison.YEAR_OVER_YEAR)
        for granularity, points in time_series.items()
    }
    breakdown = {
        dimension: aggregate_breakdown(
            completed,
            dimension,
            limit=config.breakdown_limit,
            profit_policy=policy,
            parallel=config.parallel,
            parallel_threshold=config.parallel_threshold,
            n_workers=config.n_workers,
        )
        for dimension in config.dimensions
    }

    summaries = summarize_customers(completed)
    # recency and customer age are only defined up to as_of
    cutoff = datetime(as_of.year, as_of.month, as_of.day) + timedelta(days=1)
    as_of_lines = [record for record in completed if record.order_date < cutoff]
    lines_after_as_of = len(completed) - len(as_of_lines)
    if lines_after_as_of:
        log.warning("lines_after_as_of", excluded_lines=lines_after_as_of)
    as_of_summaries = (
        summaries if not lines_after_as_of else summarize_customers(as_of_lines)
    )
    report = AnalyticsReport(
        as_of=as_of,
        normalization=normalization,
        dimension_rejections=product_load.rejections + customer_load.rejections,
        kpi_summary=calculate_kpis(completed, profit_policy=policy),
        outcome_rates=calculate_outcome_rates(records),
        time_series=time_series,
        growth=growth,
        year_over_year=year_over_year,
        hour_of_day=aggregate_hour_of_day(completed),
        breakdown=breakdown,
        product_drilldown=product_drilldown(completed, profit_policy=policy),
        repeat_rate=calculate_repeat_rate(summaries),
        cohort_matrix=build_cohort_matrix(summaries),
        rfm_table=calculate_rfm_table(as_of_summaries, as_of, bins=config.rfm_bins),
        ltv_ranking=rank_lifetime_value(as_of_summaries, as_of, limit=config.ltv_limit),
        purchase_behaviour=calculate_purchase_behaviour(summaries),
        top_customers=top_customers(
            as_of_lines,
            as_of,
            window_days=config.top_customers_window_days,
            limit=config.top_customers_limit,
        ),
        lines_after_as_of=lines_after_as_of,
    )
    log.info(
        "report_built",
        completed_lines=len(completed),
        total_orders=report.kpi_summary.total_orders,
        customers=len(summaries),
        cohort_cells=len(report.cohort_matrix),
        lines_after_as_of=lines_after_as_of,
    )
    return report
