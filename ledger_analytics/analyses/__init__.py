"""Ledger aggregators.

Each aggregator is a stateless function from a normalized set of order
lines (plus parameters) to an immutable result table:

1. KPI Aggregator - headline totals, margin, AOV, cancel/return rates
2. Time-Series Aggregator - calendar buckets and period growth
3. Dimensional Breakdown Aggregator - group-by tables with share of total
4. Customer Analytics Engine - repeat rate, cohorts, RFM, lifetime value
"""

from .breakdown import (
    BreakdownDimension,
    BreakdownRow,
    aggregate_breakdown,
    product_drilldown,
)
from .customers import (
    CohortCell,
    CustomerSummary,
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
from .kpi import KPISummary, OutcomeRates, calculate_kpis, calculate_outcome_rates
from .time_series import (
    GrowthComparison,
    GrowthPoint,
    HourOfDayPoint,
    TimeSeriesPoint,
    aggregate_hour_of_day,
    aggregate_time_series,
    calculate_growth,
)

__all__ = [
    # KPI
    "KPISummary",
    "OutcomeRates",
    "calculate_kpis",
    "calculate_outcome_rates",
    # Time series
    "GrowthComparison",
    "GrowthPoint",
    "HourOfDayPoint",
    "TimeSeriesPoint",
    "aggregate_hour_of_day",
    "aggregate_time_series",
    "calculate_growth",
    # Breakdown
    "BreakdownDimension",
    "BreakdownRow",
    "aggregate_breakdown",
    "product_drilldown",
    # Customers
    "CohortCell",
    "CustomerSummary",
    "LTVRow",
    "PurchaseBehaviour",
    "RepeatRate",
    "RFMRow",
    "TopCustomerRow",
    "build_cohort_matrix",
    "calculate_purchase_behaviour",
    "calculate_repeat_rate",
    "calculate_rfm_table",
    "rank_lifetime_value",
    "summarize_customers",
    "top_customers",
]
