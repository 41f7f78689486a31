"""Foundational building blocks for ledger analytics.

This package exposes the canonical order-line record and its normalizer,
the shared inclusion rules (completed orders only), calendar period helpers
and the numeric conventions every aggregate follows.
"""

from .filters import (
    filter_by_status,
    is_outcome_record,
    is_revenue_eligible,
    revenue_eligible,
    within_window,
)
from .measures import ProfitPolicy, ProfitTotal
from .periods import Granularity, calendar_range, period_label, period_start
from .records import (
    UNKNOWN,
    Customer,
    DimensionLoad,
    NormalizationResult,
    OrderLine,
    OrderStatus,
    Product,
    RejectionReason,
    RowRejection,
    load_customers,
    load_products,
    normalize_order_lines,
)

__all__ = [
    "UNKNOWN",
    "Customer",
    "DimensionLoad",
    "Granularity",
    "NormalizationResult",
    "OrderLine",
    "OrderStatus",
    "Product",
    "ProfitPolicy",
    "ProfitTotal",
    "RejectionReason",
    "RowRejection",
    "calendar_range",
    "filter_by_status",
    "is_outcome_record",
    "is_revenue_eligible",
    "load_customers",
    "load_products",
    "normalize_order_lines",
    "period_label",
    "period_start",
    "revenue_eligible",
    "within_window",
]
