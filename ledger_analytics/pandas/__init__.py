"""Pandas DataFrame adapters for ledger analytics results."""

from .tables import (
    breakdown_to_dataframe,
    cohort_matrix_to_dataframe,
    cohort_matrix_to_dense,
    kpi_to_dataframe,
    ltv_to_dataframe,
    normalize_dataframe,
    rfm_to_dataframe,
    time_series_to_dataframe,
)

__all__ = [
    # Input
    "normalize_dataframe",
    # Result tables
    "kpi_to_dataframe",
    "time_series_to_dataframe",
    "breakdown_to_dataframe",
    "cohort_matrix_to_dataframe",
    "cohort_matrix_to_dense",
    "rfm_to_dataframe",
    "ltv_to_dataframe",
]
