"""Deterministic analytics over an e-commerce order ledger."""

from .config import ReportConfig
from .report import AnalyticsReport, build_report

__all__ = ["AnalyticsReport", "ReportConfig", "build_report"]

__version__ = "0.1.0"
