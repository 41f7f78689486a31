"""Report configuration."""

from __future__ import annotations

import os
from datetime import date
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ledger_analytics.analyses.breakdown import BreakdownDimension
from ledger_analytics.foundation.measures import ProfitPolicy
from ledger_analytics.foundation.periods import Granularity

ENV_PREFIX = "LEDGER_ANALYTICS_"

_LIST_FIELDS = {"granularities", "dimensions"}


class ReportConfig(BaseModel):
    """Parameters for a full analytics run."""

    model_config = ConfigDict(frozen=True)

    as_of: Optional[date] = Field(
        default=None,
        description="Reference date for recency and customer age. Defaults to today.",
    )
    granularities: tuple[Granularity, ...] = Field(
        default=(Granularity.DAY, Granularity.MONTH, Granularity.YEAR),
        description="Calendar granularities to build time series for",
    )
    dimensions: tuple[BreakdownDimension, ...] = Field(
        default=tuple(BreakdownDimension),
        description="Dimensions to build breakdown tables for",
    )
    breakdown_limit: Optional[int] = Field(
        default=None, gt=0, description="Keep only the top N rows of each breakdown"
    )
    ltv_limit: Optional[int] = Field(
        default=None, gt=0, description="Keep only the top N customers of the LTV ranking"
    )
    rfm_bins: int = Field(default=5, ge=1, description="Buckets per RFM dimension (5 = quintiles)")
    profit_policy: ProfitPolicy = Field(
        default=ProfitPolicy.EXCLUDE_UNKNOWN,
        description="How unknown profit values enter profit sums",
    )
    derive_profit_from_cost: bool = Field(
        default=False,
        description="Derive missing line profit from product cost_price when available",
    )
    parallel: bool = Field(
        default=True, description="Enable sharded breakdown aggregation for large ledgers"
    )
    parallel_threshold: int = Field(
        default=1_000_000, ge=1, description="Line count above which breakdowns are sharded"
    )
    n_workers: Optional[int] = Field(
        default=None, ge=1, description="Worker processes for sharding (default: CPU count)"
    )
    top_customers_window_days: int = Field(
        default=365, gt=0, description="Trailing window for the top customers table"
    )
    top_customers_limit: int = Field(
        default=10, gt=0, description="Number of rows in the top customers table"
    )

    def resolved_as_of(self) -> date:
        return self.as_of if self.as_of is not None else date.today()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ReportConfig:
        """Build a config from ``LEDGER_ANALYTICS_*`` environment variables.

        Each field maps to its upper-cased name, e.g. ``LEDGER_ANALYTICS_AS_OF``.
        List fields take comma-separated values
        (``LEDGER_ANALYTICS_GRANULARITIES=month,year``). Unset variables keep
        the defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or not raw.strip():
                continue
            if name in _LIST_FIELDS:
                values[name] = tuple(item.strip() for item in raw.split(",") if item.strip())
            else:
                values[name] = raw.strip()
        return cls(**values)
