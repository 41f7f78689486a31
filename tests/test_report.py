"""Tests for the full analytics run and its configuration."""

import json
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from ledger_analytics import ReportConfig, build_report
from ledger_analytics.analyses.breakdown import BreakdownDimension
from ledger_analytics.foundation.measures import ProfitPolicy
from ledger_analytics.foundation.periods import Granularity


def _row(order_id, customer_id, order_date, unit_price, status="Completed", **extra):
    row = {
        "order_id": order_id,
        "order_date": order_date,
        "customer_id": customer_id,
        "product_id": "P1",
        "quantity": 1,
        "unit_price": unit_price,
        "order_status": status,
    }
    row.update(extra)
    return row


@pytest.fixture
def ledger_rows():
    return [
        _row("O1", "C1", "2024-01-05T10:15:00", "100", channel="Website", profit_amount="30"),
        _row("O2", "C2", "2024-01-20T14:00:00", "150", channel="App"),
        _row("O3", "C1", "2024-02-14T10:45:00", "200", channel="Website", profit_amount="50"),
        _row("O4", "C2", "2024-03-01", "999", status="Cancelled", channel="App"),
        _row("O5", "C3", "not a date", "10"),
    ]


@pytest.fixture
def product_rows():
    return [
        {"product_id": "P1", "product_name": "Desk Lamp", "category": "Office",
         "sub_category": "Lighting", "cost_price": "40"},
        {"product_id": "P2", "cost_price": "-5"},
    ]


@pytest.fixture
def customer_rows():
    return [
        {"customer_id": "C1", "customer_name": "Ada", "customer_segment": "Consumer"},
        {"customer_id": "C2", "customer_name": "Grace", "customer_segment": "Corporate"},
    ]


@pytest.fixture
def config():
    return ReportConfig(
        as_of=date(2024, 3, 31),
        granularities=("month",),
        parallel=False,
    )


class TestBuildReport:
    """Test build_report end to end."""

    def test_headline_metrics(self, ledger_rows, product_rows, customer_rows, config):
        """KPIs use completed orders; outcome rates use every order."""
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        assert report.kpi_summary.total_orders == 3
        assert report.kpi_summary.total_sales == Decimal("450.00")
        assert report.kpi_summary.total_profit == Decimal("80.00")
        assert report.kpi_summary.unknown_profit_rows == 1
        assert report.outcome_rates.total_orders_all == 4
        assert report.outcome_rates.cancel_rate_pct == Decimal("25.00")

    def test_rejections_reported_not_fatal(self, ledger_rows, product_rows, customer_rows, config):
        """Malformed order and dimension rows end up in the rejection report."""
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        assert report.normalization.rejected == 1
        assert report.normalization.rejections[0].row_index == 4
        assert len(report.dimension_rejections) == 1
        reasons = [row["reason"] for row in report.as_tables()["rejections"]]
        assert reasons == ["invalid_date", "negative_price"]

    def test_series_and_breakdowns(self, ledger_rows, product_rows, customer_rows, config):
        """Configured granularities and every dimension are built."""
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        assert list(report.time_series) == [Granularity.MONTH]
        assert [p.period_label for p in report.time_series[Granularity.MONTH]] == [
            "2024-01",
            "2024-02",
        ]
        assert set(report.breakdown) == set(BreakdownDimension)
        channels = report.breakdown[BreakdownDimension.CHANNEL]
        assert [(row.label, row.sales) for row in channels] == [
            ("Website", Decimal("300.00")),
            ("App", Decimal("150.00")),
        ]
        segments = report.breakdown[BreakdownDimension.CUSTOMER_SEGMENT]
        assert segments[0].label == "Consumer"
        assert report.product_drilldown[0].key == ("Office", "Lighting", "P1", "Desk Lamp")

    def test_customer_tables(self, ledger_rows, product_rows, customer_rows, config):
        """Customer analytics run over completed orders only."""
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        assert report.repeat_rate.repeat_customers == 1
        assert report.repeat_rate.total_customers == 2
        assert len(report.cohort_matrix) == 2
        assert [row.customer_id for row in report.rfm_table] == ["C1", "C2"]
        assert report.ltv_ranking[0].lifetime_value == Decimal("300.00")
        assert [row.customer_id for row in report.top_customers] == ["C1", "C2"]
        assert report.hour_of_day[10].orders == 2

    def test_profit_derived_from_cost(self, ledger_rows, product_rows, customer_rows):
        """Missing profit is derived from cost only when configured."""
        config = ReportConfig(
            as_of=date(2024, 3, 31), derive_profit_from_cost=True, parallel=False
        )
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        # O2: 150 - 1 * 40
        assert report.kpi_summary.total_profit == Decimal("190.00")
        assert report.kpi_summary.unknown_profit_rows == 0

    def test_tables_are_json_and_deterministic(
        self, ledger_rows, product_rows, customer_rows, config
    ):
        """Identical input yields identical, serialisable tables."""
        first = build_report(ledger_rows, product_rows, customer_rows, config).as_tables()
        second = build_report(ledger_rows, product_rows, customer_rows, config).as_tables()
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)
        assert first["kpi_summary"][0]["total_sales"] == 450.0
        assert first["breakdown[state_city]"][0]["state"] == "Unknown"
        assert first["time_series[month]"][0]["period_start"] == "2024-01-01T00:00:00"
        assert "growth[month]" in first
        assert "year_over_year[month]" in first
        assert len(first["hour_of_day"]) == 24

    def test_lines_after_as_of_leave_customer_tables_out(
        self, ledger_rows, product_rows, customer_rows, config
    ):
        """A line dated after as_of is counted in KPIs but not in RFM or LTV."""
        ledger_rows.append(_row("O6", "C1", "2024-06-01T09:00:00", "80", channel="Website"))
        report = build_report(ledger_rows, product_rows, customer_rows, config)
        assert report.lines_after_as_of == 1
        assert report.kpi_summary.total_orders == 4
        assert report.kpi_summary.total_sales == Decimal("530.00")
        assert report.repeat_rate.repeat_customers == 1

        rfm = {row.customer_id: row for row in report.rfm_table}
        assert rfm["C1"].frequency == 2
        assert rfm["C1"].monetary == Decimal("300.00")
        assert rfm["C1"].recency_days == 46
        ltv = {row.customer_id: row for row in report.ltv_ranking}
        assert ltv["C1"].lifetime_value == Decimal("300.00")
        assert ltv["C1"].last_order_date.date() == date(2024, 2, 14)
        top = {row.customer_id: row for row in report.top_customers}
        assert top["C1"].sales == Decimal("300.00")

        scope = report.as_tables()["as_of_scope"]
        assert scope == [{"as_of": "2024-03-31", "lines_after_as_of": 1}]

    def test_only_customer_ordered_on_both_sides_of_as_of(self, config):
        """The run completes when a customer's last order falls after as_of."""
        rows = [
            _row("O1", "C1", "2024-01-05", "100"),
            _row("O2", "C1", "2024-06-01", "40"),
        ]
        report = build_report(rows, config=config)
        assert report.lines_after_as_of == 1
        assert [row.customer_id for row in report.rfm_table] == ["C1"]
        assert report.rfm_table[0].recency_days == 86
        assert report.ltv_ranking[0].orders == 1
        assert report.kpi_summary.total_sales == Decimal("140.00")

    def test_lines_on_as_of_are_kept(self, config):
        """Lines dated on as_of itself, at any hour, stay in the customer tables."""
        rows = [_row("O1", "C1", "2024-03-31T23:59:00", "100")]
        report = build_report(rows, config=config)
        assert report.lines_after_as_of == 0
        assert report.rfm_table[0].recency_days == 0
        assert report.as_tables()["as_of_scope"][0]["lines_after_as_of"] == 0

    def test_empty_ledger(self):
        """An empty ledger gives empty tables and undefined ratios."""
        report = build_report([], config=ReportConfig(as_of=date(2024, 1, 1)))
        assert report.kpi_summary.total_orders == 0
        assert report.kpi_summary.average_order_value is None
        assert report.outcome_rates.cancel_rate_pct is None
        assert all(points == [] for points in report.time_series.values())
        assert report.rfm_table == []
        assert report.cohort_matrix == []
        assert report.repeat_rate.repeat_rate_pct is None
        assert report.as_tables()["rejections"] == []


class TestReportConfig:
    """Test ReportConfig validation and environment loading."""

    def test_defaults(self):
        """Defaults cover day, month and year and every dimension."""
        config = ReportConfig()
        assert config.granularities == (Granularity.DAY, Granularity.MONTH, Granularity.YEAR)
        assert config.dimensions == tuple(BreakdownDimension)
        assert config.rfm_bins == 5
        assert config.profit_policy is ProfitPolicy.EXCLUDE_UNKNOWN
        assert config.resolved_as_of() == date.today()

    @pytest.mark.parametrize(
        "overrides",
        [{"rfm_bins": 0}, {"breakdown_limit": 0}, {"granularities": ("week",)}],
    )
    def test_invalid_values_rejected(self, overrides):
        """Out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            ReportConfig(**overrides)

    def test_config_is_frozen(self):
        """Configs cannot be mutated after creation."""
        config = ReportConfig()
        with pytest.raises(ValidationError):
            config.rfm_bins = 3

    def test_from_env(self):
        """LEDGER_ANALYTICS_* variables override the defaults."""
        config = ReportConfig.from_env(
            {
                "LEDGER_ANALYTICS_AS_OF": "2024-06-30",
                "LEDGER_ANALYTICS_GRANULARITIES": "month, quarter",
                "LEDGER_ANALYTICS_RFM_BINS": "4",
                "LEDGER_ANALYTICS_PROFIT_POLICY": "coalesce_zero",
                "LEDGER_ANALYTICS_PARALLEL": "false",
                "LEDGER_ANALYTICS_LTV_LIMIT": "",
                "UNRELATED": "ignored",
            }
        )
        assert config.as_of == date(2024, 6, 30)
        assert config.granularities == (Granularity.MONTH, Granularity.QUARTER)
        assert config.rfm_bins == 4
        assert config.profit_policy is ProfitPolicy.COALESCE_ZERO
        assert config.parallel is False
        assert config.ltv_limit is None
