"""Tests for shared measures, inclusion filters and calendar periods."""

from datetime import datetime
from decimal import Decimal

import pytest

from ledger_analytics.foundation.filters import (
    filter_by_status,
    is_outcome_record,
    revenue_eligible,
    within_window,
)
from ledger_analytics.foundation.measures import (
    ProfitPolicy,
    ProfitTotal,
    quantize_money,
    safe_pct,
    safe_ratio,
)
from ledger_analytics.foundation.periods import (
    Granularity,
    calendar_range,
    months_between,
    next_period_start,
    one_year_earlier,
    period_label,
    period_start,
)
from ledger_analytics.foundation.records import OrderLine, OrderStatus


def _line(order_id="O1", status=OrderStatus.COMPLETED, order_date=datetime(2024, 1, 1)):
    return OrderLine(
        order_id=order_id,
        order_date=order_date,
        customer_id="C1",
        product_id="P1",
        quantity=1,
        unit_price=Decimal("10"),
        discount_amount=Decimal("0"),
        tax_amount=Decimal("0"),
        shipping_amount=Decimal("0"),
        total_amount=Decimal("10"),
        profit_amount=None,
        order_status=status,
    )


class TestMeasures:
    """Test money rounding and undefined ratios."""

    def test_money_rounds_half_up(self):
        """Half-cent values round away from zero."""
        assert quantize_money(Decimal("2.345")) == Decimal("2.35")
        assert quantize_money(Decimal("2.344")) == Decimal("2.34")

    def test_zero_denominator_is_undefined(self):
        """Division by zero yields None, not zero."""
        assert safe_ratio(Decimal("5"), 0) is None
        assert safe_pct(5, 0) is None

    def test_safe_pct_rounds_to_two_places(self):
        """Percentages are rounded to two decimals."""
        assert safe_pct(1, 3) == Decimal("33.33")
        assert safe_pct(2, 3) == Decimal("66.67")
        assert safe_pct(0, 7) == Decimal("0.00")


class TestProfitTotal:
    """Test unknown-aware profit accumulation."""

    def test_unknown_rows_excluded_from_sum(self):
        """Known values are summed and unknown rows are counted separately."""
        total = ProfitTotal.of([Decimal("10"), None, Decimal("5.50")])
        assert total.amount == Decimal("15.50")
        assert total.known_rows == 2
        assert total.unknown_rows == 1
        assert total.resolve(ProfitPolicy.EXCLUDE_UNKNOWN) == Decimal("15.50")

    def test_all_unknown_is_undefined_when_excluding(self):
        """A set of only unknown profits resolves to None, not zero."""
        total = ProfitTotal.of([None, None])
        assert total.resolve(ProfitPolicy.EXCLUDE_UNKNOWN) is None
        assert total.resolve(ProfitPolicy.COALESCE_ZERO) == Decimal("0.00")

    def test_empty_set_is_zero(self):
        """No rows at all sum to zero under either policy."""
        total = ProfitTotal()
        assert total.resolve(ProfitPolicy.EXCLUDE_UNKNOWN) == Decimal("0.00")

    def test_merge_adds_partials(self):
        """Merging partial totals matches accumulating them together."""
        left = ProfitTotal.of([Decimal("1"), None])
        right = ProfitTotal.of([Decimal("2")])
        left.merge(right)
        assert left == ProfitTotal(amount=Decimal("3"), known_rows=2, unknown_rows=1)


class TestFilters:
    """Test the shared inclusion rules."""

    def test_revenue_eligible_keeps_completed_only(self):
        """Only completed lines count towards revenue."""
        records = [
            _line("O1", OrderStatus.COMPLETED),
            _line("O2", OrderStatus.CANCELLED),
            _line("O3", OrderStatus.RETURNED),
            _line("O4", OrderStatus.PENDING),
        ]
        assert [r.order_id for r in revenue_eligible(records)] == ["O1"]

    def test_outcome_records(self):
        """Cancellations and returns are outcome records."""
        assert is_outcome_record(_line(status=OrderStatus.CANCELLED))
        assert is_outcome_record(_line(status=OrderStatus.RETURNED))
        assert not is_outcome_record(_line(status=OrderStatus.SHIPPED))

    def test_filter_by_status(self):
        """Lines are kept when their status is among those requested."""
        records = [_line("O1", OrderStatus.PENDING), _line("O2", OrderStatus.SHIPPED)]
        kept = filter_by_status(records, OrderStatus.SHIPPED, OrderStatus.RETURNED)
        assert [r.order_id for r in kept] == ["O2"]

    def test_filter_by_status_requires_a_status(self):
        """Calling without statuses is an error."""
        with pytest.raises(ValueError, match="At least one status"):
            filter_by_status([_line()])

    def test_window_is_half_open(self):
        """The start bound is inclusive and the end bound exclusive."""
        records = [
            _line("O1", order_date=datetime(2024, 1, 1)),
            _line("O2", order_date=datetime(2024, 1, 31, 23, 59)),
            _line("O3", order_date=datetime(2024, 2, 1)),
        ]
        kept = within_window(records, datetime(2024, 1, 1), datetime(2024, 2, 1))
        assert [r.order_id for r in kept] == ["O1", "O2"]

    def test_window_rejects_inverted_bounds(self):
        """start must be before end."""
        with pytest.raises(ValueError, match="start must be before end"):
            within_window([], datetime(2024, 2, 1), datetime(2024, 1, 1))


class TestPeriods:
    """Test calendar truncation, labels and ranges."""

    @pytest.mark.parametrize(
        ("granularity", "expected_start", "expected_label"),
        [
            (Granularity.DAY, datetime(2024, 5, 17), "2024-05-17"),
            (Granularity.MONTH, datetime(2024, 5, 1), "2024-05"),
            (Granularity.QUARTER, datetime(2024, 4, 1), "2024-Q2"),
            (Granularity.YEAR, datetime(2024, 1, 1), "2024"),
        ],
    )
    def test_period_start_and_label(self, granularity, expected_start, expected_label):
        """Timestamps truncate to the start of their period."""
        start = period_start(datetime(2024, 5, 17, 13, 45), granularity)
        assert start == expected_start
        assert period_label(start, granularity) == expected_label

    def test_next_period_crosses_year_end(self):
        """Month and quarter steps roll over into the next year."""
        assert next_period_start(datetime(2024, 12, 1), Granularity.MONTH) == datetime(2025, 1, 1)
        assert next_period_start(datetime(2024, 10, 1), Granularity.QUARTER) == datetime(2025, 1, 1)
        assert next_period_start(datetime(2024, 2, 28), Granularity.DAY) == datetime(2024, 2, 29)

    def test_calendar_range_is_inclusive_and_gap_free(self):
        """Every month between the bounds is listed."""
        periods = calendar_range(datetime(2024, 11, 20), datetime(2025, 2, 3), Granularity.MONTH)
        assert periods == [
            datetime(2024, 11, 1),
            datetime(2024, 12, 1),
            datetime(2025, 1, 1),
            datetime(2025, 2, 1),
        ]

    def test_calendar_range_rejects_inverted_bounds(self):
        """first may not be after last."""
        with pytest.raises(ValueError, match="first must not be after last"):
            calendar_range(datetime(2024, 3, 1), datetime(2024, 1, 1), Granularity.MONTH)

    def test_months_between(self):
        """Whole calendar months are counted across years."""
        assert months_between(datetime(2023, 11, 1), datetime(2024, 2, 1)) == 3
        assert months_between(datetime(2024, 1, 1), datetime(2024, 1, 1)) == 0

    def test_one_year_earlier_handles_leap_day(self):
        """Feb 29 maps to Feb 28 of the previous year."""
        assert one_year_earlier(datetime(2024, 2, 29)) == datetime(2023, 2, 28)
        assert one_year_earlier(datetime(2024, 7, 1)) == datetime(2023, 7, 1)
