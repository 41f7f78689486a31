"""Shared numeric helpers for ledger aggregates.

Money and percentages are carried as :class:`~decimal.Decimal` and rounded
half-up to two places. Ratios with a zero denominator are undefined and
reported as ``None`` rather than zero, since zero is itself a valid ratio.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable

# Standard precision for money and percentages (e.g., 45.67)
MONEY_PRECISION = Decimal("0.01")
PERCENTAGE_PRECISION = Decimal("0.01")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ProfitPolicy(str, Enum):
    """How unknown (null) profit values take part in a profit sum.

    EXCLUDE_UNKNOWN:
        Unknown profit rows are left out of the sum. If rows exist but none
        has a known profit, the total itself is unknown (``None``).
    COALESCE_ZERO:
        Unknown profit is explicitly treated as zero, so the total is always
        a number.
    """

    EXCLUDE_UNKNOWN = "exclude_unknown"
    COALESCE_ZERO = "coalesce_zero"


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def quantize_pct(value: Decimal) -> Decimal:
    return value.quantize(PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP)


def safe_ratio(numerator: Decimal, denominator: Decimal | int) -> Decimal | None:
    """Return ``numerator / denominator`` or ``None`` when the denominator is zero."""
    if denominator == 0:
        return None
    return numerator / Decimal(denominator)


def safe_pct(numerator: Decimal | int, denominator: Decimal | int) -> Decimal | None:
    """Return ``round(100 * numerator / denominator, 2)`` or ``None`` on a zero denominator."""
    if denominator == 0:
        return None
    return quantize_pct(HUNDRED * Decimal(numerator) / Decimal(denominator))


@dataclass(slots=True)
class ProfitTotal:
    """Running profit sum that keeps unknown values distinguishable from zero.

    Attributes
    ----------
    amount:
        Sum of the known profit values.
    known_rows:
        Number of rows whose profit was known and contributed to ``amount``.
    unknown_rows:
        Number of rows whose profit was unknown and was left out.
    """

    amount: Decimal = ZERO
    known_rows: int = 0
    unknown_rows: int = 0

    def add(self, profit: Decimal | None) -> None:
        if profit is None:
            self.unknown_rows += 1
        else:
            self.amount += profit
            self.known_rows += 1

    def merge(self, other: ProfitTotal) -> None:
        self.amount += other.amount
        self.known_rows += other.known_rows
        self.unknown_rows += other.unknown_rows

    def resolve(self, policy: ProfitPolicy) -> Decimal | None:
        """Return the reported total under ``policy``."""
        if (
            policy == ProfitPolicy.EXCLUDE_UNKNOWN
            and self.known_rows == 0
            and self.unknown_rows > 0
        ):
            return None
        return quantize_money(self.amount)

    @classmethod
    def of(cls, profits: Iterable[Decimal | None]) -> ProfitTotal:
        total = cls()
        for profit in profits:
            total.add(profit)
        return total
