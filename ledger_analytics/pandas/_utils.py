"""Shared utilities for pandas conversion operations."""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def decimal_to_float(value: Decimal | None) -> float | None:
    """Convert Decimal to float for pandas compatibility; None stays None."""
    return None if value is None else float(value)


def dataclass_columns(cls: type, exclude: tuple[str, ...] = ()) -> list[str]:
    """Return the field names of a result dataclass, in declaration order."""
    return [item.name for item in dataclasses.fields(cls) if item.name not in exclude]


def to_cell(value: Any) -> Any:
    """Convert a result value into a DataFrame-friendly cell."""
    if isinstance(value, Decimal):
        return decimal_to_float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value
