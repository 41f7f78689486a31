"""Canonical order-ledger records and the record normalizer.

Raw order-line rows arrive with heterogeneous types (strings, floats from a
DataFrame export, ``datetime``/``date`` objects). The normalizer validates and
coerces each row into a typed :class:`OrderLine` or rejects it with a reason.
A bad row never aborts the run and is never coerced to a default that would
corrupt sums.

Quick Start
-----------
>>> from ledger_analytics.foundation.records import normalize_order_lines
>>> result = normalize_order_lines([
...     {"order_id": "O1", "order_date": "2024-01-05", "customer_id": "C1",
...      "product_id": "P1", "quantity": 2, "unit_price": "50",
...      "order_status": "Completed"},
...     {"order_id": "O2", "order_date": "not a date", "customer_id": "C1",
...      "product_id": "P1", "quantity": 1, "unit_price": "10",
...      "order_status": "Completed"},
... ])
>>> result.accepted, result.rejected
(1, 1)
>>> result.records[0].total_amount
Decimal('100')
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Generic, Iterable, Mapping, TypeVar

from ledger_analytics.foundation.measures import ZERO

logger = logging.getLogger(__name__)

#: Label used for any dimension attribute that has no matching value.
UNKNOWN = "Unknown"

T = TypeVar("T")

_MISSING = object()


class OrderStatus(str, Enum):
    """Lifecycle status of an order line."""

    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    OTHER = "Other"

    @classmethod
    def parse(cls, label: str) -> OrderStatus:
        """Map a raw status label onto a status, case-insensitively.

        Unrecognised labels map to :attr:`OTHER` so the line still counts
        towards all-status order totals.
        """
        return _STATUS_ALIASES.get(label.strip().lower(), cls.OTHER)


_STATUS_ALIASES = {
    "completed": OrderStatus.COMPLETED,
    "complete": OrderStatus.COMPLETED,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "returned": OrderStatus.RETURNED,
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "shipped": OrderStatus.SHIPPED,
}


class RejectionReason(str, Enum):
    """Why a raw row was excluded from the normalized set."""

    MISSING_FIELD = "missing_field"
    INVALID_DATE = "invalid_date"
    INVALID_NUMBER = "invalid_number"
    NEGATIVE_QUANTITY = "negative_quantity"
    NEGATIVE_PRICE = "negative_price"
    NON_INTEGRAL_QUANTITY = "non_integral_quantity"


@dataclass(frozen=True, slots=True)
class Product:
    """Product dimension row, looked up by ``product_id``."""

    product_id: str
    product_name: str = UNKNOWN
    category: str = UNKNOWN
    sub_category: str = UNKNOWN
    cost_price: Decimal | None = None


@dataclass(frozen=True, slots=True)
class Customer:
    """Customer dimension row, looked up by ``customer_id``."""

    customer_id: str
    customer_name: str = UNKNOWN
    customer_segment: str = UNKNOWN
    signup_date: date | None = None


@dataclass(frozen=True, slots=True)
class OrderLine:
    """A single normalized ledger line.

    Attributes
    ----------
    order_id:
        Order identifier. Not unique: an order may span several lines.
    order_date:
        Naive timestamp of the order (midnight when only a date was given).
    total_amount:
        Final line amount after discount, tax and shipping.
    profit_amount:
        Line profit, or ``None`` when unknown. Unknown is never zero.
    profit_derived:
        True when ``profit_amount`` was computed from product cost rather
        than supplied by the source.
    product_name, category, sub_category, customer_name, customer_segment:
        Attributes joined from the dimension tables, ``"Unknown"`` when the
        join found no match.
    """

    order_id: str
    order_date: datetime
    customer_id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    profit_amount: Decimal | None
    order_status: OrderStatus
    channel: str = UNKNOWN
    payment_method: str = UNKNOWN
    city: str = UNKNOWN
    state: str = UNKNOWN
    product_name: str = UNKNOWN
    category: str = UNKNOWN
    sub_category: str = UNKNOWN
    customer_name: str = UNKNOWN
    customer_segment: str = UNKNOWN
    profit_derived: bool = False

    def __post_init__(self) -> None:
        """Validate line invariants."""
        if self.quantity < 0:
            raise ValueError(
                f"Quantity cannot be negative: {self.quantity} (order_id={self.order_id})"
            )
        if self.unit_price < 0:
            raise ValueError(
                f"Unit price cannot be negative: {self.unit_price} (order_id={self.order_id})"
            )


@dataclass(frozen=True, slots=True)
class RowRejection:
    """A raw row that could not be normalized."""

    row_index: int
    reason: RejectionReason
    field: str
    value: Any
    message: str

    def as_dict(self) -> dict[str, object]:
        return {
            "row_index": self.row_index,
            "reason": self.reason.value,
            "field": self.field,
            "value": None if self.value is None else str(self.value),
            "message": self.message,
        }


@dataclass(frozen=True)
class NormalizationResult:
    """Normalized order lines together with the rejection report."""

    records: tuple[OrderLine, ...]
    rejections: tuple[RowRejection, ...] = ()

    @property
    def accepted(self) -> int:
        return len(self.records)

    @property
    def rejected(self) -> int:
        return len(self.rejections)

    def rejection_counts(self) -> dict[str, int]:
        """Return the number of rejections per reason, sorted by reason."""
        counts = Counter(rejection.reason.value for rejection in self.rejections)
        return dict(sorted(counts.items()))


@dataclass(frozen=True)
class DimensionLoad(Generic[T]):
    """Dimension rows keyed by identifier, plus rows that were rejected."""

    items: Mapping[str, T] = field(default_factory=dict)
    rejections: tuple[RowRejection, ...] = ()


class RowRejected(ValueError):
    """Raised while parsing a single row; turned into a :class:`RowRejection`."""

    def __init__(self, reason: RejectionReason, field_name: str, value: Any, message: str):
        super().__init__(message)
        self.reason = reason
        self.field_name = field_name
        self.value = value

    def to_rejection(self, row_index: int) -> RowRejection:
        return RowRejection(
            row_index=row_index,
            reason=self.reason,
            field=self.field_name,
            value=self.value,
            message=str(self),
        )


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        # NaN/NaT placeholders from DataFrame exports never equal themselves
        return bool(value != value)
    except (TypeError, ValueError):
        return False


def _parse_text(row: Mapping[str, Any], name: str, default: Any = _MISSING) -> str:
    value = row.get(name)
    if _is_blank(value):
        if default is _MISSING:
            raise RowRejected(
                RejectionReason.MISSING_FIELD, name, value, f"Missing required field '{name}'"
            )
        return default
    if isinstance(value, float) and value.is_integer():
        # Identifiers round-tripped through a float column (e.g. 1001.0)
        value = int(value)
    return str(value).strip()


def _to_naive_datetime(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return datetime(
        value.year,
        value.month,
        value.day,
        value.hour,
        value.minute,
        value.second,
        value.microsecond,
    )


def _parse_datetime(row: Mapping[str, Any], name: str, required: bool = True) -> datetime | None:
    value = row.get(name)
    if _is_blank(value):
        if required:
            raise RowRejected(
                RejectionReason.MISSING_FIELD, name, value, f"Missing required field '{name}'"
            )
        return None
    if isinstance(value, datetime):
        return _to_naive_datetime(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            pass
        else:
            return _to_naive_datetime(parsed)
    raise RowRejected(
        RejectionReason.INVALID_DATE, name, value, f"Unparseable date in '{name}': {value!r}"
    )


def _parse_decimal(row: Mapping[str, Any], name: str, default: Any = _MISSING) -> Decimal | None:
    value = row.get(name)
    if _is_blank(value):
        if default is _MISSING:
            raise RowRejected(
                RejectionReason.MISSING_FIELD, name, value, f"Missing required field '{name}'"
            )
        return default
    if isinstance(value, bool):
        raise RowRejected(
            RejectionReason.INVALID_NUMBER, name, value, f"Boolean is not a number in '{name}'"
        )
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise RowRejected(
            RejectionReason.INVALID_NUMBER,
            name,
            value,
            f"Unparseable number in '{name}': {value!r}",
        ) from None
    if not number.is_finite():
        raise RowRejected(
            RejectionReason.INVALID_NUMBER, name, value, f"Non-finite number in '{name}': {value!r}"
        )
    return number


def _parse_quantity(row: Mapping[str, Any]) -> int:
    number = _parse_decimal(row, "quantity")
    if number != number.to_integral_value():
        raise RowRejected(
            RejectionReason.NON_INTEGRAL_QUANTITY,
            "quantity",
            row.get("quantity"),
            f"Quantity must be a whole number: {row.get('quantity')!r}",
        )
    if number < 0:
        raise RowRejected(
            RejectionReason.NEGATIVE_QUANTITY,
            "quantity",
            row.get("quantity"),
            f"Quantity cannot be negative: {row.get('quantity')!r}",
        )
    return int(number)


def normalize_order_line(
    row: Mapping[str, Any],
    products: Mapping[str, Product] | None = None,
    customers: Mapping[str, Customer] | None = None,
    *,
    derive_profit_from_cost: bool = False,
) -> OrderLine:
    """Normalize a single raw row.

    Raises
    ------
    RowRejected
        If the row is malformed. The exception carries the rejection reason.
    """
    order_id = _parse_text(row, "order_id")
    order_date = _parse_datetime(row, "order_date")
    customer_id = _parse_text(row, "customer_id")
    product_id = _parse_text(row, "product_id", default="")
    status = OrderStatus.parse(_parse_text(row, "order_status"))

    quantity = _parse_quantity(row)
    unit_price = _parse_decimal(row, "unit_price")
    if unit_price < 0:
        raise RowRejected(
            RejectionReason.NEGATIVE_PRICE,
            "unit_price",
            row.get("unit_price"),
            f"Unit price cannot be negative: {row.get('unit_price')!r}",
        )
    discount = _parse_decimal(row, "discount_amount", default=ZERO)
    tax = _parse_decimal(row, "tax_amount", default=ZERO)
    shipping = _parse_decimal(row, "shipping_amount", default=ZERO)

    total = _parse_decimal(row, "total_amount", default=None)
    if total is None:
        total = quantity * unit_price - discount + tax + shipping

    product = products.get(product_id) if products and product_id else None
    customer = customers.get(customer_id) if customers else None

    profit = _parse_decimal(row, "profit_amount", default=None)
    profit_derived = False
    if (
        profit is None
        and derive_profit_from_cost
        and product is not None
        and product.cost_price is not None
    ):
        profit = total - quantity * product.cost_price
        profit_derived = True

    return OrderLine(
        order_id=order_id,
        order_date=order_date,
        customer_id=customer_id,
        product_id=product_id,
        quantity=quantity,
        unit_price=unit_price,
        discount_amount=discount,
        tax_amount=tax,
        shipping_amount=shipping,
        total_amount=total,
        profit_amount=profit,
        order_status=status,
        channel=_parse_text(row, "channel", default=UNKNOWN),
        payment_method=_parse_text(row, "payment_method", default=UNKNOWN),
        city=_parse_text(row, "city", default=UNKNOWN),
        state=_parse_text(row, "state", default=UNKNOWN),
        product_name=product.product_name if product else UNKNOWN,
        category=product.category if product else UNKNOWN,
        sub_category=product.sub_category if product else UNKNOWN,
        customer_name=customer.customer_name if customer else UNKNOWN,
        customer_segment=customer.customer_segment if customer else UNKNOWN,
        profit_derived=profit_derived,
    )


def normalize_order_lines(
    rows: Iterable[Mapping[str, Any]],
    products: Mapping[str, Product] | None = None,
    customers: Mapping[str, Customer] | None = None,
    *,
    derive_profit_from_cost: bool = False,
) -> NormalizationResult:
    """Normalize raw order-line rows and join the dimension tables.

    Parameters
    ----------
    rows:
        Raw order-line mappings. Column names follow the ledger schema
        (``order_id``, ``order_date``, ``customer_id``, ...).
    products:
        Optional product lookup keyed by ``product_id``. Lines without a
        match keep ``"Unknown"`` for product attributes.
    customers:
        Optional customer lookup keyed by ``customer_id``.
    derive_profit_from_cost:
        When True, lines without a profit value get
        ``total_amount - quantity * cost_price`` if the product's cost is
        known. Off by default: missing profit stays unknown.

    Returns
    -------
    NormalizationResult
        Accepted records in input order and one rejection per bad row.
    """
    records: list[OrderLine] = []
    rejections: list[RowRejection] = []
    for idx, row in enumerate(rows):
        try:
            records.append(
                normalize_order_line(
                    row,
                    products,
                    customers,
                    derive_profit_from_cost=derive_profit_from_cost,
                )
            )
        except RowRejected as exc:
            rejection = exc.to_rejection(idx)
            logger.debug(f"Rejected row {idx}: {rejection.message}")
            rejections.append(rejection)

    result = NormalizationResult(records=tuple(records), rejections=tuple(rejections))
    if rejections:
        logger.warning(
            f"Rejected {result.rejected} of {result.accepted + result.rejected} "
            f"order lines: {result.rejection_counts()}"
        )
    return result


def load_products(rows: Iterable[Mapping[str, Any]]) -> DimensionLoad[Product]:
    """Validate product dimension rows and key them by ``product_id``."""
    products: dict[str, Product] = {}
    rejections: list[RowRejection] = []
    for idx, row in enumerate(rows):
        try:
            product_id = _parse_text(row, "product_id")
            cost_price = _parse_decimal(row, "cost_price", default=None)
            if cost_price is not None and cost_price < 0:
                raise RowRejected(
                    RejectionReason.NEGATIVE_PRICE,
                    "cost_price",
                    row.get("cost_price"),
                    f"Cost price cannot be negative: {row.get('cost_price')!r}",
                )
        except RowRejected as exc:
            rejections.append(exc.to_rejection(idx))
            continue

        if product_id in products:
            logger.warning(f"Duplicate product_id {product_id!r}; keeping the later row")
        products[product_id] = Product(
            product_id=product_id,
            product_name=_parse_text(row, "product_name", default=UNKNOWN),
            category=_parse_text(row, "category", default=UNKNOWN),
            sub_category=_parse_text(row, "sub_category", default=UNKNOWN),
            cost_price=cost_price,
        )
    return DimensionLoad(items=products, rejections=tuple(rejections))


def load_customers(rows: Iterable[Mapping[str, Any]]) -> DimensionLoad[Customer]:
    """Validate customer dimension rows and key them by ``customer_id``."""
    customers: dict[str, Customer] = {}
    rejections: list[RowRejection] = []
    for idx, row in enumerate(rows):
        try:
            customer_id = _parse_text(row, "customer_id")
            signup_ts = _parse_datetime(row, "signup_date", required=False)
        except RowRejected as exc:
            rejections.append(exc.to_rejection(idx))
            continue

        if customer_id in customers:
            logger.warning(f"Duplicate customer_id {customer_id!r}; keeping the later row")
        customers[customer_id] = Customer(
            customer_id=customer_id,
            customer_name=_parse_text(row, "customer_name", default=UNKNOWN),
            customer_segment=_parse_text(row, "customer_segment", default=UNKNOWN),
            signup_date=signup_ts.date() if signup_ts is not None else None,
        )
    return DimensionLoad(items=customers, rejections=tuple(rejections))
