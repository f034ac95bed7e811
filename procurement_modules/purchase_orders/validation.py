"""
Input normalization for purchase order payloads.

Turns caller-supplied mappings into typed values before anything touches
the database.  Problems are collected per field path and raised together
as one ValidationFailedError.

Numeric coercion on product lines: an absent or unparseable value falls
back to the line default (quantity 1, unit price 0, foc 0, discount 0,
gst 18), so NaN or null never reaches the totals.  A negative value is a
validation error, and so is a value with more decimal places than its
column stores (9 for amounts and quantities, 4 for rates).  Totals are
computed from exactly the values that get persisted.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from procurement_config.schema import ProcurementConfig
from procurement_engines.totals import Adjustment, AdjustmentType, TaxType
from procurement_kernel.db.types import AMOUNT_DECIMAL_PLACES, RATE_DECIMAL_PLACES, to_decimal
from procurement_kernel.exceptions import ValidationFailedError
from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import Address, ProductLine

logger = get_logger("modules.purchase_orders.validation")

_HUNDRED = Decimal("100")


class ErrorCollector:
    """Accumulates field errors; ``raise_if_any`` raises them as one."""

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    def add(self, path: str, message: str) -> None:
        self.errors.setdefault(path, message)

    def raise_if_any(self, message: str = "Validation failed") -> None:
        if self.errors:
            logger.warning(
                "purchase_order_validation_failed",
                extra={"errors": self.errors},
            )
            raise ValidationFailedError(message, self.errors)


def _str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _too_precise(number: Decimal, places: int) -> bool:
    """True when ``number`` has significant digits beyond ``places`` decimals."""
    if not number:
        return False
    _, digits, exponent = number.as_tuple()
    text = "".join(map(str, digits))
    trailing_zeros = len(text) - len(text.rstrip("0"))
    return exponent + trailing_zeros < -places


def parse_uuid(value: Any, path: str, errors: ErrorCollector) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        errors.add(path, "must be a valid id")
        return None


def parse_date(value: Any, path: str, errors: ErrorCollector) -> date | None:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        errors.add(path, "must be a date (YYYY-MM-DD)")
        return None


def normalize_address(value: Any, path: str, errors: ErrorCollector) -> Address | None:
    if isinstance(value, Address):
        data: Mapping[str, Any] = value.to_dict()
    elif isinstance(value, Mapping):
        data = value
    else:
        errors.add(f"{path}.branch_warehouse", "is required")
        return None
    address = Address.from_dict({k: _str(v) for k, v in data.items()})
    if not address.branch_warehouse:
        errors.add(f"{path}.branch_warehouse", "is required")
    return address


def parse_adjustment_type(value: Any, path: str, errors: ErrorCollector) -> AdjustmentType:
    if isinstance(value, AdjustmentType):
        return value
    if value is None or value == "":
        return AdjustmentType.AMOUNT
    try:
        return AdjustmentType(str(value).strip().lower())
    except ValueError:
        errors.add(path, "must be 'amount' or 'percentage'")
        return AdjustmentType.AMOUNT


def normalize_adjustment(value: Any, path: str, errors: ErrorCollector) -> Adjustment:
    if value is None:
        return Adjustment.none()
    if isinstance(value, Adjustment):
        return value
    if not isinstance(value, Mapping):
        errors.add(path, "must be an object with 'type' and 'value'")
        return Adjustment.none()
    kind = parse_adjustment_type(value.get("type"), f"{path}.type", errors)
    amount = to_decimal(value.get("value"), Decimal("0"))
    if amount < 0:
        errors.add(f"{path}.value", "cannot be negative")
        return Adjustment.none()
    if _too_precise(amount, AMOUNT_DECIMAL_PLACES):
        errors.add(f"{path}.value", f"allows at most {AMOUNT_DECIMAL_PLACES} decimal places")
        return Adjustment.none()
    return Adjustment(kind, amount)


def parse_tax_type(value: Any, errors: ErrorCollector, default: str) -> TaxType:
    if isinstance(value, TaxType):
        return value
    raw = default if value is None or value == "" else value
    try:
        return TaxType(str(raw).strip().upper())
    except ValueError:
        errors.add("tax_type", "must be 'IGST' or 'CGST_SGST'")
        return TaxType(default)


def parse_gst_rate(value: Any, errors: ErrorCollector, default: Decimal, path: str = "gst_rate") -> Decimal:
    if value is None or value == "":
        return default
    rate = to_decimal(value)
    if rate is None or rate < 0 or rate > _HUNDRED:
        errors.add(path, "must be a number between 0 and 100")
        return default
    if _too_precise(rate, RATE_DECIMAL_PLACES):
        errors.add(path, f"allows at most {RATE_DECIMAL_PLACES} decimal places")
        return default
    return rate


def _line_number(value: Any, path: str, errors: ErrorCollector, key: str, default: Decimal) -> Decimal:
    number = to_decimal(value, default)
    if number < 0:
        errors.add(f"{path}.{key}", "cannot be negative")
        return default
    if _too_precise(number, AMOUNT_DECIMAL_PLACES):
        errors.add(f"{path}.{key}", f"allows at most {AMOUNT_DECIMAL_PLACES} decimal places")
        return default
    return number


def normalize_product_lines(
    value: Any,
    errors: ErrorCollector,
    config: ProcurementConfig,
) -> tuple[ProductLine, ...]:
    """Normalize a list of product line mappings; at least one is required."""
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)) or not value:
        errors.add("products", "at least one product line is required")
        return ()

    lines = []
    for index, raw in enumerate(value):
        path = f"products[{index}]"
        if isinstance(raw, ProductLine):
            raw = asdict(raw)
        if not isinstance(raw, Mapping):
            errors.add(path, "must be an object")
            continue
        lines.append(ProductLine(
            line_number=index + 1,
            quantity=_line_number(raw.get("quantity"), path, errors, "quantity", Decimal("1")),
            unit_price=_line_number(raw.get("unit_price"), path, errors, "unit_price", Decimal("0")),
            foc=_line_number(raw.get("foc"), path, errors, "foc", Decimal("0")),
            discount=_line_number(raw.get("discount"), path, errors, "discount", Decimal("0")),
            discount_type=parse_adjustment_type(raw.get("discount_type"), f"{path}.discount_type", errors),
            unit=_str(raw.get("unit")) or config.default_unit,
            gst_rate=parse_gst_rate(
                raw.get("gst_rate"), errors, config.default_line_gst_rate, f"{path}.gst_rate",
            ),
            product_id=parse_uuid(raw.get("product_id"), f"{path}.product_id", errors),
            product_code=_str(raw.get("product_code")),
            product_name=_str(raw.get("product_name")),
            description=_str(raw.get("description")),
            remarks=_str(raw.get("remarks")),
        ))
    return tuple(lines)


def normalize_emails(value: Any, path: str, errors: ErrorCollector) -> tuple[str, ...]:
    """Lower-case, trim and de-duplicate email addresses."""
    if value is None:
        return ()
    items: Iterable[Any] = [value] if isinstance(value, str) else value
    result: list[str] = []
    for index, item in enumerate(items):
        email = _str(item).lower()
        if not email:
            continue
        if "@" not in email:
            errors.add(f"{path}[{index}]", "must be an email address")
            continue
        if email not in result:
            result.append(email)
    return tuple(result)


def normalize_email(value: Any, path: str, errors: ErrorCollector) -> str | None:
    email = _str(value).lower()
    if not email:
        return None
    if "@" not in email:
        errors.add(path, "must be an email address")
        return None
    return email


def normalize_text(value: Any) -> str | None:
    text = _str(value)
    return text or None
