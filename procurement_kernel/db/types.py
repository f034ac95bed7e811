"""
Module: procurement_kernel.db.types
Responsibility: Annotated column type aliases and the single sanctioned
    rounding function for monetary values.
Architecture position: Kernel > DB.  May be imported by engines, models and
    services.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Amounts are Decimal stored as Numeric(38, 9).
    - round_money() is the ONLY rounding function for monetary values.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Percentage rate (gst, discount percent)
Percent = Annotated[Decimal, Numeric(9, 4)]


CURRENCY_DECIMAL_PLACES = 2

# Scale of the Money and Percent columns
AMOUNT_DECIMAL_PLACES = 9
RATE_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: object, default: Decimal | None = None) -> Decimal | None:
    """
    Coerce a number-like value to Decimal.

    Floats go through ``str()`` so ``0.1`` becomes ``Decimal("0.1")``.
    Returns ``default`` for None, empty strings, booleans, NaN/Infinity and
    anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        if not text:
            return default
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite():
        return default
    return result


def round_money(
    value: Decimal,
    decimal_places: int = CURRENCY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values.
    Intermediate totals are kept at full precision; only final amounts go
    through here.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)
