"""
Totals Engine - Calculate purchase order line and order totals.

Pure functions with no I/O.  Given the product lines, the order-level
discount, the GST treatment and the shipping charge, produce every
intermediate subtotal and the grand total.

Calculation order:
    line gross          = unit_price x quantity        (foc earns nothing)
    line discount       = discount, as an amount or a percent of line gross
    line net            = max(line gross - line discount, 0)
    sub_total           = sum of line nets
    total_after_disc.   = max(sub_total - additional discount, 0)
    gst_amount          = total_after_disc. x gst_rate / 100
    shipping_amount     = shipping, as an amount or a percent of total_after_disc.
    grand_total         = round(total_after_disc. + gst_amount + shipping_amount)

Only the grand total is rounded.  Every intermediate keeps full Decimal
precision so that re-running the calculator is idempotent.

Usage:
    from decimal import Decimal
    from procurement_engines.totals import LineInput, TaxType, TotalsCalculator

    totals = TotalsCalculator().calculate(
        lines=[LineInput(quantity=Decimal("2"), unit_price=Decimal("100"))],
        tax_type=TaxType.IGST,
        gst_rate=Decimal("5"),
    )
    print(totals.grand_total)  # Decimal("210.00")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Sequence

from procurement_kernel.db.types import CURRENCY_DECIMAL_PLACES, round_money
from procurement_kernel.logging_config import get_logger

logger = get_logger("engines.totals")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class AdjustmentType(str, Enum):
    """How a discount or charge value is interpreted."""

    AMOUNT = "amount"
    PERCENTAGE = "percentage"


class TaxType(str, Enum):
    """GST treatment of the order."""

    IGST = "IGST"  # Inter-state: the whole tax goes to IGST
    CGST_SGST = "CGST_SGST"  # Intra-state: split equally into CGST and SGST


@dataclass(frozen=True)
class Adjustment:
    """
    A discount or a charge: a flat amount, or a percent of some base.

    Immutable value object.
    """

    type: AdjustmentType = AdjustmentType.AMOUNT
    value: Decimal = _ZERO

    def __post_init__(self) -> None:
        if self.value < _ZERO:
            raise ValueError("Adjustment value cannot be negative")

    def amount_on(self, base: Decimal) -> Decimal:
        """Resolve this adjustment against ``base``."""
        if self.type is AdjustmentType.PERCENTAGE:
            return base * self.value / _HUNDRED
        return self.value

    @classmethod
    def none(cls) -> Adjustment:
        return cls()


@dataclass(frozen=True)
class LineInput:
    """Numeric inputs of one product line."""

    quantity: Decimal
    unit_price: Decimal
    discount: Decimal = _ZERO
    discount_type: AdjustmentType = AdjustmentType.AMOUNT
    foc: Decimal = _ZERO

    def __post_init__(self) -> None:
        for name in ("quantity", "unit_price", "discount", "foc"):
            if getattr(self, name) < _ZERO:
                raise ValueError(f"Line {name} cannot be negative")


@dataclass(frozen=True)
class LineTotals:
    """Calculated amounts for one product line."""

    gross: Decimal
    discount_amount: Decimal
    net: Decimal


@dataclass(frozen=True)
class OrderTotals:
    """
    Complete totals calculation result.

    ``grand_total`` is rounded to currency precision; everything else is
    unrounded.
    """

    lines: tuple[LineTotals, ...]
    sub_total: Decimal
    product_level_discount: Decimal
    additional_discount_amount: Decimal
    total_after_discount: Decimal
    gst_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    shipping_amount: Decimal
    grand_total: Decimal
    tax_type: TaxType = TaxType.IGST
    gst_rate: Decimal = field(default=_ZERO)

    @property
    def line_count(self) -> int:
        return len(self.lines)


class TotalsCalculator:
    """
    Calculate purchase order totals.

    Pure functions - no I/O, no database access.  Deterministic: identical
    inputs always produce identical outputs, and the grand total is never
    negative.
    """

    def __init__(
        self,
        decimal_places: int = CURRENCY_DECIMAL_PLACES,
        rounding: str = ROUND_HALF_UP,
    ):
        self.decimal_places = decimal_places
        self.rounding = rounding

    def line_totals(self, line: LineInput) -> LineTotals:
        """Calculate gross, discount and net for one product line."""
        gross = line.unit_price * line.quantity
        requested = Adjustment(line.discount_type, line.discount).amount_on(gross)
        net = max(gross - requested, _ZERO)
        # Only the part of the discount that reduced the line counts.
        return LineTotals(gross=gross, discount_amount=gross - net, net=net)

    def calculate(
        self,
        lines: Sequence[LineInput],
        additional_discount: Adjustment | None = None,
        tax_type: TaxType = TaxType.IGST,
        gst_rate: Decimal = _ZERO,
        shipping_charges: Adjustment | None = None,
    ) -> OrderTotals:
        """
        Calculate all order totals.

        Args:
            lines: Product lines, in order.
            additional_discount: Order-level discount (amount, or percent of
                the summed line nets).
            tax_type: IGST or CGST_SGST split.
            gst_rate: Percent, e.g. Decimal("5") for 5%.
            shipping_charges: Amount, or percent of the post-discount base.

        Returns:
            OrderTotals with every intermediate and the rounded grand total.

        Raises:
            ValueError: If gst_rate is negative.
        """
        t0 = time.monotonic()
        if gst_rate < _ZERO:
            raise ValueError("GST rate cannot be negative")
        additional_discount = additional_discount or Adjustment.none()
        shipping_charges = shipping_charges or Adjustment.none()
        tax_type = TaxType(tax_type)

        line_results = tuple(self.line_totals(line) for line in lines)
        sub_total = sum((r.net for r in line_results), _ZERO)
        product_level_discount = sum((r.discount_amount for r in line_results), _ZERO)

        additional_amount = additional_discount.amount_on(sub_total)
        total_after_discount = max(sub_total - additional_amount, _ZERO)

        gst_amount = total_after_discount * gst_rate / _HUNDRED
        if tax_type is TaxType.CGST_SGST:
            half = gst_amount / 2
            cgst, sgst, igst = half, half, _ZERO
        else:
            cgst, sgst, igst = _ZERO, _ZERO, gst_amount

        shipping_amount = shipping_charges.amount_on(total_after_discount)

        grand_total = round_money(
            total_after_discount + gst_amount + shipping_amount,
            self.decimal_places,
            self.rounding,
        )

        result = OrderTotals(
            lines=line_results,
            sub_total=sub_total,
            product_level_discount=product_level_discount,
            additional_discount_amount=additional_amount,
            total_after_discount=total_after_discount,
            gst_amount=gst_amount,
            cgst=cgst,
            sgst=sgst,
            igst=igst,
            shipping_amount=shipping_amount,
            grand_total=grand_total,
            tax_type=tax_type,
            gst_rate=gst_rate,
        )

        logger.debug("totals_calculated", extra={
            "line_count": len(line_results),
            "sub_total": str(sub_total),
            "gst_amount": str(gst_amount),
            "grand_total": str(grand_total),
            "tax_type": tax_type.value,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })

        return result
