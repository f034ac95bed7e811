"""
Module: procurement_engines
Responsibility:
    Pure calculation layer.  Re-exports the totals engine, which is the
    canonical way for services to compute purchase order amounts.

Architecture position:
    Engines -- zero I/O.  May import procurement_kernel.db.types and
    procurement_kernel.logging_config only.  MUST NOT import
    procurement_modules.
"""

from procurement_engines.totals import (
    Adjustment,
    AdjustmentType,
    LineInput,
    LineTotals,
    OrderTotals,
    TaxType,
    TotalsCalculator,
)

__all__ = [
    "Adjustment",
    "AdjustmentType",
    "LineInput",
    "LineTotals",
    "OrderTotals",
    "TaxType",
    "TotalsCalculator",
]
