"""
Fiscal Derivation - Shipment Weight Estimate
============================================
    with line items:    grand_total / 100 + sum(quantity) * 0.5
    without line items: grand_total / 50
Rounded to two places, never below 1 kg.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from fiscal.documents.models import CENTS, FiscalDocument


@dataclass(frozen=True)
class WeightEstimator:
    total_divisor: Decimal = Decimal("100")
    per_unit_kg: Decimal = Decimal("0.5")
    bare_total_divisor: Decimal = Decimal("50")
    minimum_kg: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        if self.total_divisor <= 0 or self.bare_total_divisor <= 0:
            raise ValueError("divisors must be > 0.")
        if self.per_unit_kg < 0 or self.minimum_kg < 0:
            raise ValueError("per_unit_kg and minimum_kg must be >= 0.")

    def estimate(self, document: FiscalDocument) -> Decimal:
        total = document.totals.grand_total
        if document.line_items:
            units = sum((item.quantity for item in document.line_items), Decimal("0"))
            weight = total / self.total_divisor + units * self.per_unit_kg
        else:
            weight = total / self.bare_total_divisor
        weight = weight.quantize(CENTS, rounding=ROUND_HALF_UP)
        return max(weight, self.minimum_kg.quantize(CENTS))
