# Overview: Pure cart/order totals; recomputed from lines and discounts on every read.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..money import apply_bps, clamp
from .pricing_service import PricedLine


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def subtotal_cents(lines: Iterable[PricedLine]) -> int:
    return sum(line.line_total_cents for line in lines if not line.is_free_item)


def compute_totals(lines: Iterable[PricedLine], discount_cents: int, *, tax_rate_bps: int = 0) -> CartTotals:
    """
    subtotal = sum(unit price x quantity) over paid lines
    discount is clamped to [0, subtotal]
    tax      = tax_rate_bps of (subtotal - discount)
    total    = max(0, subtotal - discount + tax)
    """
    subtotal = subtotal_cents(lines)
    discount = clamp(discount_cents, 0, subtotal)
    tax = apply_bps(subtotal - discount, tax_rate_bps)
    total = max(0, subtotal - discount + tax)
    return CartTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=total,
    )
