# backend/orderdesk/money.py
"""
Money helpers.

All amounts are integer cents. Percentages are basis points (10000 = 100%).
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

BPS_DENOMINATOR = 10_000
MAX_PERCENT_BPS = 10_000


def apply_bps(amount_cents: int, bps: int) -> int:
    """Return ``amount_cents * bps / 10000`` rounded half-up to the cent."""
    if amount_cents <= 0 or bps <= 0:
        return 0
    exact = Decimal(amount_cents) * Decimal(bps) / Decimal(BPS_DENOMINATOR)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def cents_to_str(cents: int | None) -> str:
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"
