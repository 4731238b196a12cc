# Overview: Integer-cent money helpers shared by pricing, promotions and reporting.

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Percent promotions are stored in basis points: 10000 == 100%
MAX_PERCENT_BPS = 10_000


def cents_to_decimal(cents: int | None) -> Decimal | None:
    """Render integer cents as a 2-place Decimal for JSON output."""
    if cents is None:
        return None
    return (Decimal(int(cents)) / 100).quantize(CENT)


def apply_basis_points(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000 with nearest-cent rounding (half-up)."""
    return (amount_cents * bps + 5000) // 10000


def decimal_to_cents(value: Decimal) -> int:
    """Currency amount (e.g. Decimal("3.50")) to integer cents, half-up."""
    return int((value * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
