# Overview: Cent arithmetic shared by orders and invoices.

"""
Money is integer cents everywhere; quantities are Decimals.

Rounding is nearest cent, half-up, applied once per line and once for tax.
Totals are computed at document creation and then stored, never recomputed.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# Flat tax on every order and invoice (20%)
TAX_RATE_BPS = 2000


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total_cents(unit_price_cents: int, quantity: Decimal) -> int:
    return _round_cents(Decimal(unit_price_cents) * Decimal(quantity))


def tax_cents(subtotal_cents: int) -> int:
    return _round_cents(Decimal(subtotal_cents) * TAX_RATE_BPS / Decimal(10_000))


def document_totals(line_totals: list[int], discount_cents: int = 0) -> dict:
    """
    Return subtotal/tax/discount/total for a set of line totals.

    Invariant: total == subtotal + tax - discount.
    """
    subtotal = sum(line_totals)
    tax = tax_cents(subtotal)
    return {
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "discount_cents": discount_cents,
        "total_cents": subtotal + tax - discount_cents,
    }
