"""Decimal helpers shared by the resolvers and ledgers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from billing_core.core.constants import MONEY_QUANTUM

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Round *value* to :data:`MONEY_QUANTUM` using half-up rounding."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def discount_factor(percentage: Decimal) -> Decimal:
    """``1 - percentage/100``; a 0% discount is the identity factor."""
    return ONE - percentage / HUNDRED


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return amount * percentage / HUNDRED
