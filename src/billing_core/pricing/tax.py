from __future__ import annotations

from decimal import Decimal

from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.pricing.models import PricingContext, TaxResult
from billing_core.utils.money import ZERO, percent_of, quantize_money


def is_reverse_charge(
    snapshot: CatalogSnapshot,
    buyer_country: str | None,
    is_business: bool,
) -> bool:
    """B2B cross-border sale into a reverse-charge jurisdiction.

    Needs a known seller country that differs from the buyer's; with no
    seller country configured, tax is always charged.
    """
    rule = snapshot.tax_rule(buyer_country)
    seller = snapshot.settings.seller_country_code
    if rule is None or not rule.reverse_charge or not is_business or not seller:
        return False
    return seller.upper() != rule.country_code.upper()


def compute_tax(
    snapshot: CatalogSnapshot,
    subtotal: Decimal,
    context: PricingContext,
) -> TaxResult:
    """Tax owed on *subtotal* for the buyer in *context*.

    Countries without a tax rule are taxed at ``settings.default_tax_rate``.
    """
    country = context.country_code
    rule = snapshot.tax_rule(country)
    if rule is None:
        rate = snapshot.settings.default_tax_rate
        return TaxResult(
            country_code=country,
            tax_type="Tax",
            rate=rate,
            tax_amount=quantize_money(percent_of(subtotal, rate)),
        )

    if is_reverse_charge(snapshot, country, context.is_business):
        return TaxResult(
            country_code=country,
            tax_type=rule.tax_type,
            rate=rule.rate,
            tax_amount=ZERO,
            reverse_charge=True,
        )

    return TaxResult(
        country_code=country,
        tax_type=rule.tax_type,
        rate=rule.rate,
        tax_amount=quantize_money(percent_of(subtotal, rule.rate)),
    )
