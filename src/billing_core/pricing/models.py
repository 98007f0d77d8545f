"""Pricing request context and resolution results."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from billing_core.core.constants import ModifierKind
from billing_core.utils.dates import UtcDatetime, utcnow


class PricingContext(BaseModel):
    """Everything about a billable request that can change its price."""

    organization_id: str | None = None
    service_type: str
    country_code: str | None = None
    currency: str | None = None
    quantity: int = Field(default=1, ge=1)
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    billing_term_years: int = Field(default=1, ge=1)
    promo_code: str | None = None
    is_business: bool = False
    """Buyer is a VAT-registered business (enables reverse charge)."""
    white_label: bool = False
    """Request comes through a white-label reseller."""

    @field_validator("country_code", "currency")
    @classmethod
    def _upper(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class MarkupResolution(BaseModel):
    """A la carte price: provider cost, markup, and what gets charged."""

    service_type: str
    provider_name: str
    provider_cost: Decimal
    markup: Decimal
    total_charged: Decimal
    currency: str = "USD"
    cost_id: str
    rule_id: str | None = None
    rule_name: str | None = None


class AppliedModifier(BaseModel):
    kind: ModifierKind
    detail: str
    price_before: Decimal
    price_after: Decimal


class TaxResult(BaseModel):
    country_code: str | None = None
    tax_type: str = "Tax"
    rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    reverse_charge: bool = False


class InvoiceLine(BaseModel):
    """A single priced line, ready to be placed on an invoice."""

    description: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    tax_label: str = "Tax"
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal
    currency: str = "USD"
    reverse_charge: bool = False


class PlanPriceResolution(BaseModel):
    """Subscription price after tiers, regional and discount modifiers, and tax.

    ``modifiers`` lists only the modifiers that changed the price, in the
    order they were applied. ``warnings`` carries configuration problems
    that forced a fallback.
    """

    plan_id: str
    plan_tier: str
    component: str | None = None
    currency: str = "USD"
    base_price: Decimal
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    tax: TaxResult
    total: Decimal
    modifiers: list[AppliedModifier] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def reverse_charge(self) -> bool:
        return self.tax.reverse_charge

    def to_invoice_line(self, description: str | None = None) -> InvoiceLine:
        label = description or (
            f"{self.plan_tier} - {self.component}" if self.component else f"{self.plan_tier} plan"
        )
        return InvoiceLine(
            description=label,
            quantity=self.quantity,
            unit_price=self.unit_price,
            subtotal=self.subtotal,
            tax_label=self.tax.tax_type,
            tax_rate=self.tax.rate,
            tax_amount=self.tax.tax_amount,
            total=self.total,
            currency=self.currency,
            reverse_charge=self.tax.reverse_charge,
        )
