"""Rule catalog data models: providers, costs, markup rules, billing plans."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from billing_core.core.constants import (
    ALL_SERVICES,
    DEFAULT_PRIORITY_WEIGHT,
    STATUS_RANK,
    MarkupScope,
    MarkupType,
    RegionType,
)
from billing_core.utils.dates import UtcDatetime, as_utc, utcnow
from billing_core.utils.money import ZERO, percent_of


def _new_id() -> str:
    return uuid4().hex


class CatalogModel(BaseModel):
    """Base for catalog records. Snapshots are shared between concurrent
    resolvers, so every record is frozen."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class CountryRoutingRules(CatalogModel):
    enabled: bool = False
    countries: tuple[str, ...] = ()
    exclusive_countries: bool = False


class ProviderCredentials(CatalogModel):
    api_key: SecretStr | None = None
    client_id: SecretStr | None = None
    client_secret: SecretStr | None = None


class Provider(CatalogModel):
    """A routable upstream provider for one service type."""

    id: str = Field(default_factory=_new_id)
    name: str
    service_type: str
    endpoint: str | None = None
    status: str | None = None
    is_active: bool = True
    priority_weight: int | None = None
    uptime_percentage: float | None = None
    country_routing_rules: CountryRoutingRules = Field(default_factory=CountryRoutingRules)
    credentials: ProviderCredentials = Field(default_factory=ProviderCredentials)

    @property
    def effective_weight(self) -> int:
        """``priority_weight`` or the default of 10 when unset."""
        if self.priority_weight is None:
            return DEFAULT_PRIORITY_WEIGHT
        return self.priority_weight

    @property
    def status_rank(self) -> int:
        return STATUS_RANK.get(self.status or "", 2)


# ---------------------------------------------------------------------------
# Costs and markup
# ---------------------------------------------------------------------------


class ProviderCost(CatalogModel):
    """What a provider charges us per unit of a service."""

    id: str = Field(default_factory=_new_id)
    service_type: str
    provider_name: str
    cost_per_unit: Decimal = Field(ge=0)
    currency: str = "USD"
    is_active: bool = True
    effective_from: UtcDatetime = Field(default_factory=utcnow)


class CostOverride(CatalogModel):
    """An approved unit cost that replaces whatever the catalog source says."""

    cost_id: str
    cost_per_unit: Decimal = Field(ge=0)
    effective_from: UtcDatetime

    def apply_to(self, record: ProviderCost) -> ProviderCost:
        return record.model_copy(
            update={"cost_per_unit": self.cost_per_unit, "effective_from": self.effective_from}
        )


class MarkupRule(CatalogModel):
    """Amount added on top of provider cost for a la carte pricing."""

    id: str = Field(default_factory=_new_id)
    rule_name: str
    service_type: str = ALL_SERVICES
    scope: MarkupScope = MarkupScope.GLOBAL
    organization_id: str | None = None
    markup_type: MarkupType = MarkupType.PERCENTAGE
    fixed_markup: Decimal | None = Field(default=None, ge=0)
    percentage_markup: Decimal | None = Field(default=None, ge=0)
    priority: int = 0
    is_active: bool = True
    effective_from: UtcDatetime = Field(default_factory=utcnow)
    description: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> MarkupRule:
        if self.scope == MarkupScope.ORGANIZATION and not self.organization_id:
            raise ValueError("organization-scoped markup rule requires organization_id")
        if self.markup_type == MarkupType.FIXED and self.fixed_markup is None:
            raise ValueError("fixed markup rule requires fixed_markup")
        if self.markup_type == MarkupType.PERCENTAGE and self.percentage_markup is None:
            raise ValueError("percentage markup rule requires percentage_markup")
        return self

    def applies_to_service(self, service_type: str) -> bool:
        return self.service_type in (service_type, ALL_SERVICES)

    def applies_to_organization(self, organization_id: str | None) -> bool:
        if self.scope == MarkupScope.GLOBAL:
            return True
        return organization_id is not None and self.organization_id == organization_id

    def compute_markup(self, cost_per_unit: Decimal) -> Decimal:
        """Fixed part (fixed/both) plus percentage of cost (percentage/both)."""
        markup = ZERO
        if self.markup_type in (MarkupType.FIXED, MarkupType.BOTH):
            markup += self.fixed_markup or ZERO
        if self.markup_type in (MarkupType.PERCENTAGE, MarkupType.BOTH):
            markup += percent_of(cost_per_unit, self.percentage_markup or ZERO)
        return markup


# ---------------------------------------------------------------------------
# Billing plans
# ---------------------------------------------------------------------------

Percentage = Annotated[Decimal, Field(ge=0, le=100)]


class PricingTier(CatalogModel):
    """One bracket of a progressive price list. ``to=None`` is open-ended."""

    from_: int = Field(alias="from", ge=0)
    to: int | None = None
    price: Decimal = Field(ge=0)

    def contains(self, quantity: int) -> bool:
        return self.from_ <= quantity and (self.to is None or quantity <= self.to)


class ProgressivePricing(CatalogModel):
    component: str
    tiers: tuple[PricingTier, ...] = ()

    def tier_issues(self) -> list[str]:
        """Return human-readable problems with the tier layout.

        Tiers must be ascending and non-overlapping, ``from <= to``, and
        only the last tier may be open-ended.
        """
        issues: list[str] = []
        for index, tier in enumerate(self.tiers):
            if tier.to is not None and tier.to < tier.from_:
                issues.append(
                    f"{self.component}: tier {index} has to={tier.to} < from={tier.from_}"
                )
            if index + 1 < len(self.tiers):
                following = self.tiers[index + 1]
                if tier.to is None:
                    issues.append(
                        f"{self.component}: open-ended tier {index} is not the last tier"
                    )
                elif tier.to >= following.from_:
                    issues.append(
                        f"{self.component}: tier {index} (to={tier.to}) overlaps "
                        f"tier {index + 1} (from={following.from_})"
                    )
        return issues

    def find_tier(self, quantity: int) -> PricingTier | None:
        for tier in self.tiers:
            if tier.contains(quantity):
                return tier
        return None


class RegionalPrice(CatalogModel):
    region_type: RegionType
    region_code: str
    multiplier: Decimal = Field(gt=0)


class PromotionalPricing(CatalogModel):
    is_active: bool = False
    start: UtcDatetime | None = None
    end: UtcDatetime | None = None
    discount_percentage: Percentage = Decimal("0")
    promo_code: str | None = None

    def applies_at(self, timestamp: datetime, promo_code: str | None = None) -> bool:
        """Active, inside ``[start, end]``, and the code matches when one is set."""
        if not self.is_active:
            return False
        timestamp = as_utc(timestamp)
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp > self.end:
            return False
        if self.promo_code is not None and promo_code != self.promo_code:
            return False
        return True


class OrganizationDiscount(CatalogModel):
    organization_id: str
    discount_percentage: Percentage = Decimal("0")


class MultiYearDiscounts(CatalogModel):
    """Discount percentages for 2- and 3-year billing terms."""

    two_year: Percentage = Decimal("0")
    three_year: Percentage = Decimal("0")

    def percentage_for(self, term_years: int) -> Decimal:
        if term_years == 2:
            return self.two_year
        if term_years == 3:
            return self.three_year
        return ZERO


class WhiteLabelPricing(CatalogModel):
    is_enabled: bool = False
    wholesale_discount: Percentage = Decimal("0")
    minimum_volume: int = Field(default=0, ge=0)


class BillingPlan(CatalogModel):
    """Subscription plan with component prices and stacked modifiers."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    tier: str
    currency: str = "USD"
    is_active: bool = True
    base_price: Decimal | None = Field(default=None, ge=0)
    component_pricing: dict[str, Decimal] = Field(default_factory=dict)
    regional_pricing: tuple[RegionalPrice, ...] = ()
    progressive_pricing: tuple[ProgressivePricing, ...] = ()
    promotional_pricing: PromotionalPricing | None = None
    organization_discounts: tuple[OrganizationDiscount, ...] = ()
    multi_year_discounts: MultiYearDiscounts | None = None
    white_label_pricing: WhiteLabelPricing | None = None

    def progressive_for(self, component: str) -> ProgressivePricing | None:
        for entry in self.progressive_pricing:
            if entry.component == component:
                return entry
        return None


# ---------------------------------------------------------------------------
# Tax, currency, settings
# ---------------------------------------------------------------------------


class TaxRule(CatalogModel):
    country_code: str
    tax_type: str = "VAT"
    rate: Decimal = Field(default=Decimal("0"), ge=0)
    reverse_charge: bool = False


class Currency(CatalogModel):
    code: str
    name: str
    symbol: str

    def format(self, amount: Decimal, places: int = 2) -> str:
        return f"{self.symbol}{amount:,.{places}f}"


class BillingSettings(CatalogModel):
    seller_country_code: str | None = None
    default_tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    invoice_prefix: str = "INV"
    payment_terms_days: int = Field(default=30, ge=0)