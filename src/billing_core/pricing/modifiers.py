"""Typed price modifiers for the plan path.

Each modifier kind is its own model with an ``apply`` that returns either
a changed price or the identity outcome. :func:`build_modifier_chain`
always emits one modifier per kind in :data:`MODIFIER_ORDER`, and
:func:`apply_modifiers` folds the chain over the base price. Callers never
branch on whether a plan configures a modifier.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict

from billing_core.catalog.models import (
    BillingPlan,
    MultiYearDiscounts,
    OrganizationDiscount,
    ProgressivePricing,
    PromotionalPricing,
    RegionalPrice,
    WhiteLabelPricing,
)
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.core.constants import ModifierKind, RegionType
from billing_core.pricing.models import AppliedModifier, PricingContext
from billing_core.utils.money import discount_factor

MODIFIER_ORDER: tuple[ModifierKind, ...] = (
    ModifierKind.PROGRESSIVE_TIER,
    ModifierKind.REGIONAL,
    ModifierKind.PROMOTIONAL,
    ModifierKind.ORGANIZATION_DISCOUNT,
    ModifierKind.MULTI_YEAR,
    ModifierKind.WHITE_LABEL,
)


class ModifierOutcome(BaseModel):
    """Result of one modifier step. ``detail is None`` means identity."""

    price: Decimal
    detail: str | None = None
    warning: str | None = None

    @property
    def changed(self) -> bool:
        return self.detail is not None


class PriceModifier(BaseModel, ABC):
    model_config = ConfigDict(frozen=True)

    kind: ModifierKind

    @abstractmethod
    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        """Return the modified price, or ``ModifierOutcome(price=price)``."""


class ProgressiveTierModifier(PriceModifier):
    """Replace the component price with the flat price of the matching tier."""

    kind: Literal[ModifierKind.PROGRESSIVE_TIER] = ModifierKind.PROGRESSIVE_TIER
    pricing: ProgressivePricing | None = None

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        if self.pricing is None or not self.pricing.tiers:
            return ModifierOutcome(price=price)
        issues = self.pricing.tier_issues()
        if issues:
            return ModifierOutcome(
                price=price,
                warning=f"malformed progressive tiers, using base price: {'; '.join(issues)}",
            )
        tier = self.pricing.find_tier(context.quantity)
        if tier is None:
            return ModifierOutcome(
                price=price,
                warning=(
                    f"{self.pricing.component}: no tier contains quantity "
                    f"{context.quantity}, using base price"
                ),
            )
        upper = "" if tier.to is None else str(tier.to)
        return ModifierOutcome(price=tier.price, detail=f"tier {tier.from_}-{upper}")


class RegionalModifier(PriceModifier):
    """Multiply by the regional entry for the country, else its continent."""

    kind: Literal[ModifierKind.REGIONAL] = ModifierKind.REGIONAL
    entries: tuple[RegionalPrice, ...] = ()

    def _match(self, region_type: RegionType, code: str | None) -> RegionalPrice | None:
        if not code:
            return None
        for entry in self.entries:
            if entry.region_type == region_type and entry.region_code == code:
                return entry
        return None

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        country = context.country_code
        entry = self._match(RegionType.COUNTRY, country) or self._match(
            RegionType.CONTINENT, snapshot.continent_of(country)
        )
        if entry is None:
            return ModifierOutcome(price=price)
        return ModifierOutcome(
            price=price * entry.multiplier,
            detail=f"{entry.region_type} {entry.region_code} x{entry.multiplier}",
        )


class PromotionalModifier(PriceModifier):
    kind: Literal[ModifierKind.PROMOTIONAL] = ModifierKind.PROMOTIONAL
    promotion: PromotionalPricing | None = None

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        promo = self.promotion
        if promo is None or not promo.applies_at(context.timestamp, context.promo_code):
            return ModifierOutcome(price=price)
        return ModifierOutcome(
            price=price * discount_factor(promo.discount_percentage),
            detail=f"promotion -{promo.discount_percentage}%",
        )


class OrganizationDiscountModifier(PriceModifier):
    kind: Literal[ModifierKind.ORGANIZATION_DISCOUNT] = ModifierKind.ORGANIZATION_DISCOUNT
    discounts: tuple[OrganizationDiscount, ...] = ()

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        if context.organization_id is None:
            return ModifierOutcome(price=price)
        for entry in self.discounts:
            if entry.organization_id == context.organization_id:
                return ModifierOutcome(
                    price=price * discount_factor(entry.discount_percentage),
                    detail=f"organization -{entry.discount_percentage}%",
                )
        return ModifierOutcome(price=price)


class MultiYearModifier(PriceModifier):
    kind: Literal[ModifierKind.MULTI_YEAR] = ModifierKind.MULTI_YEAR
    discounts: MultiYearDiscounts | None = None

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        if self.discounts is None:
            return ModifierOutcome(price=price)
        percentage = self.discounts.percentage_for(context.billing_term_years)
        if not percentage:
            return ModifierOutcome(price=price)
        return ModifierOutcome(
            price=price * discount_factor(percentage),
            detail=f"{context.billing_term_years}-year term -{percentage}%",
        )


class WhiteLabelModifier(PriceModifier):
    """Wholesale discount for white-label resellers above the minimum volume."""

    kind: Literal[ModifierKind.WHITE_LABEL] = ModifierKind.WHITE_LABEL
    pricing: WhiteLabelPricing | None = None

    def apply(
        self,
        price: Decimal,
        context: PricingContext,
        snapshot: CatalogSnapshot,
    ) -> ModifierOutcome:
        wl = self.pricing
        if (
            wl is None
            or not wl.is_enabled
            or not context.white_label
            or context.quantity < wl.minimum_volume
        ):
            return ModifierOutcome(price=price)
        return ModifierOutcome(
            price=price * discount_factor(wl.wholesale_discount),
            detail=f"white label -{wl.wholesale_discount}%",
        )


def build_modifier_chain(plan: BillingPlan, component: str | None) -> list[PriceModifier]:
    """One modifier per kind, in :data:`MODIFIER_ORDER`.

    Tiers only exist for components; a flat plan fee gets an identity tier
    modifier.
    """
    chain: list[PriceModifier] = [
        ProgressiveTierModifier(
            pricing=plan.progressive_for(component) if component is not None else None
        ),
        RegionalModifier(entries=plan.regional_pricing),
        PromotionalModifier(promotion=plan.promotional_pricing),
        OrganizationDiscountModifier(discounts=plan.organization_discounts),
        MultiYearModifier(discounts=plan.multi_year_discounts),
        WhiteLabelModifier(pricing=plan.white_label_pricing),
    ]
    return chain


def apply_modifiers(
    base_price: Decimal,
    chain: list[PriceModifier],
    context: PricingContext,
    snapshot: CatalogSnapshot,
) -> tuple[Decimal, list[AppliedModifier], list[str]]:
    """Fold *chain* over *base_price*.

    Returns the final (unrounded) price, the modifiers that changed it and
    any configuration warnings raised along the way.
    """
    price = base_price
    applied: list[AppliedModifier] = []
    problems: list[str] = []
    for modifier in chain:
        outcome = modifier.apply(price, context, snapshot)
        if outcome.warning:
            problems.append(outcome.warning)
        if outcome.changed:
            applied.append(
                AppliedModifier(
                    kind=modifier.kind,
                    detail=outcome.detail or "",
                    price_before=price,
                    price_after=outcome.price,
                )
            )
        price = outcome.price
    return price, applied, problems
