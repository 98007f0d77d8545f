from billing_core.pricing.markup import resolve_markup, select_markup_rule
from billing_core.pricing.models import (
    AppliedModifier,
    InvoiceLine,
    MarkupResolution,
    PlanPriceResolution,
    PricingContext,
    TaxResult,
)
from billing_core.pricing.modifiers import (
    MODIFIER_ORDER,
    MultiYearModifier,
    OrganizationDiscountModifier,
    PriceModifier,
    ProgressiveTierModifier,
    PromotionalModifier,
    RegionalModifier,
    WhiteLabelModifier,
    apply_modifiers,
    build_modifier_chain,
)
from billing_core.pricing.plan import resolve_plan_price
from billing_core.pricing.tax import compute_tax, is_reverse_charge

__all__ = [
    "MODIFIER_ORDER",
    "AppliedModifier",
    "InvoiceLine",
    "MarkupResolution",
    "MultiYearModifier",
    "OrganizationDiscountModifier",
    "PlanPriceResolution",
    "PriceModifier",
    "PricingContext",
    "ProgressiveTierModifier",
    "PromotionalModifier",
    "RegionalModifier",
    "TaxResult",
    "WhiteLabelModifier",
    "apply_modifiers",
    "build_modifier_chain",
    "compute_tax",
    "is_reverse_charge",
    "resolve_markup",
    "resolve_plan_price",
    "select_markup_rule",
]
