from billing_core.catalog.models import (
    BillingPlan,
    BillingSettings,
    CostOverride,
    CountryRoutingRules,
    Currency,
    MarkupRule,
    MultiYearDiscounts,
    OrganizationDiscount,
    PricingTier,
    ProgressivePricing,
    PromotionalPricing,
    Provider,
    ProviderCost,
    ProviderCredentials,
    RegionalPrice,
    TaxRule,
    WhiteLabelPricing,
)
from billing_core.catalog.snapshot import CatalogSnapshot, load_catalog_file, validate_catalog
from billing_core.catalog.store import CatalogStore

__all__ = [
    "BillingPlan",
    "BillingSettings",
    "CatalogSnapshot",
    "CatalogStore",
    "CostOverride",
    "CountryRoutingRules",
    "Currency",
    "MarkupRule",
    "MultiYearDiscounts",
    "OrganizationDiscount",
    "PricingTier",
    "ProgressivePricing",
    "PromotionalPricing",
    "Provider",
    "ProviderCost",
    "ProviderCredentials",
    "RegionalPrice",
    "TaxRule",
    "WhiteLabelPricing",
    "load_catalog_file",
    "validate_catalog",
]
