"""billing-core -- provider routing, price resolution and billing ledgers."""

from billing_core.__version__ import __version__

from billing_core.catalog import (
    BillingPlan,
    BillingSettings,
    CatalogSnapshot,
    CatalogStore,
    MarkupRule,
    Provider,
    ProviderCost,
    load_catalog_file,
    validate_catalog,
)
from billing_core.core.config import BillingConfig
from billing_core.core.constants import (
    CreditType,
    MarkupScope,
    MarkupType,
    ModifierKind,
    PriceChangeStatus,
    ProviderStatus,
    ReferralStatus,
    RegionType,
    ServiceType,
)
from billing_core.core.engine import BillingEngine, ChargeResult
from billing_core.core.exceptions import (
    BillingCoreError,
    ConcurrentModificationError,
    ConfigurationError,
    ConfigurationWarning,
    InvalidTransitionError,
    NegativeBalanceError,
    NoApplicableRuleError,
    NoProvidersAvailableError,
    RecordNotFoundError,
    StorageError,
)
from billing_core.ledger.credits import CreditLedger
from billing_core.ledger.models import (
    CostTransaction,
    CreditBalance,
    CreditTransaction,
    ProfitSummary,
)
from billing_core.ledger.writer import LedgerWriter
from billing_core.pricing import (
    MarkupResolution,
    PlanPriceResolution,
    PricingContext,
    resolve_markup,
    resolve_plan_price,
)
from billing_core.resilience.retry import RetryPolicy
from billing_core.routing import ProviderRouter, RoutingDecision, select_provider
from billing_core.storage import InMemoryLedgerStore, LedgerStore, SQLiteLedgerStore
from billing_core.utils.logging import configure_logging, get_logger
from billing_core.workflows.models import PriceChangeRequest, Referral
from billing_core.workflows.price_change import PriceChangeWorkflow
from billing_core.workflows.referral import ReferralWorkflow

__all__ = [
    "__version__",
    "BillingEngine",
    "BillingConfig",
    "ChargeResult",
    # Catalog
    "BillingPlan",
    "BillingSettings",
    "CatalogSnapshot",
    "CatalogStore",
    "MarkupRule",
    "Provider",
    "ProviderCost",
    "load_catalog_file",
    "validate_catalog",
    # Constants
    "CreditType",
    "MarkupScope",
    "MarkupType",
    "ModifierKind",
    "PriceChangeStatus",
    "ProviderStatus",
    "ReferralStatus",
    "RegionType",
    "ServiceType",
    # Errors
    "BillingCoreError",
    "ConcurrentModificationError",
    "ConfigurationError",
    "ConfigurationWarning",
    "InvalidTransitionError",
    "NegativeBalanceError",
    "NoApplicableRuleError",
    "NoProvidersAvailableError",
    "RecordNotFoundError",
    "StorageError",
    # Routing and pricing
    "ProviderRouter",
    "RoutingDecision",
    "select_provider",
    "MarkupResolution",
    "PlanPriceResolution",
    "PricingContext",
    "resolve_markup",
    "resolve_plan_price",
    # Ledgers
    "CostTransaction",
    "CreditBalance",
    "CreditLedger",
    "CreditTransaction",
    "LedgerWriter",
    "ProfitSummary",
    # Workflows
    "PriceChangeRequest",
    "PriceChangeWorkflow",
    "Referral",
    "ReferralWorkflow",
    # Infrastructure
    "InMemoryLedgerStore",
    "LedgerStore",
    "RetryPolicy",
    "SQLiteLedgerStore",
    "configure_logging",
    "get_logger",
]
