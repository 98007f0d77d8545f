"""BillingEngine -- one object wiring catalog, router, resolvers, ledgers and workflows."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from pydantic import BaseModel

from billing_core.catalog.models import BillingSettings
from billing_core.catalog.snapshot import CatalogSnapshot, load_catalog_file
from billing_core.catalog.store import CatalogStore
from billing_core.core.config import BillingConfig
from billing_core.core.exceptions import RecordNotFoundError
from billing_core.ledger.credits import CreditLedger
from billing_core.ledger.models import CostTransaction
from billing_core.ledger.writer import LedgerWriter
from billing_core.pricing.markup import resolve_markup
from billing_core.pricing.models import MarkupResolution, PlanPriceResolution, PricingContext
from billing_core.pricing.plan import resolve_plan_price
from billing_core.routing.router import ProviderRouter, RoutingDecision
from billing_core.storage.base import LedgerStore
from billing_core.storage.memory import InMemoryLedgerStore
from billing_core.storage.sqlite import SQLiteLedgerStore
from billing_core.utils.locks import KeyedLock
from billing_core.utils.logging import billing_context, configure_logging
from billing_core.workflows.price_change import PriceChangeWorkflow
from billing_core.workflows.referral import ReferralWorkflow

logger = structlog.get_logger(__name__)


class ChargeResult(BaseModel):
    """Everything one billable invocation produced."""

    decision: RoutingDecision
    resolution: MarkupResolution
    transaction: CostTransaction


def _with_seller(snapshot: CatalogSnapshot, seller_country_code: str | None) -> CatalogSnapshot:
    if not seller_country_code:
        return snapshot
    settings = snapshot.settings.model_copy(update={"seller_country_code": seller_country_code})
    return snapshot.model_copy(update={"settings": settings})


class BillingEngine:
    """Facade over the billing core.

    Prefer :meth:`create`, which builds every collaborator from a
    :class:`BillingConfig`. All mutating collaborators share one
    :class:`KeyedLock` so credit and workflow writes serialize together.

    Example::

        async with await BillingEngine.create(BillingConfig.from_env()) as engine:
            result = await engine.charge(
                "kyb_verification",
                PricingContext(service_type="kyb_verification", organization_id="org-1"),
            )
            print(result.transaction.total_charged)
    """

    def __init__(
        self,
        config: BillingConfig,
        catalog: CatalogStore,
        store: LedgerStore,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.store = store
        self.locks = KeyedLock()
        self.router = ProviderRouter(catalog)
        self.writer = LedgerWriter(store)
        self.credits = CreditLedger(store, config.retry_policy, self.locks)
        self.price_changes = PriceChangeWorkflow(catalog, store, config.retry_policy, self.locks)
        self.referrals = ReferralWorkflow(store, self.credits, config.retry_policy)
        catalog.use_cost_overrides(store.approved_cost_overrides)

    @classmethod
    async def create(
        cls,
        config: BillingConfig | None = None,
        catalog: CatalogStore | None = None,
        store: LedgerStore | None = None,
    ) -> BillingEngine:
        """Build an engine, connecting the store and loading the catalog.

        ``config.database == ":memory:"`` selects :class:`InMemoryLedgerStore`;
        any other value is a SQLite path. Costs approved through
        :attr:`price_changes` are read back from the store and laid over the
        catalog, both now and on every later refresh.
        """
        config = config or BillingConfig()
        if config.setup_logging:
            configure_logging(config.log_level, config.log_json)
        seller = config.seller_country_code

        if store is None:
            store = (
                InMemoryLedgerStore()
                if config.uses_memory_store
                else SQLiteLedgerStore(config.database)
            )
        await store.connect()

        load_from_file = catalog is None and config.catalog_path is not None
        if catalog is None:
            path = config.catalog_path
            if path is not None:

                async def _load() -> CatalogSnapshot:
                    return _with_seller(await load_catalog_file(path), seller)

                catalog = CatalogStore(loader=_load, refresh_interval=config.refresh_interval_seconds)
            else:
                catalog = CatalogStore(
                    CatalogSnapshot(settings=BillingSettings(seller_country_code=seller)),
                    refresh_interval=config.refresh_interval_seconds,
                )

        engine = cls(config, catalog, store)
        if load_from_file:
            await catalog.refresh()
        else:
            await catalog.apply_cost_overrides()

        logger.info(
            "billing_engine_created",
            catalog_version=catalog.version,
            store=type(store).__name__,
        )
        return engine

    async def __aenter__(self) -> BillingEngine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.store.close()
        logger.info("billing_engine_closed")

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def route(
        self,
        service_type: str,
        country_code: str | None = None,
        exclude_ids: Iterable[str] = (),
    ) -> RoutingDecision:
        await self.catalog.refresh_if_stale()
        return self.router.select(service_type, country_code, exclude_ids)

    async def charge(
        self,
        service_type: str,
        context: PricingContext,
        exclude_ids: Iterable[str] = (),
    ) -> ChargeResult:
        """Route, price and record one invocation of *service_type*.

        The catalog is refreshed first when stale; routing and pricing then
        read the same snapshot.

        Raises:
            NoProvidersAvailableError: If routing finds no candidate.
            NoApplicableRuleError: If the selected provider has no cost.
        """
        if context.service_type != service_type:
            context = context.model_copy(update={"service_type": service_type})
        with billing_context(organization_id=context.organization_id, service_type=service_type):
            await self.catalog.refresh_if_stale()
            snapshot = self.catalog.snapshot()
            decision = self.router.select(service_type, context.country_code, exclude_ids)
            resolution = resolve_markup(snapshot, context, decision.provider.name)
            transaction = await self.writer.record_resolution(resolution, context)
        return ChargeResult(decision=decision, resolution=resolution, transaction=transaction)

    async def quote_plan(
        self,
        plan_id: str,
        context: PricingContext,
        component: str | None = None,
    ) -> PlanPriceResolution:
        """Price *component* (or the flat fee) of a plan looked up by id or tier.

        Raises:
            RecordNotFoundError: If no plan has that id or tier.
            NoApplicableRuleError: If the plan lacks the base price.
        """
        await self.catalog.refresh_if_stale()
        snapshot = self.catalog.snapshot()
        plan = snapshot.plan(plan_id)
        if plan is None:
            raise RecordNotFoundError(
                f"Billing plan '{plan_id}' not found",
                code="PLAN_NOT_FOUND",
                details={"plan_id": plan_id},
            )
        return resolve_plan_price(snapshot, plan, context, component)
