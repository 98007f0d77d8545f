"""Shared test fixtures."""
from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from billing_core.catalog.models import (
    BillingPlan,
    MarkupRule,
    Provider,
    ProviderCost,
    RegionalPrice,
)
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.catalog.store import CatalogStore
from billing_core.core.config import BillingConfig
from billing_core.core.engine import BillingEngine
from billing_core.resilience.retry import RetryPolicy
from billing_core.storage.memory import InMemoryLedgerStore
from billing_core.storage.sqlite import SQLiteLedgerStore

EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def snapshot() -> CatalogSnapshot:
    """Two KYB providers priced at $10 and $8 with a global 20% markup."""
    return CatalogSnapshot(
        providers=(
            Provider(
                id="p-acme",
                name="Acme KYB",
                service_type="kyb_verification",
                status="active",
                priority_weight=1,
            ),
            Provider(
                id="p-beta",
                name="Beta KYB",
                service_type="kyb_verification",
                status="degraded",
                priority_weight=5,
            ),
        ),
        provider_costs=(
            ProviderCost(
                id="cost-acme",
                service_type="kyb_verification",
                provider_name="Acme KYB",
                cost_per_unit=Decimal("10.00"),
                effective_from=EPOCH,
            ),
            ProviderCost(
                id="cost-beta",
                service_type="kyb_verification",
                provider_name="Beta KYB",
                cost_per_unit=Decimal("8.00"),
                effective_from=EPOCH,
            ),
        ),
        markup_rules=(
            MarkupRule(
                id="rule-global",
                rule_name="Global 20%",
                service_type="kyb_verification",
                markup_type="percentage",
                percentage_markup=Decimal("20"),
                priority=5,
                effective_from=EPOCH,
            ),
        ),
        billing_plans=(
            BillingPlan(
                id="plan-pro",
                name="Professional",
                tier="professional",
                base_price=Decimal("99"),
                component_pricing={"kyb_verification": Decimal("50")},
                regional_pricing=(
                    RegionalPrice(region_type="country", region_code="IN", multiplier=Decimal("0.6")),
                ),
            ),
        ),
    )


@pytest.fixture
def catalog(snapshot: CatalogSnapshot) -> CatalogStore:
    return CatalogStore(snapshot)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, backoff_base=0.0, jitter=False)


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryLedgerStore, None]:
    memory = InMemoryLedgerStore()
    await memory.connect()
    yield memory
    await memory.close()


@pytest.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteLedgerStore, None]:
    db = SQLiteLedgerStore(str(tmp_path / "ledger.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def engine(
    catalog: CatalogStore,
    store: InMemoryLedgerStore,
    fast_retry: RetryPolicy,
) -> AsyncGenerator[BillingEngine, None]:
    eng = await BillingEngine.create(
        BillingConfig(retry_policy=fast_retry), catalog=catalog, store=store
    )
    yield eng
    await eng.close()
