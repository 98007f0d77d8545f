"""Tests for core/ -- BillingEngine and BillingConfig."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from pathlib import Path

import pytest
import structlog

from billing_core import BillingConfig, BillingEngine
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.catalog.store import CatalogStore
from billing_core.core.exceptions import (
    NoApplicableRuleError,
    NoProvidersAvailableError,
    RecordNotFoundError,
)
from billing_core.pricing.models import PricingContext
from billing_core.storage.memory import InMemoryLedgerStore
from billing_core.storage.sqlite import SQLiteLedgerStore
from billing_core.utils.logging import configure_logging


def _ctx(**kwargs: object) -> PricingContext:
    fields: dict[str, object] = {"service_type": "kyb_verification", "organization_id": "org-1"}
    fields.update(kwargs)
    return PricingContext(**fields)


# ---------------------------------------------------------------------------
# charge / route
# ---------------------------------------------------------------------------


async def test_charge_routes_prices_and_records(engine: BillingEngine) -> None:
    result = await engine.charge("kyb_verification", _ctx())

    assert result.decision.provider.name == "Acme KYB"
    assert result.resolution.total_charged == Decimal("12")
    assert result.transaction.total_charged == Decimal("12")
    assert result.transaction.organization_id == "org-1"
    assert result.transaction.markup_rule_id == "rule-global"

    rows = await engine.writer.transactions()
    assert [r.id for r in rows] == [result.transaction.id]


async def test_charge_with_exclusion_uses_fallback(engine: BillingEngine) -> None:
    result = await engine.charge("kyb_verification", _ctx(), exclude_ids=["p-acme"])
    assert result.decision.provider.name == "Beta KYB"
    assert result.transaction.provider_cost == Decimal("8.00")
    assert result.transaction.total_charged == Decimal("9.6")


async def test_charge_overrides_context_service_type(engine: BillingEngine) -> None:
    result = await engine.charge("kyb_verification", _ctx(service_type="aml_screening"))
    assert result.transaction.service_type == "kyb_verification"


async def test_charge_without_providers_records_nothing(engine: BillingEngine) -> None:
    with pytest.raises(NoProvidersAvailableError):
        await engine.charge("aml_screening", _ctx(service_type="aml_screening"))
    assert await engine.writer.transactions() == []


async def test_charge_without_cost_records_nothing(engine: BillingEngine) -> None:
    snap = engine.catalog.snapshot()
    costs = tuple(c for c in snap.provider_costs if c.id != "cost-acme")
    await engine.catalog.publish(snap.model_copy(update={"provider_costs": costs}))

    with pytest.raises(NoApplicableRuleError):
        await engine.charge("kyb_verification", _ctx())
    assert await engine.writer.transactions() == []


async def test_route_returns_fallbacks(engine: BillingEngine) -> None:
    decision = await engine.route("kyb_verification", country_code="DE")
    assert decision.provider.id == "p-acme"
    assert [p.id for p in decision.fallbacks] == ["p-beta"]


async def test_profit_follows_charges(engine: BillingEngine) -> None:
    await engine.charge("kyb_verification", _ctx())
    await engine.charge("kyb_verification", _ctx(), exclude_ids=["p-acme"])
    summary = await engine.writer.profit_summary()
    assert summary.revenue == Decimal("21.6")
    assert summary.cost == Decimal("18")
    assert summary.profit == Decimal("3.6")


# ---------------------------------------------------------------------------
# quote_plan
# ---------------------------------------------------------------------------


async def test_quote_plan_by_id_and_tier(engine: BillingEngine) -> None:
    by_id = await engine.quote_plan("plan-pro", _ctx(country_code="IN"), "kyb_verification")
    by_tier = await engine.quote_plan("professional", _ctx(country_code="IN"), "kyb_verification")
    assert by_id.unit_price == by_tier.unit_price == Decimal("30")
    assert by_id.tax.tax_type == "GST"


async def test_quote_unknown_plan_raises(engine: BillingEngine) -> None:
    with pytest.raises(RecordNotFoundError) as exc_info:
        await engine.quote_plan("enterprise", _ctx())
    assert exc_info.value.code == "PLAN_NOT_FOUND"


# ---------------------------------------------------------------------------
# Shared locks
# ---------------------------------------------------------------------------


async def test_collaborators_share_one_lock_registry(engine: BillingEngine) -> None:
    assert engine.credits.locks is engine.locks


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


async def test_create_defaults_to_memory_store() -> None:
    engine = await BillingEngine.create()
    try:
        assert isinstance(engine.store, InMemoryLedgerStore)
        assert engine.catalog.snapshot().providers == ()
    finally:
        await engine.close()


async def test_create_from_catalog_file_and_sqlite(
    tmp_path: Path, snapshot: CatalogSnapshot
) -> None:
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(snapshot.model_dump_json(), encoding="utf-8")
    config = BillingConfig(
        database=str(tmp_path / "ledger.db"),
        catalog_path=catalog_path,
        seller_country_code="US",
    )

    async with await BillingEngine.create(config) as engine:
        assert isinstance(engine.store, SQLiteLedgerStore)
        assert engine.catalog.version == 1
        assert engine.catalog.snapshot().settings.seller_country_code == "US"

        await engine.charge("kyb_verification", _ctx())
        quote = await engine.quote_plan(
            "plan-pro", _ctx(country_code="DE", is_business=True), "kyb_verification"
        )
        assert quote.reverse_charge is True

    async with SQLiteLedgerStore(str(tmp_path / "ledger.db")) as reopened:
        assert len(await reopened.list_cost_transactions()) == 1


# ---------------------------------------------------------------------------
# BillingConfig
# ---------------------------------------------------------------------------


def test_config_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BILLING_CORE_DATABASE", str(tmp_path / "db.sqlite"))
    monkeypatch.setenv("BILLING_CORE_CATALOG_PATH", str(tmp_path / "catalog.json"))
    monkeypatch.setenv("BILLING_CORE_REFRESH_SECONDS", "60")
    monkeypatch.setenv("BILLING_CORE_SELLER_COUNTRY", "de")
    monkeypatch.setenv("BILLING_CORE_LOG_LEVEL", "debug")
    monkeypatch.setenv("BILLING_CORE_LOG_JSON", "false")
    monkeypatch.setenv("BILLING_CORE_MAX_RETRIES", "7")

    config = BillingConfig.from_env()

    assert config.database == str(tmp_path / "db.sqlite")
    assert config.catalog_path == tmp_path / "catalog.json"
    assert config.refresh_interval_seconds == 60.0
    assert config.seller_country_code == "DE"
    assert config.log_level == "DEBUG"
    assert config.log_json is False
    assert config.retry_policy.max_retries == 7
    assert config.uses_memory_store is False


def test_config_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BILLING_CORE_DATABASE",
        "BILLING_CORE_CATALOG_PATH",
        "BILLING_CORE_SELLER_COUNTRY",
        "BILLING_CORE_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BILLING_CORE_REFRESH_SECONDS", "")

    config = BillingConfig.from_env()

    assert config.uses_memory_store
    assert config.catalog_path is None
    assert config.refresh_interval_seconds == 300.0
    assert config.retry_policy.max_retries == 3


def test_config_can_skip_logging_setup() -> None:
    assert BillingConfig().setup_logging is True
    assert BillingConfig(setup_logging=False).setup_logging is False


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


async def test_create_applies_configured_log_level() -> None:
    engine = await BillingEngine.create(BillingConfig(log_level="WARNING", log_json=False))
    try:
        assert logging.getLogger().level == logging.WARNING
    finally:
        await engine.close()
        configure_logging("INFO", json=False)


async def test_create_leaves_logging_alone_when_disabled() -> None:
    configure_logging("ERROR", json=False)
    engine = await BillingEngine.create(BillingConfig(log_level="DEBUG", setup_logging=False))
    try:
        assert logging.getLogger().level == logging.ERROR
    finally:
        await engine.close()
        configure_logging("INFO", json=False)


async def test_charge_keeps_caller_log_context(engine: BillingEngine) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id="req-1")
    try:
        await engine.charge("kyb_verification", _ctx())
        assert structlog.contextvars.get_contextvars() == {"request_id": "req-1"}
    finally:
        structlog.contextvars.clear_contextvars()


# ---------------------------------------------------------------------------
# Approved costs across catalog reloads
# ---------------------------------------------------------------------------


def _file_config(tmp_path: Path, snapshot: CatalogSnapshot, **kwargs: object) -> BillingConfig:
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(snapshot.model_dump_json(), encoding="utf-8")
    fields: dict[str, object] = {
        "database": str(tmp_path / "ledger.db"),
        "catalog_path": catalog_path,
        "setup_logging": False,
    }
    fields.update(kwargs)
    return BillingConfig(**fields)


async def test_approved_cost_survives_refresh(tmp_path: Path, snapshot: CatalogSnapshot) -> None:
    config = _file_config(tmp_path, snapshot, refresh_interval_seconds=0.001)

    async with await BillingEngine.create(config) as engine:
        request = await engine.price_changes.submit("cost-acme", Decimal("15"))
        await engine.price_changes.approve(request.id, "admin")
        await asyncio.sleep(0.01)

        result = await engine.charge("kyb_verification", _ctx())

        assert engine.catalog.version > 2
        assert engine.catalog.snapshot().provider_cost("cost-acme").cost_per_unit == Decimal("15")
        assert result.transaction.provider_cost == Decimal("15")
        assert result.transaction.total_charged == Decimal("18")


async def test_approved_cost_survives_restart(tmp_path: Path, snapshot: CatalogSnapshot) -> None:
    config = _file_config(tmp_path, snapshot)

    async with await BillingEngine.create(config) as engine:
        request = await engine.price_changes.submit("cost-acme", Decimal("15"))
        await engine.price_changes.approve(request.id, "admin")

    async with await BillingEngine.create(config) as reopened:
        assert reopened.catalog.version == 1
        cost = reopened.catalog.snapshot().provider_cost("cost-acme")
        assert cost.cost_per_unit == Decimal("15")
        assert reopened.catalog.snapshot().provider_cost("cost-beta").cost_per_unit == Decimal("8.00")


async def test_latest_approval_wins_after_reload(tmp_path: Path, snapshot: CatalogSnapshot) -> None:
    config = _file_config(tmp_path, snapshot)

    async with await BillingEngine.create(config) as engine:
        for new_cost in ("15", "12"):
            request = await engine.price_changes.submit("cost-acme", Decimal(new_cost))
            await engine.price_changes.approve(request.id, "admin")
        await engine.catalog.refresh()

        assert engine.catalog.snapshot().provider_cost("cost-acme").cost_per_unit == Decimal("12")


async def test_rejected_change_is_not_reapplied(tmp_path: Path, snapshot: CatalogSnapshot) -> None:
    config = _file_config(tmp_path, snapshot)

    async with await BillingEngine.create(config) as engine:
        request = await engine.price_changes.submit("cost-acme", Decimal("15"))
        await engine.price_changes.reject(request.id, "admin")
        await engine.catalog.refresh()

        assert engine.catalog.snapshot().provider_cost("cost-acme").cost_per_unit == Decimal("10.00")


async def test_given_catalog_gets_stored_approvals(
    snapshot: CatalogSnapshot, store: InMemoryLedgerStore
) -> None:
    config = BillingConfig(setup_logging=False)
    async with await BillingEngine.create(config, catalog=CatalogStore(snapshot), store=store) as first:
        request = await first.price_changes.submit("cost-acme", Decimal("15"))
        await first.price_changes.approve(request.id, "admin")

    async with await BillingEngine.create(config, catalog=CatalogStore(snapshot), store=store) as second:
        assert second.catalog.version == 1
        assert second.catalog.snapshot().provider_cost("cost-acme").cost_per_unit == Decimal("15")
