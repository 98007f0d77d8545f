"""Tests for ledger/writer.py -- cost ledger, profit summary and export."""
from __future__ import annotations

import csv
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from billing_core.ledger.models import CostTransaction, ProfitBreakdown
from billing_core.ledger.writer import LedgerWriter, summarize
from billing_core.pricing.models import MarkupResolution, PricingContext
from billing_core.storage.memory import InMemoryLedgerStore

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _tx(
    service: str,
    provider: str,
    cost: str,
    markup: str,
    at: datetime = T0,
) -> CostTransaction:
    return CostTransaction(
        service_type=service,
        provider_name=provider,
        provider_cost=Decimal(cost),
        markup_applied=Decimal(markup),
        total_charged=Decimal(cost) + Decimal(markup),
        created_date=at,
    )


# ---------------------------------------------------------------------------
# CostTransaction
# ---------------------------------------------------------------------------


def test_total_must_equal_cost_plus_markup() -> None:
    with pytest.raises(ValidationError, match="total_charged"):
        CostTransaction(
            service_type="kyb_verification",
            provider_name="Acme KYB",
            provider_cost=Decimal("10"),
            markup_applied=Decimal("2"),
            total_charged=Decimal("13"),
        )


def test_cost_transaction_is_immutable() -> None:
    tx = _tx("kyb_verification", "Acme KYB", "10", "2")
    with pytest.raises(ValidationError):
        tx.total_charged = Decimal("0")  # type: ignore[misc]
    assert tx.profit == Decimal("2")


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


def test_summary_profit_is_revenue_minus_cost() -> None:
    rows = [
        _tx("kyb_verification", "Acme KYB", "10", "2"),
        _tx("kyb_verification", "Beta KYB", "8", "1.6"),
        _tx("aml_screening", "Acme KYB", "1", "0.5"),
    ]
    summary = summarize(rows)
    assert summary.revenue == Decimal("23.1")
    assert summary.cost == Decimal("19")
    assert summary.profit == Decimal("4.1")
    assert summary.transaction_count == 3
    assert summary.by_service["kyb_verification"].profit == Decimal("3.6")
    assert summary.by_provider["Acme KYB"].transaction_count == 2
    assert summary.by_provider["Acme KYB"].revenue == Decimal("13.5")


def test_empty_summary_has_zero_margin() -> None:
    summary = summarize([])
    assert summary.transaction_count == 0
    assert summary.margin_percentage == Decimal("0")


def test_margin_percentage() -> None:
    breakdown = ProfitBreakdown(revenue=Decimal("12"), cost=Decimal("10"), profit=Decimal("2"))
    assert breakdown.margin_percentage == Decimal("16.67")
    assert breakdown.model_dump()["margin_percentage"] == Decimal("16.67")


# ---------------------------------------------------------------------------
# LedgerWriter
# ---------------------------------------------------------------------------


async def test_record_transaction_appends_row(store: InMemoryLedgerStore) -> None:
    writer = LedgerWriter(store)
    tx = await writer.record_transaction(
        "kyb_verification",
        "Acme KYB",
        Decimal("10"),
        Decimal("2"),
        organization_id="org-1",
        markup_rule_id="rule-global",
    )
    assert tx.total_charged == Decimal("12")
    rows = await writer.transactions()
    assert [r.id for r in rows] == [tx.id]
    assert rows[0].organization_id == "org-1"


async def test_record_resolution_copies_pricing(store: InMemoryLedgerStore) -> None:
    writer = LedgerWriter(store)
    resolution = MarkupResolution(
        service_type="aml_screening",
        provider_name="Screen Co",
        provider_cost=Decimal("0.35"),
        markup=Decimal("0.07"),
        total_charged=Decimal("0.42"),
        currency="EUR",
        cost_id="c-1",
        rule_id="r-1",
    )
    ctx = PricingContext(service_type="aml_screening", organization_id="org-9")
    tx = await writer.record_resolution(resolution, ctx)
    assert (tx.total_charged, tx.currency, tx.organization_id, tx.markup_rule_id) == (
        Decimal("0.42"),
        "EUR",
        "org-9",
        "r-1",
    )


async def test_profit_summary_filters_by_slice_and_range(store: InMemoryLedgerStore) -> None:
    for tx in (
        _tx("kyb_verification", "Acme KYB", "10", "2", T0),
        _tx("kyb_verification", "Beta KYB", "8", "2", T0 + timedelta(days=1)),
        _tx("aml_screening", "Acme KYB", "1", "1", T0 + timedelta(days=2)),
    ):
        await store.append_cost_transaction(tx)
    writer = LedgerWriter(store)

    kyb = await writer.profit_summary(service_type="kyb_verification")
    assert kyb.transaction_count == 2
    assert kyb.profit == Decimal("4")

    acme = await writer.profit_summary(provider_name="Acme KYB")
    assert acme.revenue == Decimal("14")

    window = await writer.profit_summary(since=T0 + timedelta(days=1), until=T0 + timedelta(days=2))
    assert window.transaction_count == 1
    assert window.by_provider.keys() == {"Beta KYB"}
    assert window.since == T0 + timedelta(days=1)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


async def test_export_csv(store: InMemoryLedgerStore, tmp_path: Path) -> None:
    await store.append_cost_transaction(_tx("kyb_verification", "Acme KYB", "10", "2"))
    await store.append_cost_transaction(_tx("aml_screening", "Acme KYB", "1", "0.25"))
    dest = tmp_path / "exports" / "ledger.csv"

    count = await LedgerWriter(store).export_csv(dest)

    assert count == 2
    with dest.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    assert [r["service_type"] for r in rows] == ["kyb_verification", "aml_screening"]
    assert Decimal(rows[1]["total_charged"]) == Decimal("1.25")


async def test_export_json_includes_summary(store: InMemoryLedgerStore, tmp_path: Path) -> None:
    await store.append_cost_transaction(_tx("kyb_verification", "Acme KYB", "10", "2", T0))
    await store.append_cost_transaction(
        _tx("kyb_verification", "Acme KYB", "10", "2", T0 - timedelta(days=10))
    )
    dest = tmp_path / "ledger.json"

    count = await LedgerWriter(store).export_json(dest, since=T0)

    assert count == 1
    data = json.loads(dest.read_text(encoding="utf-8"))
    assert len(data["transactions"]) == 1
    assert Decimal(data["summary"]["profit"]) == Decimal("2")
    assert Decimal(data["summary"]["margin_percentage"]) == Decimal("16.67")
