"""Append-only cost ledger, profit reporting, and period export."""

from __future__ import annotations

import asyncio
import csv
import io
import json
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import structlog

from billing_core.ledger.models import CostTransaction, ProfitBreakdown, ProfitSummary
from billing_core.pricing.models import MarkupResolution, PricingContext
from billing_core.storage.base import LedgerStore

logger = structlog.get_logger(__name__)

_CSV_FIELDS = (
    "id",
    "created_date",
    "service_type",
    "provider_name",
    "organization_id",
    "provider_cost",
    "markup_applied",
    "total_charged",
    "currency",
    "markup_rule_id",
)


def _accumulate(breakdown: ProfitBreakdown, transaction: CostTransaction) -> ProfitBreakdown:
    revenue = breakdown.revenue + transaction.total_charged
    cost = breakdown.cost + transaction.provider_cost
    return ProfitBreakdown(
        revenue=revenue,
        cost=cost,
        profit=revenue - cost,
        transaction_count=breakdown.transaction_count + 1,
    )


def summarize(
    transactions: Iterable[CostTransaction],
    since: datetime | None = None,
    until: datetime | None = None,
) -> ProfitSummary:
    """Fold *transactions* into revenue, cost and profit totals.

    Profit is always ``sum(total_charged) - sum(provider_cost)`` over the
    rows given; nothing precomputed is trusted.
    """
    total = ProfitBreakdown()
    by_service: dict[str, ProfitBreakdown] = {}
    by_provider: dict[str, ProfitBreakdown] = {}
    for tx in transactions:
        total = _accumulate(total, tx)
        by_service[tx.service_type] = _accumulate(
            by_service.get(tx.service_type, ProfitBreakdown()), tx
        )
        by_provider[tx.provider_name] = _accumulate(
            by_provider.get(tx.provider_name, ProfitBreakdown()), tx
        )
    return ProfitSummary(
        revenue=total.revenue,
        cost=total.cost,
        profit=total.profit,
        transaction_count=total.transaction_count,
        since=since,
        until=until,
        by_service=by_service,
        by_provider=by_provider,
    )


class LedgerWriter:
    """Writes :class:`CostTransaction` rows and reports on them.

    Args:
        store: The :class:`LedgerStore` that holds the cost ledger.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    async def record_transaction(
        self,
        service_type: str,
        provider_name: str,
        provider_cost: Decimal,
        markup: Decimal,
        *,
        currency: str = "USD",
        organization_id: str | None = None,
        markup_rule_id: str | None = None,
    ) -> CostTransaction:
        """Append one immutable row with ``total_charged = provider_cost + markup``."""
        transaction = CostTransaction(
            service_type=service_type,
            provider_name=provider_name,
            provider_cost=provider_cost,
            markup_applied=markup,
            total_charged=provider_cost + markup,
            currency=currency,
            organization_id=organization_id,
            markup_rule_id=markup_rule_id,
        )
        await self._store.append_cost_transaction(transaction)
        logger.info(
            "cost_transaction_recorded",
            transaction_id=transaction.id,
            service_type=service_type,
            provider_name=provider_name,
            total_charged=str(transaction.total_charged),
        )
        return transaction

    async def record_resolution(
        self, resolution: MarkupResolution, context: PricingContext
    ) -> CostTransaction:
        return await self.record_transaction(
            resolution.service_type,
            resolution.provider_name,
            resolution.provider_cost,
            resolution.markup,
            currency=resolution.currency,
            organization_id=context.organization_id,
            markup_rule_id=resolution.rule_id,
        )

    async def transactions(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        service_type: str | None = None,
        provider_name: str | None = None,
    ) -> list[CostTransaction]:
        return await self._store.list_cost_transactions(
            since=since, until=until, service_type=service_type, provider_name=provider_name
        )

    async def profit_summary(
        self,
        service_type: str | None = None,
        provider_name: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> ProfitSummary:
        """Profit for a slice of the ledger (``since`` inclusive, ``until`` exclusive)."""
        rows = await self.transactions(
            since=since, until=until, service_type=service_type, provider_name=provider_name
        )
        return summarize(rows, since=since, until=until)

    # -- export ---------------------------------------------------------------

    async def export_csv(
        self,
        path: str | Path,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        """Write the period's transactions to *path* as CSV; returns the row count."""
        rows = await self.transactions(since=since, until=until)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=_CSV_FIELDS)
        writer.writeheader()
        for tx in rows:
            record = tx.model_dump(mode="json")
            writer.writerow({field: record.get(field) for field in _CSV_FIELDS})
        await self._write(Path(path), buffer.getvalue())
        logger.info("cost_ledger_exported", path=str(path), format="csv", rows=len(rows))
        return len(rows)

    async def export_json(
        self,
        path: str | Path,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        """Write the period's transactions and profit summary to *path* as JSON."""
        rows = await self.transactions(since=since, until=until)
        summary = summarize(rows, since=since, until=until)
        data = {
            "summary": summary.model_dump(mode="json"),
            "transactions": [tx.model_dump(mode="json") for tx in rows],
        }
        payload = json.dumps(data, indent=2, default=str, sort_keys=True)
        await self._write(Path(path), payload)
        logger.info("cost_ledger_exported", path=str(path), format="json", rows=len(rows))
        return len(rows)

    @staticmethod
    async def _write(dest: Path, payload: str) -> None:
        def _write() -> None:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(payload, encoding="utf-8", newline="")

        await asyncio.to_thread(_write)
