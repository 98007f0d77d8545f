"""Tests for workflows/price_change.py -- PriceChangeWorkflow."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from billing_core.catalog.store import CatalogStore
from billing_core.core.constants import PriceChangeStatus
from billing_core.core.exceptions import (
    InvalidTransitionError,
    RecordNotFoundError,
    StorageError,
)
from billing_core.resilience.retry import RetryPolicy
from billing_core.storage.base import WriteBatch
from billing_core.storage.memory import InMemoryLedgerStore
from billing_core.workflows.price_change import DEFAULT_REJECTION_REASON, PriceChangeWorkflow


class _ApprovalFailingStore(InMemoryLedgerStore):
    """Accepts everything except the commit that marks a request approved."""

    async def commit(self, batch: WriteBatch) -> None:
        if any(r.status == PriceChangeStatus.APPROVED for r in batch.price_changes):
            raise StorageError("disk full", code="IO")
        await super().commit(batch)


@pytest.fixture
def workflow(
    catalog: CatalogStore, store: InMemoryLedgerStore, fast_retry: RetryPolicy
) -> PriceChangeWorkflow:
    return PriceChangeWorkflow(catalog, store, retry_policy=fast_retry)


def _cost(catalog: CatalogStore, cost_id: str = "cost-acme") -> Decimal:
    record = catalog.snapshot().provider_cost(cost_id)
    assert record is not None
    return record.cost_per_unit


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


async def test_submit_captures_current_cost(workflow: PriceChangeWorkflow) -> None:
    request = await workflow.submit("cost-acme", Decimal("12"))
    assert request.status == PriceChangeStatus.PENDING_REVIEW
    assert request.current_cost == Decimal("10.00")
    assert request.provider_name == "Acme KYB"
    assert request.change_percent == Decimal("20.00")
    assert [r.id for r in await workflow.list_pending()] == [request.id]


async def test_submit_deduplicates_pending_request(workflow: PriceChangeWorkflow) -> None:
    first = await workflow.submit("cost-acme", Decimal("12"))
    again = await workflow.submit("cost-acme", Decimal("13"))
    assert again.id == first.id
    assert again.new_cost == Decimal("12")
    assert len(await workflow.list_pending()) == 1


async def test_submit_unknown_cost_raises(workflow: PriceChangeWorkflow) -> None:
    with pytest.raises(RecordNotFoundError) as exc_info:
        await workflow.submit("cost-missing", Decimal("1"))
    assert exc_info.value.code == "COST_NOT_FOUND"


async def test_get_unknown_request_raises(workflow: PriceChangeWorkflow) -> None:
    with pytest.raises(RecordNotFoundError):
        await workflow.get("nope")


# ---------------------------------------------------------------------------
# approve
# ---------------------------------------------------------------------------


async def test_approve_updates_catalog_cost(
    workflow: PriceChangeWorkflow, catalog: CatalogStore
) -> None:
    effective = datetime(2025, 2, 1, tzinfo=timezone.utc)
    request = await workflow.submit("cost-acme", Decimal("12"), effective_date=effective)

    approved = await workflow.approve(request.id, "admin@example.com")

    assert approved.status == PriceChangeStatus.APPROVED
    assert approved.reviewed_by == "admin@example.com"
    assert approved.reviewed_at is not None
    assert _cost(catalog) == Decimal("12")
    assert catalog.snapshot().provider_cost("cost-acme").effective_from == effective
    assert (await workflow.get(request.id)).status == PriceChangeStatus.APPROVED
    assert await workflow.list_pending() == []


async def test_second_review_is_invalid(workflow: PriceChangeWorkflow, catalog: CatalogStore) -> None:
    request = await workflow.submit("cost-acme", Decimal("12"))
    await workflow.approve(request.id, "admin")
    version = catalog.version

    with pytest.raises(InvalidTransitionError) as exc_info:
        await workflow.approve(request.id, "admin")
    assert exc_info.value.code == "ALREADY_REVIEWED"
    with pytest.raises(InvalidTransitionError):
        await workflow.reject(request.id, "admin")
    assert catalog.version == version


async def test_new_request_allowed_after_review(workflow: PriceChangeWorkflow) -> None:
    first = await workflow.submit("cost-acme", Decimal("12"))
    await workflow.reject(first.id, "admin")
    second = await workflow.submit("cost-acme", Decimal("11"))
    assert second.id != first.id


async def test_failed_commit_restores_catalog(
    catalog: CatalogStore, fast_retry: RetryPolicy
) -> None:
    failing = _ApprovalFailingStore()
    workflow = PriceChangeWorkflow(catalog, failing, retry_policy=fast_retry)
    request = await workflow.submit("cost-acme", Decimal("12"))
    before = catalog.snapshot().provider_cost("cost-acme")

    with pytest.raises(StorageError):
        await workflow.approve(request.id, "admin")

    assert catalog.snapshot().provider_cost("cost-acme") == before
    assert (await workflow.get(request.id)).status == PriceChangeStatus.PENDING_REVIEW


async def test_stale_baseline_still_approves(
    workflow: PriceChangeWorkflow, catalog: CatalogStore
) -> None:
    request = await workflow.submit("cost-acme", Decimal("12"))
    await catalog.update_provider_cost(
        "cost-acme",
        cost_per_unit=Decimal("11"),
        effective_from=datetime(2025, 1, 15, tzinfo=timezone.utc),
    )
    approved = await workflow.approve(request.id, "admin")
    assert approved.status == PriceChangeStatus.APPROVED
    assert _cost(catalog) == Decimal("12")


# ---------------------------------------------------------------------------
# reject
# ---------------------------------------------------------------------------


async def test_reject_leaves_catalog_untouched(
    workflow: PriceChangeWorkflow, catalog: CatalogStore
) -> None:
    request = await workflow.submit("cost-acme", Decimal("12"))
    version = catalog.version

    rejected = await workflow.reject(request.id, "admin")

    assert rejected.status == PriceChangeStatus.REJECTED
    assert rejected.rejection_reason == DEFAULT_REJECTION_REASON
    assert catalog.version == version
    assert _cost(catalog) == Decimal("10.00")


async def test_reject_with_reason(workflow: PriceChangeWorkflow) -> None:
    request = await workflow.submit("cost-beta", Decimal("9"))
    rejected = await workflow.reject(request.id, "admin", reason="Provider typo")
    assert rejected.rejection_reason == "Provider typo"
