"""PriceChangeWorkflow -- review of detected provider price deltas.

Lifecycle::

    pending_review --approve--> approved   (updates the catalog cost)
                   --reject---> rejected   (catalog untouched)

Both terminal states are final; any further transition raises
:class:`~billing_core.core.exceptions.InvalidTransitionError`.

Approval spans two stores, the catalog and the ledger store. The catalog
cost is updated first and, if committing the approved request fails, is
put back by a compensating :meth:`CatalogStore.restore_provider_cost`
before the error propagates. The committed approval is the durable record
of the new cost: :meth:`LedgerStore.approved_cost_overrides` reads it back
and :class:`CatalogStore` lays it over every reloaded snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import structlog

from billing_core.catalog.store import CatalogStore
from billing_core.core.constants import PriceChangeStatus
from billing_core.core.exceptions import InvalidTransitionError, RecordNotFoundError
from billing_core.resilience.retry import RetryPolicy
from billing_core.storage.base import LedgerStore, WriteBatch
from billing_core.utils.locks import KeyedLock
from billing_core.workflows.models import PriceChangeRequest

logger = structlog.get_logger(__name__)

DEFAULT_REJECTION_REASON = "Rejected by administrator"


def _cost_lock_key(cost_id: str) -> str:
    return f"cost:{cost_id}"


class PriceChangeWorkflow:
    """Submit, approve and reject :class:`PriceChangeRequest` records.

    Args:
        catalog: Catalog whose provider costs approvals update.
        store: Ledger store holding the requests.
        retry_policy: Policy for re-running after a version conflict.
        locks: Shared :class:`KeyedLock`; writes for one provider cost are
            serialized on it.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        store: LedgerStore,
        retry_policy: RetryPolicy | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self._locks = locks or KeyedLock()

    async def get(self, request_id: str) -> PriceChangeRequest:
        request = await self._store.get_price_change(request_id)
        if request is None:
            raise RecordNotFoundError(
                f"Price change request '{request_id}' not found",
                code="PRICE_CHANGE_NOT_FOUND",
                details={"request_id": request_id},
            )
        return request

    async def list_pending(self) -> list[PriceChangeRequest]:
        return await self._store.list_price_changes(PriceChangeStatus.PENDING_REVIEW)

    # ------------------------------------------------------------------ #
    # submit
    # ------------------------------------------------------------------ #

    async def submit(
        self,
        provider_service_cost_id: str,
        new_cost: Decimal,
        detected_at: datetime | None = None,
        effective_date: datetime | None = None,
    ) -> PriceChangeRequest:
        """Record a detected price delta for review.

        Entry point for external price monitoring. If a request for the same
        cost is already pending it is returned unchanged.

        Raises:
            RecordNotFoundError: If the catalog has no such provider cost.
        """
        cost = self._catalog.snapshot().provider_cost(provider_service_cost_id)
        if cost is None:
            raise RecordNotFoundError(
                f"Provider cost '{provider_service_cost_id}' not found",
                code="COST_NOT_FOUND",
                details={"provider_service_cost_id": provider_service_cost_id},
            )

        async with self._locks.hold(_cost_lock_key(provider_service_cost_id)):
            existing = await self._store.find_pending_price_change(provider_service_cost_id)
            if existing is not None:
                logger.info(
                    "price_change_already_pending",
                    request_id=existing.id,
                    cost_id=provider_service_cost_id,
                )
                return existing

            request = PriceChangeRequest(
                provider_service_cost_id=provider_service_cost_id,
                service_type=cost.service_type,
                provider_name=cost.provider_name,
                current_cost=cost.cost_per_unit,
                new_cost=new_cost,
                effective_date=effective_date,
                detected_at=detected_at or datetime.now(timezone.utc),
            )
            batch = WriteBatch()
            request = batch.put_price_change(request)
            await self._store.commit(batch)

        logger.info(
            "price_change_submitted",
            request_id=request.id,
            cost_id=provider_service_cost_id,
            current_cost=str(request.current_cost),
            new_cost=str(request.new_cost),
            change_percent=str(request.change_percent),
        )
        return request

    # ------------------------------------------------------------------ #
    # approve / reject
    # ------------------------------------------------------------------ #

    async def _pending(self, request_id: str, action: str) -> PriceChangeRequest:
        request = await self.get(request_id)
        if request.is_terminal:
            logger.warning(
                "price_change_invalid_transition",
                request_id=request_id,
                status=str(request.status),
                action=action,
            )
            raise InvalidTransitionError(
                f"Price change request '{request_id}' is already {request.status}",
                code="ALREADY_REVIEWED",
                details={"request_id": request_id, "status": str(request.status), "action": action},
            )
        return request

    async def _approve_once(self, request_id: str, reviewer: str) -> PriceChangeRequest:
        request = await self._pending(request_id, "approve")
        now = datetime.now(timezone.utc)

        live = self._catalog.snapshot().provider_cost(request.provider_service_cost_id)
        if live is not None and live.cost_per_unit != request.current_cost:
            logger.warning(
                "price_change_stale_baseline",
                request_id=request_id,
                expected=str(request.current_cost),
                actual=str(live.cost_per_unit),
            )

        previous = await self._catalog.update_provider_cost(
            request.provider_service_cost_id,
            cost_per_unit=request.new_cost,
            effective_from=request.effective_date or now,
        )
        batch = WriteBatch()
        approved = batch.put_price_change(
            request.model_copy(
                update={
                    "status": PriceChangeStatus.APPROVED,
                    "reviewed_by": reviewer,
                    "reviewed_at": now,
                }
            )
        )
        try:
            await self._store.commit(batch)
        except Exception:
            await self._catalog.restore_provider_cost(previous)
            raise
        return approved

    async def approve(self, request_id: str, reviewer: str) -> PriceChangeRequest:
        """Approve a pending request and apply its new cost to the catalog.

        Raises:
            RecordNotFoundError: If the request or its cost record is missing.
            InvalidTransitionError: If the request is already approved or
                rejected.
        """
        request = await self.get(request_id)
        async with self._locks.hold(_cost_lock_key(request.provider_service_cost_id)):
            approved = await self._retry.execute(self._approve_once, request_id, reviewer)
        logger.info(
            "price_change_approved",
            request_id=request_id,
            cost_id=approved.provider_service_cost_id,
            new_cost=str(approved.new_cost),
            reviewer=reviewer,
        )
        return approved

    async def _reject_once(self, request_id: str, reviewer: str, reason: str) -> PriceChangeRequest:
        request = await self._pending(request_id, "reject")
        batch = WriteBatch()
        rejected = batch.put_price_change(
            request.model_copy(
                update={
                    "status": PriceChangeStatus.REJECTED,
                    "reviewed_by": reviewer,
                    "reviewed_at": datetime.now(timezone.utc),
                    "rejection_reason": reason,
                }
            )
        )
        await self._store.commit(batch)
        return rejected

    async def reject(
        self,
        request_id: str,
        reviewer: str,
        reason: str = DEFAULT_REJECTION_REASON,
    ) -> PriceChangeRequest:
        """Reject a pending request. The catalog is never touched.

        Raises:
            RecordNotFoundError: If the request is missing.
            InvalidTransitionError: If the request is already terminal.
        """
        request = await self.get(request_id)
        async with self._locks.hold(_cost_lock_key(request.provider_service_cost_id)):
            rejected = await self._retry.execute(self._reject_once, request_id, reviewer, reason)
        logger.info("price_change_rejected", request_id=request_id, reviewer=reviewer, reason=reason)
        return rejected
