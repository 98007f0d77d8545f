from __future__ import annotations

import asyncio
from datetime import datetime

import structlog

from billing_core.core.constants import PriceChangeStatus
from billing_core.core.exceptions import StorageError
from billing_core.ledger.models import CostTransaction, CreditBalance, CreditTransaction
from billing_core.storage.base import LedgerStore, WriteBatch, version_conflict
from billing_core.workflows.models import PriceChangeRequest, Referral

logger = structlog.get_logger(__name__)


class InMemoryLedgerStore(LedgerStore):
    """Dict-backed store for tests and single-process deployments.

    Commits are validated in full before any record is written, under an
    :class:`asyncio.Lock`, so a failed check leaves the store untouched.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._cost_transactions: list[CostTransaction] = []
        self._credit_transactions: list[CreditTransaction] = []
        self._balances: dict[str, CreditBalance] = {}
        self._price_changes: dict[str, PriceChangeRequest] = {}
        self._referrals: dict[str, Referral] = {}

    def _check(self, batch: WriteBatch) -> None:
        for balance in batch.balances:
            stored = self._balances.get(balance.organization_id)
            current = stored.version if stored else 0
            if balance.version != current + 1:
                raise version_conflict(
                    "credit balance", balance.organization_id, current, balance.version
                )
        for request in batch.price_changes:
            stored_request = self._price_changes.get(request.id)
            current = stored_request.version if stored_request else 0
            if request.version != current + 1:
                raise version_conflict("price change", request.id, current, request.version)
        for referral in batch.referrals:
            stored_referral = self._referrals.get(referral.id)
            current = stored_referral.version if stored_referral else 0
            if referral.version != current + 1:
                raise version_conflict("referral", referral.id, current, referral.version)
            for other in self._referrals.values():
                if other.id != referral.id and other.referral_code == referral.referral_code:
                    raise StorageError(
                        f"Referral code {referral.referral_code!r} already exists",
                        code="DUPLICATE_REFERRAL_CODE",
                    )

    async def commit(self, batch: WriteBatch) -> None:
        async with self._lock:
            self._check(batch)
            for balance in batch.balances:
                self._balances[balance.organization_id] = balance
            for request in batch.price_changes:
                self._price_changes[request.id] = request
            for referral in batch.referrals:
                self._referrals[referral.id] = referral
            self._credit_transactions.extend(batch.credit_transactions)
            self._cost_transactions.extend(batch.cost_transactions)
        logger.debug("memory_store_committed", records=len(batch))

    async def list_cost_transactions(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        service_type: str | None = None,
        provider_name: str | None = None,
    ) -> list[CostTransaction]:
        return [
            t
            for t in self._cost_transactions
            if (since is None or t.created_date >= since)
            and (until is None or t.created_date < until)
            and (service_type is None or t.service_type == service_type)
            and (provider_name is None or t.provider_name == provider_name)
        ]

    async def get_balance(self, organization_id: str) -> CreditBalance | None:
        return self._balances.get(organization_id)

    async def list_credit_transactions(self, organization_id: str) -> list[CreditTransaction]:
        return [t for t in self._credit_transactions if t.organization_id == organization_id]

    async def get_price_change(self, request_id: str) -> PriceChangeRequest | None:
        return self._price_changes.get(request_id)

    async def list_price_changes(
        self, status: PriceChangeStatus | None = None
    ) -> list[PriceChangeRequest]:
        requests = [r for r in self._price_changes.values() if status is None or r.status == status]
        return sorted(requests, key=lambda r: r.detected_at)

    async def get_referral(self, referral_id: str) -> Referral | None:
        return self._referrals.get(referral_id)

    async def get_referral_by_code(self, code: str) -> Referral | None:
        for referral in self._referrals.values():
            if referral.referral_code == code:
                return referral
        return None
