"""Ledger storage abstraction.

Provides :class:`LedgerStore` (abstract base) and :class:`WriteBatch`, the
unit of atomic commit. Versioned records (credit balances, price-change
requests, referrals) are staged with their version bumped by one; on
commit the store checks every staged record against what it holds and
raises :class:`~billing_core.core.exceptions.ConcurrentModificationError`
without writing anything if any check fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel, Field

from billing_core.catalog.models import CostOverride
from billing_core.core.constants import PriceChangeStatus
from billing_core.core.exceptions import ConcurrentModificationError
from billing_core.ledger.models import CostTransaction, CreditBalance, CreditTransaction
from billing_core.workflows.models import PriceChangeRequest, Referral

_V = TypeVar("_V", CreditBalance, PriceChangeRequest, Referral)


class WriteBatch(BaseModel):
    """Records to be committed together, or not at all."""

    balances: list[CreditBalance] = Field(default_factory=list)
    credit_transactions: list[CreditTransaction] = Field(default_factory=list)
    cost_transactions: list[CostTransaction] = Field(default_factory=list)
    price_changes: list[PriceChangeRequest] = Field(default_factory=list)
    referrals: list[Referral] = Field(default_factory=list)

    @staticmethod
    def _bump(record: _V) -> _V:
        return record.model_copy(update={"version": record.version + 1})

    def put_balance(self, balance: CreditBalance) -> CreditBalance:
        """Stage *balance* as read at ``balance.version``; returns the staged copy.

        Re-staging an organization already in the batch replaces the earlier
        copy and keeps its version, so one commit bumps each balance once.
        """
        previous = self.staged_balance(balance.organization_id)
        if previous is None:
            staged = self._bump(balance)
        else:
            staged = balance.model_copy(update={"version": previous.version})
            self.balances.remove(previous)
        self.balances.append(staged)
        return staged

    def put_price_change(self, request: PriceChangeRequest) -> PriceChangeRequest:
        staged = self._bump(request)
        self.price_changes.append(staged)
        return staged

    def put_referral(self, referral: Referral) -> Referral:
        staged = self._bump(referral)
        self.referrals.append(staged)
        return staged

    def add_credit_transaction(self, transaction: CreditTransaction) -> None:
        self.credit_transactions.append(transaction)

    def add_cost_transaction(self, transaction: CostTransaction) -> None:
        self.cost_transactions.append(transaction)

    def staged_balance(self, organization_id: str) -> CreditBalance | None:
        for balance in self.balances:
            if balance.organization_id == organization_id:
                return balance
        return None

    def __len__(self) -> int:
        return (
            len(self.balances)
            + len(self.credit_transactions)
            + len(self.cost_transactions)
            + len(self.price_changes)
            + len(self.referrals)
        )


def version_conflict(kind: str, key: str, stored: int, staged: int) -> ConcurrentModificationError:
    return ConcurrentModificationError(
        f"{kind} {key!r} changed concurrently (stored version {stored}, "
        f"expected {staged - 1})",
        code="VERSION_CONFLICT",
        details={"kind": kind, "key": key, "stored": stored, "expected": staged - 1},
    )


class LedgerStore(ABC):
    """Abstract base for durable ledger and workflow state.

    Reads return ``None`` (never raise) for absent records. Writes go
    through :meth:`commit` so that multi-record units are atomic.
    """

    async def connect(self) -> None:  # noqa: B027
        """Open underlying resources. The default is a no-op."""

    async def close(self) -> None:  # noqa: B027
        """Release underlying resources. The default is a no-op."""

    async def __aenter__(self) -> LedgerStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """Apply *batch* atomically.

        Raises:
            ConcurrentModificationError: If a staged record's version is
                not exactly one above the stored version (absent = 0).
        """

    async def append_cost_transaction(self, transaction: CostTransaction) -> None:
        batch = WriteBatch()
        batch.add_cost_transaction(transaction)
        await self.commit(batch)

    # -- cost ledger ----------------------------------------------------------

    @abstractmethod
    async def list_cost_transactions(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        service_type: str | None = None,
        provider_name: str | None = None,
    ) -> list[CostTransaction]:
        """Cost transactions in creation order. ``since`` inclusive, ``until`` exclusive."""

    # -- credits --------------------------------------------------------------

    @abstractmethod
    async def get_balance(self, organization_id: str) -> CreditBalance | None: ...

    @abstractmethod
    async def list_credit_transactions(self, organization_id: str) -> list[CreditTransaction]:
        """Credit transactions for one organization in the order they were written."""

    # -- workflows ------------------------------------------------------------

    @abstractmethod
    async def get_price_change(self, request_id: str) -> PriceChangeRequest | None: ...

    @abstractmethod
    async def list_price_changes(
        self, status: PriceChangeStatus | None = None
    ) -> list[PriceChangeRequest]: ...

    async def find_pending_price_change(self, cost_id: str) -> PriceChangeRequest | None:
        for request in await self.list_price_changes(PriceChangeStatus.PENDING_REVIEW):
            if request.provider_service_cost_id == cost_id:
                return request
        return None

    async def approved_cost_overrides(self) -> list[CostOverride]:
        """One override per provider cost, from its most recently reviewed approval."""
        approved = await self.list_price_changes(PriceChangeStatus.APPROVED)
        latest: dict[str, CostOverride] = {}
        for request in sorted(approved, key=lambda r: r.reviewed_at or r.detected_at):
            override = request.cost_override()
            if override is not None:
                latest[override.cost_id] = override
        return list(latest.values())

    @abstractmethod
    async def get_referral(self, referral_id: str) -> Referral | None: ...

    @abstractmethod
    async def get_referral_by_code(self, code: str) -> Referral | None: ...
