"""Per-organization credit balances with an append-only transaction log.

Every mutation is a read-modify-write of one :class:`CreditBalance`
serialized twice over: in-process by a per-organization
:class:`~billing_core.utils.locks.KeyedLock`, and across processes by the
store's version check on commit. A lost race surfaces as
:class:`~billing_core.core.exceptions.ConcurrentModificationError` and
the whole operation is re-run under the configured
:class:`~billing_core.resilience.retry.RetryPolicy`.
"""

from __future__ import annotations

from decimal import Decimal

import structlog

from billing_core.core.constants import CreditType
from billing_core.core.exceptions import NegativeBalanceError
from billing_core.ledger.models import CreditBalance, CreditTransaction, ReconciliationReport
from billing_core.resilience.retry import RetryPolicy
from billing_core.storage.base import LedgerStore, WriteBatch
from billing_core.utils.locks import KeyedLock
from billing_core.utils.money import ZERO

logger = structlog.get_logger(__name__)

# Name used for prepaid credit in older callers.
_ALIASES = {"purchase": CreditType.PREPAID}

_CATEGORY_FIELD = {
    CreditType.PROMOTIONAL: "promotional_credits",
    CreditType.REFERRAL: "referral_credits",
    CreditType.PREPAID: "prepaid_credits",
}


def parse_credit_type(value: str | CreditType) -> CreditType:
    """Normalize *value*, accepting ``"purchase"`` for prepaid.

    Raises:
        ValueError: If *value* names no credit type.
    """
    if isinstance(value, CreditType):
        return value
    key = value.strip().lower()
    return _ALIASES.get(key) or CreditType(key)


def org_lock_key(organization_id: str) -> str:
    return f"org:{organization_id}"


def stage_credit(
    batch: WriteBatch,
    balance: CreditBalance,
    credit_type: CreditType,
    amount: Decimal,
    description: str = "",
    reference_id: str | None = None,
) -> tuple[CreditBalance, CreditTransaction]:
    """Apply one signed *amount* to *balance* and stage the result in *batch*.

    Category credits (promotional, referral, prepaid) move their category
    field by *amount*. ``usage`` is a debit: a negative amount moves into
    ``used_credits``. Totals are derived from the invariant, never
    incremented.

    Pure apart from mutating *batch*; nothing is written until the batch is
    committed.

    Raises:
        ValueError: If *amount* is zero.
        NegativeBalanceError: If a category, ``used_credits`` or
            ``available_credits`` would go below zero.
    """
    if amount == 0:
        raise ValueError("credit amount must be non-zero")

    if credit_type == CreditType.USAGE:
        field = "used_credits"
        new_value = balance.used_credits - amount
    else:
        field = _CATEGORY_FIELD[credit_type]
        new_value = getattr(balance, field) + amount

    details = {
        "organization_id": balance.organization_id,
        "credit_type": str(credit_type),
        "amount": str(amount),
    }
    if new_value < 0:
        raise NegativeBalanceError(
            f"{field} for {balance.organization_id!r} would become {new_value}",
            code="NEGATIVE_CATEGORY",
            details=details,
        )
    updated = balance.recomputed(**{field: new_value})
    if updated.available_credits < 0:
        raise NegativeBalanceError(
            f"available credits for {balance.organization_id!r} would become "
            f"{updated.available_credits}",
            code="NEGATIVE_BALANCE",
            details=details,
        )

    staged = batch.put_balance(updated)
    transaction = CreditTransaction(
        organization_id=balance.organization_id,
        transaction_type=credit_type,
        amount=amount,
        balance_after=staged.available_credits,
        description=description,
        reference_id=reference_id,
    )
    batch.add_credit_transaction(transaction)
    return staged, transaction


class CreditLedger:
    """Applies credits and debits to organization balances.

    Args:
        store: Ledger store holding balances and credit transactions.
        retry_policy: Policy for re-running an operation after a version
            conflict.
        locks: Shared :class:`KeyedLock`; pass the same instance to any
            workflow that credits balances so both serialize on it.

    Example::

        ledger = CreditLedger(store)
        balance, tx = await ledger.apply_credit("org-1", "promotional", Decimal("25"))
        assert tx.balance_after == balance.available_credits
    """

    def __init__(
        self,
        store: LedgerStore,
        retry_policy: RetryPolicy | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self.locks = locks or KeyedLock()

    async def load_balance(self, organization_id: str, batch: WriteBatch) -> CreditBalance:
        """The balance as staged in *batch*, else as stored, else all zeros."""
        staged = batch.staged_balance(organization_id)
        if staged is not None:
            return staged
        stored = await self._store.get_balance(organization_id)
        return stored or CreditBalance(organization_id=organization_id)

    async def _apply_once(
        self,
        organization_id: str,
        credit_type: CreditType,
        amount: Decimal,
        description: str,
        reference_id: str | None,
    ) -> tuple[CreditBalance, CreditTransaction]:
        batch = WriteBatch()
        balance = await self.load_balance(organization_id, batch)
        result = stage_credit(batch, balance, credit_type, amount, description, reference_id)
        await self._store.commit(batch)
        return result

    async def apply_credit(
        self,
        organization_id: str,
        credit_type: str | CreditType,
        amount: Decimal,
        description: str = "",
        reference_id: str | None = None,
    ) -> tuple[CreditBalance, CreditTransaction]:
        """Apply a signed credit to *organization_id* and log it.

        A missing balance starts at zero. Returns the balance after the
        change and the transaction whose ``balance_after`` equals its
        ``available_credits``.

        Raises:
            ValueError: If *amount* is zero or *credit_type* is unknown.
            NegativeBalanceError: If the change would overdraw the balance.
            ConcurrentModificationError: If retries are exhausted.
        """
        kind = parse_credit_type(credit_type)
        amount = Decimal(amount)
        async with self.locks.hold(org_lock_key(organization_id)):
            balance, transaction = await self._retry.execute(
                self._apply_once, organization_id, kind, amount, description, reference_id
            )
        logger.info(
            "credit_applied",
            organization_id=organization_id,
            credit_type=str(kind),
            amount=str(amount),
            available=str(balance.available_credits),
        )
        return balance, transaction

    async def get_balance(self, organization_id: str) -> CreditBalance:
        stored = await self._store.get_balance(organization_id)
        return stored or CreditBalance(organization_id=organization_id)

    async def list_transactions(self, organization_id: str) -> list[CreditTransaction]:
        return await self._store.list_credit_transactions(organization_id)

    async def reconcile(self, organization_id: str) -> ReconciliationReport:
        """Replay the transaction log and check it against the stored balance.

        Every transaction moves ``available_credits`` by exactly its signed
        amount, so the running sum must match each ``balance_after`` and
        finally the stored balance.
        """
        transactions = await self.list_transactions(organization_id)
        balance = await self.get_balance(organization_id)
        mismatches: list[str] = []
        running = ZERO
        for tx in transactions:
            running += tx.amount
            if tx.balance_after != running:
                mismatches.append(
                    f"transaction {tx.id}: balance_after {tx.balance_after} != replayed {running}"
                )
        if balance.available_credits != running:
            mismatches.append(
                f"stored available {balance.available_credits} != replayed {running}"
            )
        mismatches += balance.invariant_violations()
        if mismatches:
            logger.warning(
                "credit_reconciliation_failed",
                organization_id=organization_id,
                mismatches=len(mismatches),
            )
        return ReconciliationReport(
            organization_id=organization_id,
            transaction_count=len(transactions),
            expected_available=running,
            actual_available=balance.available_credits,
            mismatches=mismatches,
        )
