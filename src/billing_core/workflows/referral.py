"""ReferralWorkflow -- ``pending -> completed -> credited``.

Crediting awards ``credit_amount`` to the referrer and
``referee_credit_amount`` to the referee as two ``referral`` credit
transactions, and marks the referral credited. All of it is one
:class:`~billing_core.storage.base.WriteBatch`: either both transactions
and the status change are committed, or nothing is.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import structlog

from billing_core.core.constants import CreditType, ReferralStatus
from billing_core.core.exceptions import InvalidTransitionError, RecordNotFoundError
from billing_core.ledger.credits import CreditLedger, org_lock_key, stage_credit
from billing_core.ledger.models import CreditTransaction
from billing_core.resilience.retry import RetryPolicy
from billing_core.storage.base import LedgerStore, WriteBatch
from billing_core.utils.money import quantize_money
from billing_core.workflows.models import Referral

logger = structlog.get_logger(__name__)


def _referral_lock_key(referral_id: str) -> str:
    return f"referral:{referral_id}"


class ReferralWorkflow:
    """Create, complete and credit :class:`Referral` records.

    Args:
        store: Ledger store holding referrals and credit balances.
        credits: Credit ledger whose locks and balance reads are shared, so
            referral credits serialize with direct credit operations.
        retry_policy: Policy for re-running after a version conflict.
    """

    def __init__(
        self,
        store: LedgerStore,
        credits: CreditLedger,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._credits = credits
        self._retry = retry_policy or RetryPolicy()

    async def get(self, referral_id: str) -> Referral:
        referral = await self._store.get_referral(referral_id)
        if referral is None:
            raise RecordNotFoundError(
                f"Referral '{referral_id}' not found",
                code="REFERRAL_NOT_FOUND",
                details={"referral_id": referral_id},
            )
        return referral

    async def get_by_code(self, code: str) -> Referral:
        referral = await self._store.get_referral_by_code(code)
        if referral is None:
            raise RecordNotFoundError(
                f"Referral code '{code}' not found",
                code="REFERRAL_NOT_FOUND",
                details={"referral_code": code},
            )
        return referral

    async def create(
        self,
        referrer_organization_id: str,
        referrer_email: str,
        referee_email: str,
        credit_amount: Decimal,
        referee_credit_amount: Decimal | None = None,
    ) -> Referral:
        """Open a pending referral. The referee gets half the referrer's credit by default."""
        credit_amount = Decimal(credit_amount)
        if referee_credit_amount is None:
            referee_credit_amount = quantize_money(credit_amount / 2)
        batch = WriteBatch()
        referral = batch.put_referral(
            Referral(
                referrer_organization_id=referrer_organization_id,
                referrer_email=referrer_email,
                referee_email=referee_email,
                credit_amount=credit_amount,
                referee_credit_amount=Decimal(referee_credit_amount),
            )
        )
        await self._store.commit(batch)
        logger.info(
            "referral_created",
            referral_id=referral.id,
            referral_code=referral.referral_code,
            referrer_organization_id=referrer_organization_id,
        )
        return referral

    def _require(self, referral: Referral, expected: ReferralStatus, action: str) -> None:
        if referral.status == expected:
            return
        logger.warning(
            "referral_invalid_transition",
            referral_id=referral.id,
            status=str(referral.status),
            action=action,
        )
        raise InvalidTransitionError(
            f"Referral '{referral.id}' is {referral.status}, cannot {action}",
            code="INVALID_REFERRAL_STATE",
            details={"referral_id": referral.id, "status": str(referral.status), "action": action},
        )

    async def _complete_once(self, referral_id: str, referee_organization_id: str) -> Referral:
        referral = await self.get(referral_id)
        self._require(referral, ReferralStatus.PENDING, "complete")
        batch = WriteBatch()
        completed = batch.put_referral(
            referral.model_copy(
                update={
                    "status": ReferralStatus.COMPLETED,
                    "referee_organization_id": referee_organization_id,
                    "completed_at": datetime.now(timezone.utc),
                }
            )
        )
        await self._store.commit(batch)
        return completed

    async def complete(self, referral_id: str, referee_organization_id: str) -> Referral:
        """Mark a pending referral completed once the referee has signed up.

        Raises:
            InvalidTransitionError: If the referral is not pending.
        """
        async with self._credits.locks.hold(_referral_lock_key(referral_id)):
            completed = await self._retry.execute(
                self._complete_once, referral_id, referee_organization_id
            )
        logger.info(
            "referral_completed",
            referral_id=referral_id,
            referee_organization_id=referee_organization_id,
        )
        return completed

    async def _credit_once(
        self, referral_id: str
    ) -> tuple[Referral, CreditTransaction, CreditTransaction]:
        referral = await self.get(referral_id)
        self._require(referral, ReferralStatus.COMPLETED, "credit")
        referee_org = referral.referee_organization_id
        assert referee_org is not None  # noqa: S101

        batch = WriteBatch()
        referrer_balance = await self._credits.load_balance(
            referral.referrer_organization_id, batch
        )
        _, referrer_tx = stage_credit(
            batch,
            referrer_balance,
            CreditType.REFERRAL,
            referral.credit_amount,
            f"Referral reward for {referral.referee_email}",
            reference_id=referral.id,
        )
        referee_balance = await self._credits.load_balance(referee_org, batch)
        _, referee_tx = stage_credit(
            batch,
            referee_balance,
            CreditType.REFERRAL,
            referral.referee_credit_amount,
            f"Referral welcome credit (code {referral.referral_code})",
            reference_id=referral.id,
        )
        credited = batch.put_referral(
            referral.model_copy(
                update={
                    "status": ReferralStatus.CREDITED,
                    "credited_at": datetime.now(timezone.utc),
                }
            )
        )
        await self._store.commit(batch)
        return credited, referrer_tx, referee_tx

    async def credit(
        self, referral_id: str
    ) -> tuple[Referral, CreditTransaction, CreditTransaction]:
        """Credit both organizations and mark the referral credited, atomically.

        Returns the credited referral and the referrer and referee
        transactions.

        Raises:
            InvalidTransitionError: If the referral is not completed
                (including when it was already credited). Nothing is
                written in that case.
        """
        referral = await self.get(referral_id)
        keys = [_referral_lock_key(referral_id), org_lock_key(referral.referrer_organization_id)]
        if referral.referee_organization_id is not None:
            keys.append(org_lock_key(referral.referee_organization_id))
        async with self._credits.locks.hold(*keys):
            credited, referrer_tx, referee_tx = await self._retry.execute(
                self._credit_once, referral_id
            )
        logger.info(
            "referral_credited",
            referral_id=referral_id,
            referrer_organization_id=credited.referrer_organization_id,
            referee_organization_id=credited.referee_organization_id,
            referrer_amount=str(referrer_tx.amount),
            referee_amount=str(referee_tx.amount),
        )
        return credited, referrer_tx, referee_tx
