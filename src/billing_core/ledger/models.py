"""Ledger records: cost transactions, credit balances and credit movements."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from billing_core.core.constants import CreditType
from billing_core.utils.money import ZERO


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CostTransaction(BaseModel):
    """One priced service invocation. Append-only; never updated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    service_type: str
    provider_name: str
    provider_cost: Decimal
    markup_applied: Decimal
    total_charged: Decimal
    currency: str = "USD"
    organization_id: str | None = None
    markup_rule_id: str | None = None
    created_date: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_total(self) -> CostTransaction:
        if self.total_charged != self.provider_cost + self.markup_applied:
            raise ValueError(
                f"total_charged {self.total_charged} != provider_cost "
                f"{self.provider_cost} + markup_applied {self.markup_applied}"
            )
        return self

    @property
    def profit(self) -> Decimal:
        return self.total_charged - self.provider_cost


class CreditBalance(BaseModel):
    """Per-organization credit totals.

    ``total_credits`` and ``available_credits`` are derived from the
    category fields and ``used_credits``; use :meth:`recomputed` rather
    than editing them directly.
    """

    organization_id: str
    total_credits: Decimal = ZERO
    available_credits: Decimal = ZERO
    used_credits: Decimal = ZERO
    promotional_credits: Decimal = ZERO
    referral_credits: Decimal = ZERO
    prepaid_credits: Decimal = ZERO
    last_updated: datetime = Field(default_factory=_utcnow)
    version: int = 0

    def recomputed(self, **changes: Decimal) -> CreditBalance:
        """Copy with *changes* applied and both totals derived again."""
        updated = self.model_copy(update=changes)
        total = updated.promotional_credits + updated.referral_credits + updated.prepaid_credits
        return updated.model_copy(
            update={
                "total_credits": total,
                "available_credits": total - updated.used_credits,
                "last_updated": _utcnow(),
            }
        )

    def invariant_violations(self) -> list[str]:
        issues: list[str] = []
        total = self.promotional_credits + self.referral_credits + self.prepaid_credits
        if self.total_credits != total:
            issues.append(f"total_credits {self.total_credits} != category sum {total}")
        if self.available_credits != self.total_credits - self.used_credits:
            issues.append("available_credits != total_credits - used_credits")
        if self.available_credits < 0:
            issues.append(f"available_credits {self.available_credits} is negative")
        return issues


class CreditTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    organization_id: str
    transaction_type: CreditType
    amount: Decimal
    balance_after: Decimal
    description: str = ""
    reference_id: str | None = None
    created_date: datetime = Field(default_factory=_utcnow)


class ProfitBreakdown(BaseModel):
    revenue: Decimal = ZERO
    cost: Decimal = ZERO
    profit: Decimal = ZERO
    transaction_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def margin_percentage(self) -> Decimal:
        if not self.revenue:
            return ZERO
        return (self.profit / self.revenue * 100).quantize(Decimal("0.01"))


class ProfitSummary(ProfitBreakdown):
    """Profit for a slice of the ledger, computed from the rows themselves."""

    since: datetime | None = None
    until: datetime | None = None
    by_service: dict[str, ProfitBreakdown] = Field(default_factory=dict)
    by_provider: dict[str, ProfitBreakdown] = Field(default_factory=dict)


class ReconciliationReport(BaseModel):
    """Outcome of replaying an organization's credit transactions."""

    organization_id: str
    transaction_count: int
    expected_available: Decimal
    actual_available: Decimal
    mismatches: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches
