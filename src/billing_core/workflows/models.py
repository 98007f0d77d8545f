"""Records owned by the approval workflows."""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field

from billing_core.catalog.models import CostOverride
from billing_core.core.constants import PriceChangeStatus, ReferralStatus
from billing_core.utils.dates import UtcDatetime
from billing_core.utils.money import ZERO

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_referral_code() -> str:
    """``REF-<epoch ms>-<6 random chars>``."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"REF-{int(time.time() * 1000)}-{suffix}"


class PriceChangeRequest(BaseModel):
    """A detected provider price delta awaiting review."""

    id: str = Field(default_factory=_new_id)
    provider_service_cost_id: str
    service_type: str | None = None
    provider_name: str | None = None
    current_cost: Decimal
    new_cost: Decimal = Field(ge=0)
    effective_date: UtcDatetime | None = None
    detected_at: UtcDatetime = Field(default_factory=_utcnow)
    status: PriceChangeStatus = PriceChangeStatus.PENDING_REVIEW
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != PriceChangeStatus.PENDING_REVIEW

    @property
    def change_percent(self) -> Decimal:
        if not self.current_cost:
            return ZERO
        change = (self.new_cost - self.current_cost) / self.current_cost * 100
        return change.quantize(Decimal("0.01"))

    def cost_override(self) -> CostOverride | None:
        """The catalog change this request stands for once approved."""
        if self.status != PriceChangeStatus.APPROVED:
            return None
        return CostOverride(
            cost_id=self.provider_service_cost_id,
            cost_per_unit=self.new_cost,
            effective_from=self.effective_date or self.reviewed_at or self.detected_at,
        )


class Referral(BaseModel):
    id: str = Field(default_factory=_new_id)
    referrer_organization_id: str
    referrer_email: str
    referee_email: str
    referee_organization_id: str | None = None
    credit_amount: Decimal = Field(gt=0)
    referee_credit_amount: Decimal = Field(gt=0)
    referral_code: str = Field(default_factory=new_referral_code)
    status: ReferralStatus = ReferralStatus.PENDING
    completed_at: datetime | None = None
    credited_at: datetime | None = None
    created_date: datetime = Field(default_factory=_utcnow)
    version: int = 0
