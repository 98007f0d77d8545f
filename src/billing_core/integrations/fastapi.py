"""FastAPI integration for billing-core.

Usage::

    from billing_core.integrations.fastapi import create_billing_router

    engine = await BillingEngine.create(BillingConfig.from_env())
    app = FastAPI()
    app.include_router(create_billing_router(engine, prefix="/billing"))

Requires the ``fastapi`` extra::

    pip install billing-core[fastapi]
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, NoReturn

try:
    from fastapi import APIRouter, HTTPException
    from fastapi.responses import JSONResponse
    from pydantic import BaseModel as _FaBaseModel
    from pydantic import Field as _FaField
except ImportError as _err:  # pragma: no cover
    raise ImportError(
        "FastAPI is required for billing_core.integrations.fastapi. "
        "Install it with: pip install billing-core[fastapi]"
    ) from _err

from billing_core.core.engine import BillingEngine
from billing_core.core.exceptions import (
    BillingCoreError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NegativeBalanceError,
    NoApplicableRuleError,
    NoProvidersAvailableError,
    RecordNotFoundError,
)
from billing_core.pricing.models import PricingContext
from billing_core.workflows.price_change import DEFAULT_REJECTION_REASON

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class _RouteRequest(_FaBaseModel):
    service_type: str
    country_code: str | None = None
    exclude_ids: list[str] = _FaField(default_factory=list)


class _ChargeRequest(PricingContext):
    exclude_ids: list[str] = _FaField(default_factory=list)


class _QuoteRequest(PricingContext):
    component: str | None = None


class _CreditRequest(_FaBaseModel):
    credit_type: str
    amount: Decimal
    description: str = ""
    reference_id: str | None = None


class _SubmitPriceChangeRequest(_FaBaseModel):
    provider_service_cost_id: str
    new_cost: Decimal
    detected_at: datetime | None = None
    effective_date: datetime | None = None


class _ReviewRequest(_FaBaseModel):
    reviewer: str


class _RejectRequest(_ReviewRequest):
    reason: str = DEFAULT_REJECTION_REASON


class _CreateReferralRequest(_FaBaseModel):
    referrer_organization_id: str
    referrer_email: str
    referee_email: str
    credit_amount: Decimal
    referee_credit_amount: Decimal | None = None


class _CompleteReferralRequest(_FaBaseModel):
    referee_organization_id: str


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: tuple[tuple[type[BillingCoreError], int], ...] = (
    (NoProvidersAvailableError, 404),
    (RecordNotFoundError, 404),
    (NoApplicableRuleError, 422),
    (NegativeBalanceError, 409),
    (InvalidTransitionError, 409),
    (ConcurrentModificationError, 409),
)


def status_for(exc: BillingCoreError) -> int:
    """HTTP status code for a billing-core error (500 when unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, BillingCoreError):
        detail: dict[str, Any] = {
            "error": str(exc),
            "code": exc.code,
            "retryable": exc.is_retryable,
        }
        raise HTTPException(status_code=status_for(exc), detail=detail) from exc
    raise HTTPException(status_code=422, detail={"error": str(exc), "code": None}) from exc


def _json(content: Any) -> JSONResponse:
    if isinstance(content, _FaBaseModel):
        content = content.model_dump(mode="json")
    return JSONResponse(content=content)


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_billing_router(
    engine: BillingEngine,
    prefix: str = "/billing",
) -> APIRouter:
    """Return an :class:`APIRouter` exposing the billing engine.

    Endpoints:
        - ``POST {prefix}/route``                         -- select a provider
        - ``POST {prefix}/charge``                        -- route, price and record
        - ``POST {prefix}/plans/{plan_id}/quote``         -- plan price with tax
        - ``GET  {prefix}/profit``                        -- profit summary
        - ``POST {prefix}/credits/{organization_id}``     -- apply a credit
        - ``GET  {prefix}/credits/{organization_id}``     -- balance and history
        - ``GET  {prefix}/price-changes``                 -- pending requests
        - ``POST {prefix}/price-changes``                 -- submit a detected change
        - ``POST {prefix}/price-changes/{id}/approve``
        - ``POST {prefix}/price-changes/{id}/reject``
        - ``POST {prefix}/referrals``
        - ``POST {prefix}/referrals/{id}/complete``
        - ``POST {prefix}/referrals/{id}/credit``

    Error mapping: no providers / not found -> 404, missing base price ->
    422, negative balance / invalid transition -> 409, concurrent
    modification -> 409 with ``retryable: true``.
    """
    router = APIRouter(prefix=prefix, tags=["billing"])

    # -- pricing --------------------------------------------------------------

    @router.post("/route")
    async def route(body: _RouteRequest) -> JSONResponse:
        try:
            decision = await engine.route(body.service_type, body.country_code, body.exclude_ids)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(decision)

    @router.post("/charge")
    async def charge(body: _ChargeRequest) -> JSONResponse:
        context = PricingContext(**body.model_dump(exclude={"exclude_ids"}))
        try:
            result = await engine.charge(context.service_type, context, body.exclude_ids)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(result)

    @router.post("/plans/{plan_id}/quote")
    async def quote_plan(plan_id: str, body: _QuoteRequest) -> JSONResponse:
        context = PricingContext(**body.model_dump(exclude={"component"}))
        try:
            resolution = await engine.quote_plan(plan_id, context, body.component)
        except BillingCoreError as exc:
            _raise_http(exc)
        payload = resolution.model_dump(mode="json")
        payload["invoice_line"] = resolution.to_invoice_line().model_dump(mode="json")
        return _json(payload)

    @router.get("/profit")
    async def profit(
        service_type: str | None = None,
        provider_name: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> JSONResponse:
        summary = await engine.writer.profit_summary(service_type, provider_name, since, until)
        return _json(summary)

    # -- credits --------------------------------------------------------------

    @router.post("/credits/{organization_id}")
    async def apply_credit(organization_id: str, body: _CreditRequest) -> JSONResponse:
        try:
            balance, transaction = await engine.credits.apply_credit(
                organization_id,
                body.credit_type,
                body.amount,
                body.description,
                body.reference_id,
            )
        except (BillingCoreError, ValueError) as exc:
            _raise_http(exc)
        return _json(
            {
                "balance": balance.model_dump(mode="json"),
                "transaction": transaction.model_dump(mode="json"),
            }
        )

    @router.get("/credits/{organization_id}")
    async def get_credits(organization_id: str) -> JSONResponse:
        balance = await engine.credits.get_balance(organization_id)
        transactions = await engine.credits.list_transactions(organization_id)
        return _json(
            {
                "balance": balance.model_dump(mode="json"),
                "transactions": [t.model_dump(mode="json") for t in transactions],
            }
        )

    # -- price changes --------------------------------------------------------

    @router.get("/price-changes")
    async def list_price_changes() -> JSONResponse:
        pending = await engine.price_changes.list_pending()
        return _json([r.model_dump(mode="json") for r in pending])

    @router.post("/price-changes")
    async def submit_price_change(body: _SubmitPriceChangeRequest) -> JSONResponse:
        try:
            request = await engine.price_changes.submit(
                body.provider_service_cost_id,
                body.new_cost,
                detected_at=body.detected_at,
                effective_date=body.effective_date,
            )
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(request)

    @router.post("/price-changes/{request_id}/approve")
    async def approve_price_change(request_id: str, body: _ReviewRequest) -> JSONResponse:
        try:
            request = await engine.price_changes.approve(request_id, body.reviewer)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(request)

    @router.post("/price-changes/{request_id}/reject")
    async def reject_price_change(request_id: str, body: _RejectRequest) -> JSONResponse:
        try:
            request = await engine.price_changes.reject(request_id, body.reviewer, body.reason)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(request)

    # -- referrals ------------------------------------------------------------

    @router.post("/referrals")
    async def create_referral(body: _CreateReferralRequest) -> JSONResponse:
        try:
            referral = await engine.referrals.create(
                body.referrer_organization_id,
                body.referrer_email,
                body.referee_email,
                body.credit_amount,
                body.referee_credit_amount,
            )
        except (BillingCoreError, ValueError) as exc:
            _raise_http(exc)
        return _json(referral)

    @router.post("/referrals/{referral_id}/complete")
    async def complete_referral(referral_id: str, body: _CompleteReferralRequest) -> JSONResponse:
        try:
            referral = await engine.referrals.complete(referral_id, body.referee_organization_id)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(referral)

    @router.post("/referrals/{referral_id}/credit")
    async def credit_referral(referral_id: str) -> JSONResponse:
        try:
            referral, referrer_tx, referee_tx = await engine.referrals.credit(referral_id)
        except BillingCoreError as exc:
            _raise_http(exc)
        return _json(
            {
                "referral": referral.model_dump(mode="json"),
                "transactions": [
                    referrer_tx.model_dump(mode="json"),
                    referee_tx.model_dump(mode="json"),
                ],
            }
        )

    return router
