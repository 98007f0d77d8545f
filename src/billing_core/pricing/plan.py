"""Subscription path: plan component price, modifier chain, tax."""

from __future__ import annotations

import warnings
from decimal import Decimal

import structlog

from billing_core.catalog.models import BillingPlan
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.core.exceptions import ConfigurationWarning, NoApplicableRuleError
from billing_core.pricing.models import PlanPriceResolution, PricingContext
from billing_core.pricing.modifiers import apply_modifiers, build_modifier_chain
from billing_core.pricing.tax import compute_tax
from billing_core.utils.money import quantize_money

logger = structlog.get_logger(__name__)


def _base_price(plan: BillingPlan, component: str | None) -> Decimal:
    if component is None:
        price = plan.base_price
        missing = "base price"
    else:
        price = plan.component_pricing.get(component)
        missing = f"price for component {component!r}"
    if price is None:
        raise NoApplicableRuleError(
            f"Plan {plan.tier!r} has no {missing}",
            code="NO_BASE_PRICE",
            details={"plan_id": plan.id, "component": component},
        )
    return price


def resolve_plan_price(
    snapshot: CatalogSnapshot,
    plan: BillingPlan,
    context: PricingContext,
    component: str | None = None,
) -> PlanPriceResolution:
    """Price *quantity* units of *component* (or the flat plan fee) on *plan*.

    The base price is ``plan.component_pricing[component]``, or
    ``plan.base_price`` when *component* is ``None``. The modifier chain is
    folded over it in fixed order, the result is rounded to the money
    quantum and becomes the unit price. Tax is computed on
    ``unit_price * quantity``.

    Configuration problems that force a fallback are emitted as
    :class:`~billing_core.core.exceptions.ConfigurationWarning` and kept on
    ``resolution.warnings``.

    Raises:
        NoApplicableRuleError: If the base price is absent.
    """
    base = _base_price(plan, component)
    chain = build_modifier_chain(plan, component)
    price, applied, problems = apply_modifiers(base, chain, context, snapshot)

    for problem in problems:
        warnings.warn(problem, ConfigurationWarning, stacklevel=2)
        logger.warning("plan_price_fallback", plan_id=plan.id, problem=problem)

    unit_price = quantize_money(price)
    subtotal = unit_price * context.quantity
    tax = compute_tax(snapshot, subtotal, context)
    return PlanPriceResolution(
        plan_id=plan.id,
        plan_tier=plan.tier,
        component=component,
        currency=plan.currency,
        base_price=base,
        unit_price=unit_price,
        quantity=context.quantity,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax.tax_amount,
        modifiers=applied,
        warnings=problems,
    )
