"""A la carte resolution: provider cost plus the single winning markup rule."""

from __future__ import annotations

import warnings
from datetime import datetime

import structlog

from billing_core.catalog.models import MarkupRule
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.core.constants import MarkupScope
from billing_core.core.exceptions import ConfigurationWarning, NoApplicableRuleError
from billing_core.pricing.models import MarkupResolution, PricingContext
from billing_core.utils.money import ZERO, quantize_money

logger = structlog.get_logger(__name__)


def _precedence(rule: MarkupRule) -> tuple[int, int, datetime]:
    # Organization scope outranks global regardless of priority number.
    scope_rank = 1 if rule.scope == MarkupScope.ORGANIZATION else 0
    return (scope_rank, rule.priority, rule.effective_from)


def select_markup_rule(
    snapshot: CatalogSnapshot,
    context: PricingContext,
) -> MarkupRule | None:
    """Return the one markup rule that applies to *context*, or ``None``.

    Matching rules are active, already effective, cover the service type
    (directly or via ``all_services``) and are either global or scoped to
    the requesting organization. Precedence: organization scope, then
    higher ``priority``, then most recent ``effective_from``.
    """
    matching = [
        r
        for r in snapshot.markup_rules
        if r.is_active
        and r.effective_from <= context.timestamp
        and r.applies_to_service(context.service_type)
        and r.applies_to_organization(context.organization_id)
    ]
    if not matching:
        return None

    best = max(_precedence(r) for r in matching)
    winners = [r for r in matching if _precedence(r) == best]
    if len(winners) > 1:
        names = sorted(r.rule_name for r in winners)
        message = (
            f"{len(winners)} markup rules tie for {context.service_type!r}: {names}; "
            "choosing by rule id"
        )
        warnings.warn(message, ConfigurationWarning, stacklevel=2)
        logger.warning("markup_rule_tie", service_type=context.service_type, rules=names)
    return min(winners, key=lambda r: r.id)


def resolve_markup(
    snapshot: CatalogSnapshot,
    context: PricingContext,
    provider_name: str,
) -> MarkupResolution:
    """Price one invocation of *provider_name* for *context*.

    ``markup`` is zero when no rule matches. ``total_charged`` is always
    ``provider_cost + markup``.

    Raises:
        NoApplicableRuleError: If the provider has no active cost record
            for the service at ``context.timestamp``.
    """
    cost = snapshot.active_cost(context.service_type, provider_name, context.timestamp)
    if cost is None:
        raise NoApplicableRuleError(
            f"No active cost for {provider_name!r} on {context.service_type!r}",
            code="NO_PROVIDER_COST",
            details={"service_type": context.service_type, "provider_name": provider_name},
        )

    rule = select_markup_rule(snapshot, context)
    markup = quantize_money(rule.compute_markup(cost.cost_per_unit)) if rule else ZERO
    return MarkupResolution(
        service_type=context.service_type,
        provider_name=provider_name,
        provider_cost=cost.cost_per_unit,
        markup=markup,
        total_charged=cost.cost_per_unit + markup,
        currency=cost.currency,
        cost_id=cost.id,
        rule_id=rule.id if rule else None,
        rule_name=rule.rule_name if rule else None,
    )
