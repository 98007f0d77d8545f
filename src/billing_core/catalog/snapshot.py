"""Immutable rule-catalog snapshot and configuration-time validation."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timezone
from itertools import combinations
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from billing_core.catalog.defaults import (
    DEFAULT_CONTINENTS,
    DEFAULT_CURRENCIES,
    DEFAULT_TAX_RULES,
)
from billing_core.catalog.models import (
    BillingPlan,
    BillingSettings,
    Currency,
    MarkupRule,
    Provider,
    ProviderCost,
    TaxRule,
)
from billing_core.core.constants import ALL_SERVICES, MarkupScope
from billing_core.utils.dates import as_utc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogSnapshot(BaseModel):
    """Point-in-time view of every record the resolvers read.

    Resolution functions take a snapshot as an explicit argument and never
    read ambient state; a new snapshot replaces the old one wholesale when
    the catalog changes.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 0
    loaded_at: datetime = Field(default_factory=_utcnow)
    providers: tuple[Provider, ...] = ()
    provider_costs: tuple[ProviderCost, ...] = ()
    markup_rules: tuple[MarkupRule, ...] = ()
    billing_plans: tuple[BillingPlan, ...] = ()
    tax_rules: dict[str, TaxRule] = Field(default_factory=lambda: dict(DEFAULT_TAX_RULES))
    currencies: dict[str, Currency] = Field(default_factory=lambda: dict(DEFAULT_CURRENCIES))
    continents: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CONTINENTS))
    settings: BillingSettings = Field(default_factory=BillingSettings)

    # -- lookups ------------------------------------------------------------

    def provider_cost(self, cost_id: str) -> ProviderCost | None:
        for cost in self.provider_costs:
            if cost.id == cost_id:
                return cost
        return None

    def active_cost(
        self,
        service_type: str,
        provider_name: str,
        at: datetime | None = None,
    ) -> ProviderCost | None:
        """Most recently effective active cost for a provider's service."""
        moment = as_utc(at) if at is not None else _utcnow()
        candidates = [
            c
            for c in self.provider_costs
            if c.is_active
            and c.service_type == service_type
            and c.provider_name == provider_name
            and c.effective_from <= moment
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.effective_from)

    def plan(self, plan_id_or_tier: str) -> BillingPlan | None:
        """Look a plan up by id, falling back to its tier name."""
        for plan in self.billing_plans:
            if plan.id == plan_id_or_tier:
                return plan
        for plan in self.billing_plans:
            if plan.tier == plan_id_or_tier and plan.is_active:
                return plan
        return None

    def tax_rule(self, country_code: str | None) -> TaxRule | None:
        if not country_code:
            return None
        return self.tax_rules.get(country_code.upper())

    def continent_of(self, country_code: str | None) -> str | None:
        if not country_code:
            return None
        return self.continents.get(country_code.upper())

    def currency(self, code: str) -> Currency | None:
        return self.currencies.get(code.upper())

    # -- copy-on-write --------------------------------------------------------

    def with_provider_cost(self, record: ProviderCost) -> CatalogSnapshot:
        """Return a copy with *record* replacing the cost that has its id."""
        costs = tuple(record if c.id == record.id else c for c in self.provider_costs)
        return self.model_copy(update={"provider_costs": costs})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _duplicate_ids(kind: str, ids: Iterable[str]) -> list[str]:
    counts = Counter(ids)
    return [f"duplicate {kind} id {item!r}" for item, n in counts.items() if n > 1]


def _services_overlap(a: MarkupRule, b: MarkupRule) -> bool:
    return a.service_type == b.service_type or ALL_SERVICES in (a.service_type, b.service_type)


def _markup_ties(rules: Iterable[MarkupRule]) -> list[str]:
    issues: list[str] = []
    active = [r for r in rules if r.is_active]
    for a, b in combinations(active, 2):
        if a.scope != b.scope or a.priority != b.priority:
            continue
        if a.scope == MarkupScope.ORGANIZATION and a.organization_id != b.organization_id:
            continue
        if _services_overlap(a, b):
            issues.append(
                f"markup rules {a.rule_name!r} and {b.rule_name!r} tie at priority "
                f"{a.priority} in {a.scope} scope"
            )
    return issues


def validate_catalog(snapshot: CatalogSnapshot) -> list[str]:
    """Return configuration problems found in *snapshot*.

    Checks duplicate ids, progressive tier layout, markup-rule priority
    ties that would otherwise be settled only by ``effective_from``, and
    provider costs priced in unknown currencies. An empty list means the
    snapshot is publishable.
    """
    issues: list[str] = []
    issues += _duplicate_ids("provider", (p.id for p in snapshot.providers))
    issues += _duplicate_ids("provider cost", (c.id for c in snapshot.provider_costs))
    issues += _duplicate_ids("markup rule", (r.id for r in snapshot.markup_rules))
    issues += _duplicate_ids("billing plan", (p.id for p in snapshot.billing_plans))

    for plan in snapshot.billing_plans:
        for progressive in plan.progressive_pricing:
            issues += [f"plan {plan.tier!r}: {msg}" for msg in progressive.tier_issues()]

    issues += _markup_ties(snapshot.markup_rules)

    for cost in snapshot.provider_costs:
        if snapshot.currency(cost.currency) is None:
            issues.append(
                f"provider cost {cost.id!r} uses unknown currency {cost.currency!r}"
            )
    return issues


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


async def load_catalog_file(path: str | Path) -> CatalogSnapshot:
    """Read a JSON catalog document using :func:`asyncio.to_thread`.

    Tables omitted from the document (tax rules, currencies, continents)
    fall back to the built-in defaults.
    """
    source = Path(path)
    raw = await asyncio.to_thread(source.read_text, encoding="utf-8")
    return CatalogSnapshot.model_validate_json(raw)
