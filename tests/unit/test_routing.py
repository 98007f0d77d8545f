"""Tests for routing/ -- select_provider and ProviderRouter."""
from __future__ import annotations

import pytest

from billing_core.catalog.models import CountryRoutingRules, Provider, ProviderCredentials
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.catalog.store import CatalogStore
from billing_core.core.exceptions import NoProvidersAvailableError
from billing_core.routing.router import ProviderRouter, ProviderView, select_provider


def _snap(*providers: Provider) -> CatalogSnapshot:
    return CatalogSnapshot(providers=providers)


def _provider(pid: str, **kwargs: object) -> Provider:
    fields: dict[str, object] = {"id": pid, "name": pid.upper(), "service_type": "aml_screening"}
    fields.update(kwargs)
    return Provider(**fields)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def test_selects_lowest_priority_weight(snapshot: CatalogSnapshot) -> None:
    decision = select_provider(snapshot, "kyb_verification")
    assert decision.provider.id == "p-acme"
    assert [p.id for p in decision.fallbacks] == ["p-beta"]


def test_never_returns_inactive_offline_or_excluded() -> None:
    snap = _snap(
        _provider("inactive", is_active=False, priority_weight=0),
        _provider("offline", status="offline", priority_weight=0),
        _provider("excluded", status="active", priority_weight=0),
        _provider("ok", status="active", priority_weight=50),
        _provider("other-service", service_type="kyb_verification", priority_weight=0),
    )
    decision = select_provider(snap, "aml_screening", exclude_ids=["excluded"])
    returned = {decision.provider.id, *(p.id for p in decision.fallbacks)}
    assert returned == {"ok"}


def test_no_candidates_raises() -> None:
    snap = _snap(_provider("a", status="offline"))
    with pytest.raises(NoProvidersAvailableError) as exc_info:
        select_provider(snap, "aml_screening")
    assert exc_info.value.code == "NO_PROVIDERS"


def test_excluding_everything_raises(snapshot: CatalogSnapshot) -> None:
    with pytest.raises(NoProvidersAvailableError):
        select_provider(snapshot, "kyb_verification", exclude_ids={"p-acme", "p-beta"})


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def test_status_rank_breaks_weight_ties() -> None:
    snap = _snap(
        _provider("unset", priority_weight=3),
        _provider("degraded", status="degraded", priority_weight=3),
        _provider("active", status="active", priority_weight=3),
    )
    decision = select_provider(snap, "aml_screening")
    assert [decision.provider.id, *(p.id for p in decision.fallbacks)] == [
        "active",
        "degraded",
        "unset",
    ]


def test_unset_weight_sorts_as_ten() -> None:
    snap = _snap(
        _provider("eleven", status="active", priority_weight=11),
        _provider("unset", status="active"),
        _provider("nine", status="active", priority_weight=9),
    )
    decision = select_provider(snap, "aml_screening")
    assert [decision.provider.id, *(p.id for p in decision.fallbacks)] == ["nine", "unset", "eleven"]


def test_fallbacks_sorted_by_weight_then_status() -> None:
    snap = _snap(
        _provider("d5", status="degraded", priority_weight=5),
        _provider("a5", status="active", priority_weight=5),
        _provider("a1", status="active", priority_weight=1),
        _provider("a9", status="active", priority_weight=9),
    )
    decision = select_provider(snap, "aml_screening")
    ordered = [decision.provider, *decision.fallbacks]
    keys = [(p.priority_weight, {"active": 0, "degraded": 1}[p.status]) for p in ordered]
    assert keys == sorted(keys)


# ---------------------------------------------------------------------------
# Country routing
# ---------------------------------------------------------------------------


def test_country_filter_prefers_matching_providers() -> None:
    snap = _snap(
        _provider("global", status="active", priority_weight=1),
        _provider(
            "de-only",
            status="active",
            priority_weight=5,
            country_routing_rules=CountryRoutingRules(enabled=True, countries=("DE",)),
        ),
        _provider(
            "fr-only",
            status="active",
            priority_weight=0,
            country_routing_rules=CountryRoutingRules(enabled=True, countries=("FR",)),
        ),
    )
    decision = select_provider(snap, "aml_screening", country_code="DE")
    assert decision.country_matched is True
    assert decision.provider.id == "global"
    assert [p.id for p in decision.fallbacks] == ["de-only"]


def test_country_filter_falls_back_to_unfiltered_set() -> None:
    snap = _snap(
        _provider(
            "fr-only",
            status="active",
            country_routing_rules=CountryRoutingRules(enabled=True, countries=("FR",)),
        ),
    )
    decision = select_provider(snap, "aml_screening", country_code="JP")
    assert decision.provider.id == "fr-only"
    assert decision.country_matched is False


def test_exclusive_flag_does_not_change_filter() -> None:
    rules = CountryRoutingRules(enabled=True, countries=("DE",), exclusive_countries=True)
    snap = _snap(
        _provider("exclusive", status="active", priority_weight=2, country_routing_rules=rules),
        _provider("global", status="active", priority_weight=1),
    )
    decision = select_provider(snap, "aml_screening", country_code="DE")
    assert {decision.provider.id, *(p.id for p in decision.fallbacks)} == {"exclusive", "global"}


def test_disabled_rules_are_global() -> None:
    rules = CountryRoutingRules(enabled=False, countries=("FR",))
    snap = _snap(_provider("a", status="active", country_routing_rules=rules))
    assert select_provider(snap, "aml_screening", country_code="DE").country_matched is True


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def test_credentials_are_redacted() -> None:
    provider = _provider(
        "secret",
        status="active",
        credentials=ProviderCredentials(api_key="sk-live-123", client_id="client-1"),
    )
    view = select_provider(_snap(provider), "aml_screening").provider
    assert view.credentials.api_key == "***"
    assert view.credentials.client_id == "***"
    assert view.credentials.client_secret is None
    assert "sk-live-123" not in view.model_dump_json()


def test_provider_view_copies_routing_fields() -> None:
    provider = _provider("a", status="degraded", priority_weight=4, uptime_percentage=99.5)
    view = ProviderView.from_provider(provider)
    assert (view.status, view.priority_weight, view.uptime_percentage) == ("degraded", 4, 99.5)


# ---------------------------------------------------------------------------
# ProviderRouter
# ---------------------------------------------------------------------------


async def test_router_follows_published_snapshot(catalog: CatalogStore) -> None:
    router = ProviderRouter(catalog)
    assert router.select("kyb_verification").provider.id == "p-acme"

    snap = catalog.snapshot()
    demoted = tuple(
        p.model_copy(update={"priority_weight": 50}) if p.id == "p-acme" else p for p in snap.providers
    )
    await catalog.publish(snap.model_copy(update={"providers": demoted}))
    assert router.select("kyb_verification").provider.id == "p-beta"
