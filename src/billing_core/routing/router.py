from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, SecretStr

from billing_core.catalog.models import CountryRoutingRules, Provider
from billing_core.catalog.snapshot import CatalogSnapshot
from billing_core.core.constants import ProviderStatus
from billing_core.core.exceptions import NoProvidersAvailableError

if TYPE_CHECKING:
    from billing_core.catalog.store import CatalogStore

logger = structlog.get_logger(__name__)

_REDACTED = "***"


class CredentialFlags(BaseModel):
    """Presence flags standing in for provider secrets."""

    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


def _flag(secret: SecretStr | None) -> str | None:
    return _REDACTED if secret is not None and secret.get_secret_value() else None


class ProviderView(BaseModel):
    """What a routing caller is allowed to see about a provider."""

    id: str
    name: str
    service_type: str
    endpoint: str | None = None
    status: str | None = None
    uptime_percentage: float | None = None
    priority_weight: int | None = None
    country_routing: CountryRoutingRules = Field(default_factory=CountryRoutingRules)
    credentials: CredentialFlags = Field(default_factory=CredentialFlags)

    @classmethod
    def from_provider(cls, provider: Provider) -> ProviderView:
        creds = provider.credentials
        return cls(
            id=provider.id,
            name=provider.name,
            service_type=provider.service_type,
            endpoint=provider.endpoint,
            status=provider.status,
            uptime_percentage=provider.uptime_percentage,
            priority_weight=provider.priority_weight,
            country_routing=provider.country_routing_rules,
            credentials=CredentialFlags(
                api_key=_flag(creds.api_key),
                client_id=_flag(creds.client_id),
                client_secret=_flag(creds.client_secret),
            ),
        )


class RoutingDecision(BaseModel):
    """Selected provider plus ordered fallbacks."""

    provider: ProviderView
    fallbacks: list[ProviderView] = Field(default_factory=list)
    country_matched: bool = False


def _serves_country(provider: Provider, country_code: str) -> bool:
    rules = provider.country_routing_rules
    if not rules.enabled or not rules.countries:
        return True
    # exclusive_countries does not narrow this any further.
    return country_code in rules.countries


def select_provider(
    snapshot: CatalogSnapshot,
    service_type: str,
    country_code: str | None = None,
    exclude_ids: Iterable[str] = (),
) -> RoutingDecision:
    """Pick the best provider for *service_type*.

    Candidates must be active, serve the service type, not be offline and
    not be excluded. When *country_code* is given, providers whose routing
    rules cover it (or that route globally) are preferred; if none do, the
    unfiltered set is kept as a global fallback. Candidates are ordered by
    ``(priority_weight, status rank)``, lower first.

    Raises:
        NoProvidersAvailableError: If no candidate survives filtering.
    """
    excluded = set(exclude_ids)
    candidates = [
        p
        for p in snapshot.providers
        if p.is_active
        and p.service_type == service_type
        and p.status != ProviderStatus.OFFLINE
        and p.id not in excluded
    ]
    if not candidates:
        raise NoProvidersAvailableError(
            f"No available providers for service: {service_type}",
            code="NO_PROVIDERS",
            details={"service_type": service_type, "excluded": sorted(excluded)},
        )

    country_matched = False
    if country_code:
        in_country = [p for p in candidates if _serves_country(p, country_code)]
        if in_country:
            candidates = in_country
            country_matched = True
        else:
            logger.info(
                "routing_country_fallback",
                service_type=service_type,
                country_code=country_code,
            )

    ordered = sorted(candidates, key=lambda p: (p.effective_weight, p.status_rank))
    head, *rest = ordered
    return RoutingDecision(
        provider=ProviderView.from_provider(head),
        fallbacks=[ProviderView.from_provider(p) for p in rest],
        country_matched=country_matched,
    )


class ProviderRouter:
    """Routes against whatever snapshot a :class:`CatalogStore` currently serves.

    Example::

        router = ProviderRouter(store)
        decision = router.select("kyb_verification", country_code="DE")
        primary, backups = decision.provider, decision.fallbacks
    """

    def __init__(self, catalog: CatalogStore) -> None:
        self._catalog = catalog

    def select(
        self,
        service_type: str,
        country_code: str | None = None,
        exclude_ids: Iterable[str] = (),
    ) -> RoutingDecision:
        decision = select_provider(
            self._catalog.snapshot(), service_type, country_code, exclude_ids
        )
        logger.debug(
            "provider_selected",
            service_type=service_type,
            provider=decision.provider.name,
            fallbacks=len(decision.fallbacks),
        )
        return decision
