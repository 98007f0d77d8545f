from billing_core.routing.router import (
    CredentialFlags,
    ProviderRouter,
    ProviderView,
    RoutingDecision,
    select_provider,
)

__all__ = [
    "CredentialFlags",
    "ProviderRouter",
    "ProviderView",
    "RoutingDecision",
    "select_provider",
]
