"""OAuth provider integrations."""

from broker.providers.client import ProviderClient
from broker.providers.interfaces import (
    AuthStyle,
    ClientCredentials,
    ProviderError,
    ProviderHTTPError,
    ProviderIdentity,
    ProviderNetworkError,
    ProviderNotConfiguredError,
    ProviderResponseError,
    ProviderSpec,
    TokenGrant,
)
from broker.providers.registry import (
    PROVIDERS,
    client_credentials,
    get_provider_spec,
    supported_providers,
)

__all__ = [
    "AuthStyle",
    "ClientCredentials",
    "PROVIDERS",
    "ProviderClient",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderIdentity",
    "ProviderNetworkError",
    "ProviderNotConfiguredError",
    "ProviderResponseError",
    "ProviderSpec",
    "TokenGrant",
    "client_credentials",
    "get_provider_spec",
    "supported_providers",
]
