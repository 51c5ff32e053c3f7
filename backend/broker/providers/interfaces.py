"""Shared types and errors for OAuth providers."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class AuthStyle(str, Enum):
    """How client credentials are presented to a token endpoint."""

    FORM = "form"  # client_id/client_secret in an x-www-form-urlencoded body
    BASIC_JSON = "basic_json"  # HTTP Basic auth header with a JSON body


class ProviderError(Exception):
    """Base class for provider failures."""

    pass


class ProviderNotConfiguredError(ProviderError):
    """Raised when client credentials for a provider are missing.

    Carries the missing setting names, which are safe to log.
    """

    def __init__(self, provider: str, missing: list[str]):
        self.provider = provider
        self.missing = missing
        super().__init__(f"OAuth not configured for {provider}: missing {', '.join(missing)}")


class ProviderHTTPError(ProviderError):
    """Raised when a token endpoint rejects a request.

    Only the status code is kept; response bodies may contain secrets.
    """

    def __init__(self, provider: str, status_code: int):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} token endpoint returned {status_code}")


class ProviderNetworkError(ProviderError):
    """Raised when a token endpoint could not be reached."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Network error calling {provider}")


class ProviderResponseError(ProviderError):
    """Raised when a token endpoint answers 2xx with an unusable body."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} token response unusable: {reason}")


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client registration for one provider."""

    client_id: str
    client_secret: str
    redirect_uri: str | None = None


@dataclass
class ProviderIdentity:
    """Human-readable account label and granted scopes, best effort."""

    label: str | None = None
    scopes: list[str] | None = None


@dataclass
class TokenGrant:
    """Parsed token endpoint response."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None
    scope: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_bundle(self) -> dict[str, Any]:
        """Token bundle as stored (encrypted) in the vault."""
        bundle = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "token_type": self.token_type,
            "scope": self.scope,
            **self.extras,
        }
        return {k: v for k, v in bundle.items() if v is not None}


IdentityFetcher = Callable[[httpx.AsyncClient, str], Awaitable[ProviderIdentity]]


@dataclass(frozen=True)
class ProviderSpec:
    """Everything the broker needs to talk OAuth to one provider."""

    name: str
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...] = ()
    scope_separator: str = " "
    auth_style: AuthStyle = AuthStyle.FORM
    supports_refresh: bool = True
    # Added verbatim to the authorization URL
    authorize_params: tuple[tuple[str, str], ...] = ()
    # Provider-specific token response fields kept in the bundle
    bundle_extras: tuple[str, ...] = ()
    # Error responses arrive as HTTP 200 with {"ok": false}
    ok_flag: bool = False
    identity: IdentityFetcher | None = None

    def setting_names(self) -> tuple[str, str, str]:
        """Settings attributes holding client id, secret and redirect URI."""
        return (
            f"{self.name}_client_id",
            f"{self.name}_client_secret",
            f"{self.name}_redirect_uri",
        )
