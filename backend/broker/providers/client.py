"""OAuth client for talking to provider authorization and token endpoints."""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from broker.config import Settings
from broker.providers.interfaces import (
    AuthStyle,
    ClientCredentials,
    ProviderHTTPError,
    ProviderIdentity,
    ProviderNetworkError,
    ProviderResponseError,
    ProviderSpec,
    TokenGrant,
)
from broker.providers.registry import client_credentials

logger = logging.getLogger(__name__)


class ProviderClient:
    """Performs authorization-code exchange, refresh and identity lookups.

    ``transport`` lets tests route every request to an in-process fake.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.outbound_timeout_seconds,
            transport=self._transport,
        )

    def build_authorization_url(self, spec: ProviderSpec, state: str) -> str:
        """Get the provider's consent URL carrying ``state``.

        Raises:
            ProviderNotConfiguredError: If client id or redirect URI is unset.
        """
        creds = client_credentials(self.settings, spec, require_secret=False)
        params = {
            "client_id": creds.client_id,
            "redirect_uri": creds.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if spec.scopes:
            params["scope"] = spec.scope_separator.join(spec.scopes)
        params.update(dict(spec.authorize_params))
        return f"{spec.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, spec: ProviderSpec, code: str) -> TokenGrant:
        """Exchange an authorization code for a token grant."""
        creds = client_credentials(self.settings, spec)
        data = await self._post_token(
            spec,
            creds,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": creds.redirect_uri,
            },
        )
        return self._parse_grant(spec, data)

    async def refresh(self, spec: ProviderSpec, refresh_token: str) -> TokenGrant:
        """Obtain a new access token using a refresh token."""
        creds = client_credentials(self.settings, spec, require_redirect=False)
        data = await self._post_token(
            spec,
            creds,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return self._parse_grant(spec, data)

    async def fetch_identity(self, spec: ProviderSpec, access_token: str) -> ProviderIdentity:
        """Look up the account label and scopes for a fresh token.

        Best effort: any failure yields an empty identity.
        """
        if spec.identity is None:
            return ProviderIdentity()
        try:
            async with self._http() as client:
                return await spec.identity(client, access_token)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"Identity lookup failed for {spec.name}: {type(e).__name__}")
            return ProviderIdentity()

    async def _post_token(
        self,
        spec: ProviderSpec,
        creds: ClientCredentials,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            async with self._http() as client:
                if spec.auth_style == AuthStyle.BASIC_JSON:
                    response = await client.post(
                        spec.token_url,
                        json=params,
                        auth=(creds.client_id, creds.client_secret),
                    )
                else:
                    response = await client.post(
                        spec.token_url,
                        data={
                            **params,
                            "client_id": creds.client_id,
                            "client_secret": creds.client_secret,
                        },
                    )
        except httpx.HTTPError as e:
            logger.warning(f"Token request to {spec.name} failed: {type(e).__name__}")
            raise ProviderNetworkError(spec.name) from e

        if not response.is_success:
            logger.warning(f"Token request to {spec.name} returned {response.status_code}")
            raise ProviderHTTPError(spec.name, response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(spec.name, "invalid_json") from e
        if not isinstance(data, dict):
            raise ProviderResponseError(spec.name, "invalid_json")

        if spec.ok_flag and data.get("ok") is False:
            logger.warning(f"Token request to {spec.name} returned ok=false")
            raise ProviderResponseError(spec.name, "not_ok")

        return data

    @staticmethod
    def _parse_grant(spec: ProviderSpec, data: dict[str, Any]) -> TokenGrant:
        access_token = data.get("access_token")
        if not access_token:
            # Slack user-token installs only populate authed_user
            access_token = (data.get("authed_user") or {}).get("access_token")
        if not access_token:
            raise ProviderResponseError(spec.name, "missing_access_token")

        expires_in = data.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_in = None

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
            extras={k: data[k] for k in spec.bundle_extras if data.get(k) is not None},
        )
