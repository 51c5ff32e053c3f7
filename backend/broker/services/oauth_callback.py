"""Completes the three-legged OAuth exchange and stores the credential."""

import logging
import re
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from broker.config import Settings
from broker.providers import (
    ProviderClient,
    ProviderError,
    ProviderNotConfiguredError,
    client_credentials,
    get_provider_spec,
)
from broker.services.activations import advance_ready_activations
from broker.services.cipher import CipherConfigurationError, CredentialCipher
from broker.services.operation_log import record_operation
from broker.services.state_tokens import StateTokenStore
from broker.services.vault import CredentialVault, expiry_from

logger = logging.getLogger(__name__)

# Provider error codes are echoed to the UI only when they look like one
PROVIDER_ERROR_PATTERN = re.compile(r"^[a-z_]{1,64}$")
SCOPE_SPLIT = re.compile(r"[,\s]+")


def validate_redirect_path(path: str | None, default: str = "/integrations") -> str:
    """Return ``path`` if it is a safe same-site path, else ``default``.

    Rejects absolute and protocol-relative URLs, traversal, backslashes,
    control characters and javascript:/data: pseudo-schemes.
    """
    if not path or not path.startswith("/"):
        return default
    lowered = path.lower()
    if "://" in path or "http" in lowered:
        return default
    if "//" in path or ".." in path or "\\" in path:
        return default
    if "javascript:" in lowered or "data:" in lowered:
        return default
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in path):
        return default
    return path


class CallbackError(Exception):
    """A callback failure carrying the reason code shown to the user."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class OAuthCallbackHandler:
    """Turns a provider redirect into a stored connection and a browser redirect."""

    def __init__(self, db: AsyncSession, settings: Settings, client: ProviderClient):
        self.db = db
        self.settings = settings
        self.client = client

    def error_url(self, code: str) -> str:
        return f"{self.settings.site_url}{self.settings.default_redirect_path}?" + urlencode(
            {"error": code}
        )

    async def handle(self, code: str | None, state: str | None, error: str | None) -> str:
        """Process one callback and return the URL to redirect the browser to.

        Expected failures come back as error URLs; anything unexpected
        propagates to the caller.
        """
        try:
            return await self._complete(code, state, error)
        except CallbackError as e:
            return self.error_url(e.code)

    async def _complete(self, code: str | None, state: str | None, error: str | None) -> str:
        if error:
            logger.info("OAuth provider returned an error")
            raise CallbackError(error if PROVIDER_ERROR_PATTERN.match(error) else "provider_error")
        if not code or not state:
            raise CallbackError("missing_params")

        claims = await StateTokenStore(self.db).consume(state)
        if claims is None:
            logger.warning("Invalid or expired OAuth state")
            raise CallbackError("invalid_state")

        # The provider comes from the state row, never from the request
        spec = get_provider_spec(claims.provider)
        if spec is None:
            raise CallbackError("invalid_provider")

        try:
            client_credentials(self.settings, spec)
            cipher = CredentialCipher.from_settings(self.settings)
        except ProviderNotConfiguredError as e:
            logger.error(f"OAuth not configured for {spec.name}: missing {', '.join(e.missing)}")
            raise CallbackError("config_error") from None
        except CipherConfigurationError as e:
            logger.error(f"Encryption not configured: {e.setting}")
            raise CallbackError("config_error") from None

        try:
            grant = await self.client.exchange_code(spec, code)
        except ProviderError as e:
            logger.warning(f"Token exchange failed for {spec.name}: {type(e).__name__}")
            raise CallbackError("token_exchange_failed") from None

        identity = await self.client.fetch_identity(spec, grant.access_token)
        if identity.scopes:
            scopes = identity.scopes
        elif grant.scope:
            scopes = [s for s in SCOPE_SPLIT.split(grant.scope) if s]
        else:
            scopes = []

        # Connect once: account-level row reused across all activations
        vault = CredentialVault(self.db, cipher)
        connection = await vault.upsert(
            claims.user_id,
            spec.name,
            grant.to_bundle(),
            activation_id=None,
            any_scope=True,
            granted_scopes=scopes,
            connected_email=identity.label,
            expires_at=expiry_from(grant.expires_in),
        )

        await record_operation(
            self.db,
            "oauth-callback",
            "info",
            f"OAuth Connected: {spec.name}",
            details={
                "provider": spec.name,
                "success": True,
                "connected_email": identity.label,
                "connection_id": connection.id,
            },
            user_id=claims.user_id,
        )
        await advance_ready_activations(
            self.db, claims.user_id, self.settings.queue_default_max_attempts
        )
        await self.db.commit()
        logger.info(f"OAuth completed: user={claims.user_id}, provider={spec.name}, success=true")

        if claims.activation_id:
            return f"{self.settings.site_url}/connect/{claims.activation_id}?" + urlencode(
                {"oauth_success": "true", "provider": spec.name}
            )
        path = validate_redirect_path(claims.redirect_path, self.settings.default_redirect_path)
        separator = "&" if "?" in path else "?"
        return f"{self.settings.site_url}{path}{separator}" + urlencode({"connected": spec.name})
