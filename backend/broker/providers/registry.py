"""Provider strategy table shared by the OAuth callback and the refresh sweeper."""

import httpx

from broker.config import Settings
from broker.providers.interfaces import (
    AuthStyle,
    ClientCredentials,
    ProviderIdentity,
    ProviderNotConfiguredError,
    ProviderSpec,
)

NOTION_VERSION = "2022-06-28"


def _split_scopes(value) -> list[str] | None:
    if isinstance(value, list):
        return [str(s) for s in value]
    if isinstance(value, str) and value:
        return [s for s in value.replace(",", " ").split() if s]
    return None


async def _google_identity(client: httpx.AsyncClient, access_token: str) -> ProviderIdentity:
    response = await client.get(
        "https://www.googleapis.com/oauth2/v2/userinfo",
        headers={"Authorization": f"Bearer {access_token}"},
    )
    response.raise_for_status()
    data = response.json()
    return ProviderIdentity(label=data.get("email"))


async def _hubspot_identity(client: httpx.AsyncClient, access_token: str) -> ProviderIdentity:
    # HubSpot's token introspection takes the token in the path
    response = await client.get(
        f"https://api.hubapi.com/oauth/v1/access-tokens/{access_token}"
    )
    response.raise_for_status()
    data = response.json()
    return ProviderIdentity(label=data.get("user"), scopes=_split_scopes(data.get("scopes")))


async def _slack_identity(client: httpx.AsyncClient, access_token: str) -> ProviderIdentity:
    response = await client.get(
        "https://slack.com/api/auth.test",
        headers={"Authorization": f"Bearer {access_token}"},
    )
    response.raise_for_status()
    data = response.json()
    if not data.get("ok", True):
        return ProviderIdentity()
    return ProviderIdentity(label=data.get("user"))


async def _notion_identity(client: httpx.AsyncClient, access_token: str) -> ProviderIdentity:
    response = await client.get(
        "https://api.notion.com/v1/users/me",
        headers={
            "Authorization": f"Bearer {access_token}",
            "Notion-Version": NOTION_VERSION,
        },
    )
    response.raise_for_status()
    data = response.json()
    person = data.get("person") or (
        ((data.get("bot") or {}).get("owner") or {}).get("user") or {}
    ).get("person") or {}
    return ProviderIdentity(label=person.get("email"))


PROVIDERS: dict[str, ProviderSpec] = {
    "google": ProviderSpec(
        name="google",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=(
            "openid",
            "email",
            "profile",
            "https://www.googleapis.com/auth/gmail.send",
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/spreadsheets",
        ),
        authorize_params=(("access_type", "offline"), ("prompt", "consent")),
        identity=_google_identity,
    ),
    "hubspot": ProviderSpec(
        name="hubspot",
        authorize_url="https://app.hubspot.com/oauth/authorize",
        token_url="https://api.hubapi.com/oauth/v1/token",
        scopes=(
            "crm.objects.contacts.read",
            "crm.objects.contacts.write",
            "crm.objects.deals.read",
            "crm.objects.deals.write",
            "crm.objects.companies.read",
            "crm.objects.companies.write",
        ),
        identity=_hubspot_identity,
    ),
    "slack": ProviderSpec(
        name="slack",
        authorize_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        scopes=("channels:read", "chat:write", "users:read", "users:read.email"),
        scope_separator=",",
        bundle_extras=("authed_user",),
        ok_flag=True,
        identity=_slack_identity,
    ),
    "notion": ProviderSpec(
        name="notion",
        authorize_url="https://api.notion.com/v1/oauth/authorize",
        token_url="https://api.notion.com/v1/oauth/token",
        auth_style=AuthStyle.BASIC_JSON,
        supports_refresh=False,
        authorize_params=(("owner", "user"),),
        bundle_extras=("workspace_id",),
        identity=_notion_identity,
    ),
}


def get_provider_spec(name: str | None) -> ProviderSpec | None:
    """Look up a provider by identifier (case-insensitive)."""
    if not name:
        return None
    return PROVIDERS.get(name.lower())


def supported_providers() -> list[str]:
    return sorted(PROVIDERS)


def client_credentials(
    settings: Settings,
    spec: ProviderSpec,
    require_secret: bool = True,
    require_redirect: bool = True,
) -> ClientCredentials:
    """Read a provider's client registration from settings.

    Raises:
        ProviderNotConfiguredError: Naming every missing setting.
    """
    id_name, secret_name, redirect_name = spec.setting_names()
    client_id = getattr(settings, id_name, None)
    client_secret = getattr(settings, secret_name, None)
    redirect_uri = getattr(settings, redirect_name, None)

    missing = [
        name.upper()
        for name, value in (
            (id_name, client_id),
            (secret_name, client_secret if require_secret else "unused"),
            (redirect_name, redirect_uri if require_redirect else "unused"),
        )
        if not value
    ]
    if missing:
        raise ProviderNotConfiguredError(spec.name, missing)

    return ClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
    )
