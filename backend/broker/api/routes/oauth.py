"""OAuth connect routes."""

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from broker.api.dependencies import (
    AppSettings,
    CurrentUser,
    DbSession,
    Providers,
    is_valid_uuid,
)
from broker.providers import (
    ProviderNotConfiguredError,
    client_credentials,
    get_provider_spec,
    supported_providers,
)
from broker.services.activations import get_owned_activation
from broker.services.oauth_callback import OAuthCallbackHandler
from broker.services.state_tokens import StateTokenStore

logger = logging.getLogger(__name__)

router = APIRouter()


class OAuthStartResponse(BaseModel):
    """Where to send the browser to grant access."""

    authorization_url: str
    state: str


@router.get("/start", response_model=OAuthStartResponse)
async def start_oauth(
    current_user: CurrentUser,
    db: DbSession,
    settings: AppSettings,
    client: Providers,
    provider: Annotated[str | None, Query()] = None,
    redirect_path: Annotated[str | None, Query()] = None,
    activation_id: Annotated[str | None, Query()] = None,
) -> OAuthStartResponse:
    """Issue a state token and build the provider's consent URL."""
    spec = get_provider_spec(provider)
    if spec is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid provider", "supported": supported_providers()},
        )

    if activation_id is not None:
        activation = None
        if is_valid_uuid(activation_id):
            activation = await get_owned_activation(db, activation_id, current_user.id)
        if activation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Activation not found",
            )

    store = StateTokenStore(db, timedelta(minutes=settings.oauth_state_ttl_minutes))
    try:
        client_credentials(settings, spec, require_secret=False)
    except ProviderNotConfiguredError as e:
        logger.error(f"OAuth not configured for {spec.name}: missing {', '.join(e.missing)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"OAuth not configured for {spec.name}",
        )

    state = await store.issue(
        user_id=current_user.id,
        provider=spec.name,
        redirect_path=redirect_path or settings.default_redirect_path,
        activation_id=activation_id,
    )
    logger.info(f"OAuth started for user {current_user.id}, provider {spec.name}")
    return OAuthStartResponse(
        authorization_url=client.build_authorization_url(spec, state),
        state=state,
    )


@router.get("/callback")
async def oauth_callback(
    db: DbSession,
    settings: AppSettings,
    client: Providers,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    """Complete the exchange. Always answers with a redirect."""
    handler = OAuthCallbackHandler(db, settings, client)
    try:
        url = await handler.handle(code, state, error)
    except Exception as e:
        # Only the type name: messages may carry provider or token details
        logger.error(f"OAuth callback error: {type(e).__name__}")
        await db.rollback()
        url = handler.error_url("internal_error")
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
