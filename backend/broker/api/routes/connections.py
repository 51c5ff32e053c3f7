"""Credential connection routes for end users."""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from broker.api.dependencies import Cipher, CurrentUser, DbSession, AppSettings, is_valid_uuid
from broker.services.activations import (
    advance_ready_activations,
    check_readiness,
    get_owned_activation,
)
from broker.services.operation_log import record_operation
from broker.services.vault import ConnectionNotFoundError, CredentialVault, expiry_from

logger = logging.getLogger(__name__)

router = APIRouter()


class StoreCredentialsRequest(BaseModel):
    """Manually submitted credentials, e.g. an API key."""

    provider: str = Field(..., min_length=1, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    credentials: dict[str, Any] = Field(..., min_length=1)
    activation_id: str | None = None
    connected_email: str | None = Field(default=None, max_length=255)
    expires_in: int | None = Field(default=None, gt=0)


class ConnectionResponse(BaseModel):
    """Connection metadata (never the secret payload)."""

    id: str
    provider: str
    status: str
    activation_id: str | None
    granted_scopes: list[str] | None
    connected_email: str | None
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConnectionListResponse(BaseModel):
    connections: list[ConnectionResponse]
    total: int


class RevokeResponse(BaseModel):
    provider: str
    revoked: int


class ReadinessResponse(BaseModel):
    activation_id: str
    status: str
    required: list[str]
    connected: list[str]
    missing: list[str]
    ready: bool


@router.get("", response_model=ConnectionListResponse)
async def list_connections(
    current_user: CurrentUser,
    db: DbSession,
) -> ConnectionListResponse:
    """List the current user's connections."""
    connections = await CredentialVault(db).list_for_user(current_user.id)
    return ConnectionListResponse(
        connections=[ConnectionResponse.model_validate(c) for c in connections],
        total=len(connections),
    )


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def store_credentials(
    request: StoreCredentialsRequest,
    current_user: CurrentUser,
    db: DbSession,
    settings: AppSettings,
    cipher: Cipher,
) -> ConnectionResponse:
    """Encrypt and store manually submitted credentials."""
    if request.activation_id is not None:
        activation = None
        if is_valid_uuid(request.activation_id):
            activation = await get_owned_activation(db, request.activation_id, current_user.id)
        if activation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Activation not found",
            )

    provider = request.provider.lower()
    vault = CredentialVault(db, cipher)
    connection = await vault.upsert(
        current_user.id,
        provider,
        request.credentials,
        activation_id=request.activation_id,
        connected_email=request.connected_email,
        expires_at=expiry_from(request.expires_in),
    )

    await record_operation(
        db,
        "connections",
        "info",
        f"MANUAL_CREDENTIALS_STORED: {provider}",
        details={"provider": provider, "connection_id": connection.id},
        user_id=current_user.id,
    )
    await advance_ready_activations(db, current_user.id, settings.queue_default_max_attempts)
    await db.refresh(connection)

    return ConnectionResponse.model_validate(connection)


@router.delete("/{provider}", response_model=RevokeResponse)
async def revoke_connection(
    provider: str,
    current_user: CurrentUser,
    db: DbSession,
) -> RevokeResponse:
    """Revoke the current user's connection to a provider."""
    provider = provider.lower()
    try:
        revoked = await CredentialVault(db).revoke(current_user.id, provider)
    except ConnectionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Connection not found",
        )

    await record_operation(
        db,
        "connections",
        "info",
        f"CONNECTION_REVOKED: {provider}",
        details={"provider": provider, "revoked": revoked},
        user_id=current_user.id,
    )
    return RevokeResponse(provider=provider, revoked=revoked)


@router.get("/readiness", response_model=ReadinessResponse)
async def get_readiness(
    current_user: CurrentUser,
    db: DbSession,
    activation_id: Annotated[str, Query()],
) -> ReadinessResponse:
    """Report which required providers an activation is still missing."""
    activation = None
    if is_valid_uuid(activation_id):
        activation = await get_owned_activation(db, activation_id, current_user.id)
    if activation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Activation not found",
        )

    readiness = await check_readiness(db, activation)
    return ReadinessResponse(
        activation_id=activation.id,
        status=activation.status,
        required=readiness.required,
        connected=readiness.connected,
        missing=readiness.missing,
        ready=readiness.ready,
    )
