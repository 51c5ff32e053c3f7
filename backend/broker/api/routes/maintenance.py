"""Cross-tenant maintenance routes: token refresh sweep and key rotation."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from broker.api.dependencies import (
    AdminUser,
    AppSettings,
    DbSession,
    Providers,
    get_cipher,
    require_service_key,
)
from broker.services.key_rotation import RotationConfigurationError, rotate_master_key
from broker.services.refresh_sweeper import RefreshSweeper
from broker.services.state_tokens import StateTokenStore

logger = logging.getLogger(__name__)

router = APIRouter()


class SweepSummary(BaseModel):
    total: int
    refreshed: int
    expired: int
    errors: int


class SweepResultItem(BaseModel):
    id: str
    provider: str
    status: str
    reason: str | None = None


class RefreshTokensResponse(BaseModel):
    summary: SweepSummary
    results: list[SweepResultItem]
    purged_states: int


class RotateKeyRequest(BaseModel):
    dry_run: bool = True
    old_key_version: int = Field(default=1, ge=1)


class RotateKeyResponse(BaseModel):
    dry_run: bool
    rotated: int
    errors: list[str]
    old_key_version: int
    new_key_version: int
    message: str


@router.post(
    "/refresh-tokens",
    response_model=RefreshTokensResponse,
    dependencies=[Depends(require_service_key)],
)
async def refresh_tokens(
    db: DbSession,
    settings: AppSettings,
    client: Providers,
) -> RefreshTokensResponse:
    """Refresh every token expiring within the lookahead window."""
    cipher = get_cipher(settings)

    report = await RefreshSweeper(db, settings, client, cipher).run()
    purged = await StateTokenStore(db).purge_expired()
    if purged:
        logger.info(f"Purged {purged} expired OAuth state(s)")

    return RefreshTokensResponse(
        summary=SweepSummary(**report.summary),
        results=[SweepResultItem(**entry.to_dict()) for entry in report.entries],
        purged_states=purged,
    )


@router.post("/rotate-key", response_model=RotateKeyResponse)
async def rotate_key(
    request: RotateKeyRequest,
    admin: AdminUser,
    db: DbSession,
    settings: AppSettings,
) -> RotateKeyResponse:
    """Re-encrypt stored payloads under the next master key."""
    try:
        result = await rotate_master_key(
            db,
            current_key=settings.credential_encryption_key,
            next_key=settings.credential_encryption_key_next,
            from_version=request.old_key_version,
            dry_run=request.dry_run,
            actor_id=admin.id,
        )
    except RotationConfigurationError as e:
        logger.error(f"Key rotation misconfigured: {e.setting}")
        if e.setting == "CREDENTIAL_ENCRYPTION_KEY_NEXT":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Next encryption key not configured. Set it before rotating.",
            )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )

    return RotateKeyResponse(
        dry_run=result.dry_run,
        rotated=result.rotated,
        errors=result.errors,
        old_key_version=result.from_version,
        new_key_version=result.to_version,
        message=result.message,
    )
