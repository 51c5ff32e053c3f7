"""Server-to-server credential resolution for the automation runtime."""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse

from broker.api.dependencies import AppSettings, DbSession, constant_time_equals, is_valid_uuid
from broker.services.cipher import CipherConfigurationError, CredentialCipher
from broker.services.credential_resolver import (
    ActivationInactiveError,
    ActivationNotFoundError,
    CredentialResolver,
)

logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, **extra},
        headers=NO_CACHE_HEADERS,
    )


@router.get("/credentials")
async def get_runtime_credentials(
    request: Request,
    db: DbSession,
    settings: AppSettings,
    activation_id: Annotated[str | None, Query()] = None,
) -> JSONResponse:
    """Decrypt and return one activation's credentials.

    Authenticated by the runtime shared secret as a bearer token.
    """
    if not settings.runtime_api_key:
        logger.error("Runtime API key not configured: RUNTIME_API_KEY")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return _error(status.HTTP_401_UNAUTHORIZED, "Missing authorization")
    if not constant_time_equals(auth_header[7:], settings.runtime_api_key):
        return _error(status.HTTP_403_FORBIDDEN, "Invalid authorization")

    if not activation_id:
        return _error(status.HTTP_400_BAD_REQUEST, "activation_id is required")
    if not is_valid_uuid(activation_id):
        return _error(status.HTTP_404_NOT_FOUND, "Activation not found")

    try:
        cipher = CredentialCipher.from_settings(settings)
    except CipherConfigurationError as e:
        logger.error(f"Encryption not configured: {e.setting}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

    try:
        resolved = await CredentialResolver(db, cipher).resolve(activation_id)
    except ActivationNotFoundError:
        return _error(status.HTTP_404_NOT_FOUND, "Activation not found")
    except ActivationInactiveError as e:
        return _error(status.HTTP_403_FORBIDDEN, "Activation not active", status=e.status)

    return JSONResponse(content=resolved.to_dict(), headers=NO_CACHE_HEADERS)
