"""API dependencies for authentication, configuration and database access."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.config import Settings, get_settings
from broker.db.session import get_db
from broker.models import User
from broker.providers import ProviderClient
from broker.services.action_dispatcher import ActionDispatcher
from broker.services.cipher import CipherConfigurationError, CredentialCipher

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

AppSettings = Annotated[Settings, Depends(get_settings)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


def constant_time_equals(provided: str | None, expected: str | None) -> bool:
    """Compare two secrets without short-circuiting on the first mismatch.

    Unequal lengths are rejected before any byte comparison.
    """
    if not provided or not expected:
        return False
    a = provided.encode()
    b = expected.encode()
    if len(a) != len(b):
        return False
    mismatch = 0
    for x, y in zip(a, b):
        mismatch |= x ^ y
    return mismatch == 0


def is_valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def create_access_token(
    user_id: str,
    secret_key: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a session JWT for a user."""
    if expires_delta is None:
        expires_delta = timedelta(hours=24)

    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(to_encode, secret_key, algorithm="HS256")


async def _user_from_token(token: str, db: AsyncSession, settings: Settings) -> User | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except JWTError:
        return None
    user_id: str | None = payload.get("sub")
    if not is_valid_uuid(user_id):
        return None
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: DbSession,
    settings: AppSettings,
) -> User:
    """Get the current authenticated user from JWT token."""
    user = await _user_from_token(credentials.credentials, db, settings)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def require_admin(current_user: CurrentUser) -> User:
    """Allow only admin-role users."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


AdminUser = Annotated[User, Depends(require_admin)]


def require_service_key(request: Request, settings: AppSettings) -> None:
    """Accept only the deployment's service role key.

    Presented as ``Authorization: Bearer <key>`` or ``X-Admin-Key: <key>``.
    End-user session tokens are never accepted here.
    """
    expected = settings.service_role_key
    auth_header = request.headers.get("Authorization", "")
    bearer = auth_header[7:] if auth_header.startswith("Bearer ") else None
    admin_key = request.headers.get("X-Admin-Key")

    if not (constant_time_equals(bearer, expected) or constant_time_equals(admin_key, expected)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: service role required",
        )


async def require_cron_or_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
    db: DbSession,
    settings: AppSettings,
) -> str:
    """Authorize a queue drain: the cron secret or an admin user.

    Returns:
        ``"cron"`` or the admin user's id, for logging.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization",
        )
    if constant_time_equals(credentials.credentials, settings.cron_secret):
        return "cron"

    user = await _user_from_token(credentials.credentials, db, settings)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user.id


def get_cipher(settings: AppSettings) -> CredentialCipher:
    """Cipher over the configured master key; 500 if it is unusable."""
    try:
        return CredentialCipher.from_settings(settings)
    except CipherConfigurationError as e:
        logger.error(f"Encryption not configured: {e.setting}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )


def get_provider_client(settings: AppSettings) -> ProviderClient:
    return ProviderClient(settings)


def get_action_dispatcher(settings: AppSettings) -> ActionDispatcher:
    return ActionDispatcher(settings)


Cipher = Annotated[CredentialCipher, Depends(get_cipher)]
Providers = Annotated[ProviderClient, Depends(get_provider_client)]
Dispatcher = Annotated[ActionDispatcher, Depends(get_action_dispatcher)]
