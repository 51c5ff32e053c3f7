"""Single-use OAuth state tokens."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import OAuthState

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=10)


@dataclass(frozen=True)
class StateClaims:
    """What a consumed state token was bound to."""

    user_id: str
    provider: str
    redirect_path: str | None
    activation_id: str | None


class StateTokenStore:
    """Issues and consumes OAuth state tokens.

    Consume deletes the row before returning and commits at once, so among
    concurrent callbacks carrying the same token exactly one succeeds.
    """

    def __init__(self, db: AsyncSession, ttl: timedelta = DEFAULT_TTL):
        self.db = db
        self.ttl = ttl

    async def issue(
        self,
        user_id: str,
        provider: str,
        redirect_path: str | None = None,
        activation_id: str | None = None,
    ) -> str:
        """Persist a fresh state token and return it."""
        token = secrets.token_urlsafe(32)
        self.db.add(
            OAuthState(
                state_token=token,
                user_id=user_id,
                provider=provider,
                redirect_path=redirect_path,
                activation_id=activation_id,
                expires_at=datetime.now(timezone.utc) + self.ttl,
            )
        )
        await self.db.commit()
        return token

    async def consume(self, token: str | None) -> StateClaims | None:
        """Validate and destroy a state token.

        Returns:
            The bound claims, or None if the token is unknown, expired or
            was consumed by a concurrent caller.
        """
        if not token:
            return None

        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            select(OAuthState).where(
                OAuthState.state_token == token,
                OAuthState.expires_at > now,
            )
        )
        state = result.scalar_one_or_none()
        if state is None:
            return None

        claims = StateClaims(
            user_id=state.user_id,
            provider=state.provider,
            redirect_path=state.redirect_path,
            activation_id=state.activation_id,
        )

        # The delete is the claim: only the caller that removes the row wins
        deleted = await self.db.execute(
            delete(OAuthState)
            .where(OAuthState.id == state.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if deleted.rowcount != 1:
            logger.info("State token already consumed by a concurrent request")
            return None
        return claims

    async def purge_expired(self) -> int:
        """Delete expired state rows. Returns the number removed."""
        result = await self.db.execute(
            delete(OAuthState)
            .where(OAuthState.expires_at <= datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
