"""OAuth state model for CSRF protection during the authorization dance."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from broker.models.base import Base, StringUUID, UTCDateTime, UUIDMixin


class OAuthState(Base, UUIDMixin):
    """Single-use nonce binding a user, provider and redirect intent.

    Deleted on first successful consume; never honoured after ``expires_at``.
    """

    __tablename__ = "oauth_states"

    state_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(StringUUID(), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    redirect_path: Mapped[str | None] = mapped_column(String(2048))
    activation_id: Mapped[str | None] = mapped_column(StringUUID())
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<OAuthState {self.provider} for user {self.user_id}>"
