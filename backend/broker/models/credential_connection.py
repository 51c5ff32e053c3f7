"""Credential connection model for storing encrypted provider credentials."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker.models.base import Base, StringUUID, TimestampMixin, UTCDateTime, UUIDMixin

if TYPE_CHECKING:
    from broker.models.user import User


class ConnectionStatus(str, Enum):
    """Status of a credential connection."""

    CONNECTED = "connected"
    EXPIRED = "expired"
    REVOKED = "revoked"
    ARCHIVED = "archived"
    ERROR = "error"


# Rows in these states are never reused by an upsert
RETIRED_STATUSES = frozenset(
    {ConnectionStatus.REVOKED.value, ConnectionStatus.ARCHIVED.value}
)


class CredentialConnection(Base, UUIDMixin, TimestampMixin):
    """Stores one principal's encrypted credentials for one provider.

    ``activation_id`` is null for account-level connections, which are reused
    by every activation the user owns. The payload is an AES-256-GCM encrypted
    JSON token bundle; ciphertext, IV and tag are always written together.
    """

    __tablename__ = "credential_connections"
    __table_args__ = (
        Index("ix_credential_connections_user_provider", "user_id", "provider"),
        Index("ix_credential_connections_status_expires", "status", "expires_at"),
        CheckConstraint(
            "(encrypted_payload IS NULL AND encryption_iv IS NULL AND encryption_tag IS NULL)"
            " OR (encrypted_payload IS NOT NULL AND encryption_iv IS NOT NULL"
            " AND encryption_tag IS NOT NULL)",
            name="ck_credential_connections_payload_complete",
        ),
    )

    user_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    activation_id: Mapped[str | None] = mapped_column(
        StringUUID(),
        ForeignKey("activations.id", ondelete="CASCADE"),
    )

    # google, hubspot, slack, notion, or any opaque identifier
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionStatus.CONNECTED.value
    )

    # Encrypted token bundle
    encrypted_payload: Mapped[str | None] = mapped_column(Text)
    encryption_iv: Mapped[str | None] = mapped_column(String(32))
    encryption_tag: Mapped[str | None] = mapped_column(String(32))
    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Non-secret metadata
    granted_scopes: Mapped[list | None] = mapped_column(JSON)
    connected_email: Mapped[str | None] = mapped_column(String(255))
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="connections")

    @property
    def has_payload(self) -> bool:
        return bool(self.encrypted_payload and self.encryption_iv and self.encryption_tag)

    def set_payload(self, ciphertext: str, iv: str, tag: str) -> None:
        """Replace the encrypted bundle."""
        self.encrypted_payload = ciphertext
        self.encryption_iv = iv
        self.encryption_tag = tag

    def clear_payload(self) -> None:
        """Drop the encrypted bundle."""
        self.encrypted_payload = None
        self.encryption_iv = None
        self.encryption_tag = None

    def __repr__(self) -> str:
        return f"<CredentialConnection {self.provider} ({self.status}) for user {self.user_id}>"
