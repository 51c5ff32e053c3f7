"""User model."""

from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker.models.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from broker.models.activation import Activation
    from broker.models.credential_connection import CredentialConnection


class UserRole(str, Enum):
    """Role of an authenticated principal."""

    USER = "user"
    ADMIN = "admin"


class User(Base, UUIDMixin, TimestampMixin):
    """Principal that owns connections, activations and jobs.

    Accounts are created by the external identity service; this service only
    reads them to authorize requests.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.USER.value
    )

    # Relationships
    activations: Mapped[list["Activation"]] = relationship(
        "Activation", back_populates="user"
    )
    connections: Mapped[list["CredentialConnection"]] = relationship(
        "CredentialConnection", back_populates="user"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<User {self.email}>"
