"""Activation model."""

from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker.models.base import Base, StringUUID, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from broker.models.user import User


class ActivationStatus(str, Enum):
    """Lifecycle status of an activation."""

    PENDING = "pending"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    IN_BUILD = "in_build"
    TESTING = "testing"
    ACTIVE = "active"
    LIVE = "live"
    PAUSED = "paused"
    NEEDS_ATTENTION = "needs_attention"
    COMPLETED = "completed"


# Statuses in which the automation runtime may receive live credentials
OPERATIONAL_STATUSES = frozenset(
    {
        ActivationStatus.LIVE.value,
        ActivationStatus.ACTIVE.value,
        ActivationStatus.IN_BUILD.value,
        ActivationStatus.TESTING.value,
    }
)

# Statuses that advance to in_build once every required provider is connected
AWAITING_CONNECTION_STATUSES = frozenset(
    {
        ActivationStatus.PENDING.value,
        ActivationStatus.AWAITING_CREDENTIALS.value,
    }
)


class Activation(Base, UUIDMixin, TimestampMixin):
    """One customer's instance of an automation product.

    Rows are written by the purchase flow; this service reads them and only
    advances the status when all required connections are satisfied.
    """

    __tablename__ = "activations"

    user_id: Mapped[str] = mapped_column(
        StringUUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    automation_slug: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ActivationStatus.PENDING.value
    )
    required_providers: Mapped[list | None] = mapped_column(JSON)
    config: Mapped[dict | None] = mapped_column(JSON)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="activations")

    @property
    def is_operational(self) -> bool:
        return self.status in OPERATIONAL_STATUSES

    def required_provider_names(self) -> list[str]:
        """Lower-cased required provider identifiers, empty if none are listed."""
        return [p.lower() for p in (self.required_providers or []) if p]

    def __repr__(self) -> str:
        return f"<Activation {self.automation_slug} ({self.status})>"
