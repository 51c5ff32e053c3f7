"""Operation log model."""

from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, event, func
from sqlalchemy.orm import Mapped, mapped_column

from broker.models.base import Base, StringUUID, UTCDateTime


class OperationLog(Base):
    """Append-only log of credential and queue operations.

    Written by every component for audit and operator follow-up. Details
    are sanitized before insert and never contain secret material.
    """

    __tablename__ = "operation_logs"
    __table_args__ = (
        Index("ix_operation_logs_function_timestamp", "function_name", "timestamp"),
    )

    id: Mapped[str] = mapped_column(StringUUID(), primary_key=True)
    function_name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON)
    user_id: Mapped[str | None] = mapped_column(StringUUID())
    status_code: Mapped[int | None] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OperationLog {self.function_name} {self.level}>"


# Prevent updates and deletes on operation logs at the ORM level
@event.listens_for(OperationLog, "before_update")
def prevent_operation_log_update(mapper, connection, target):
    """Prevent updates to operation logs."""
    raise ValueError("Operation logs cannot be updated")


@event.listens_for(OperationLog, "before_delete")
def prevent_operation_log_delete(mapper, connection, target):
    """Prevent deletion of operation logs."""
    raise ValueError("Operation logs cannot be deleted")
