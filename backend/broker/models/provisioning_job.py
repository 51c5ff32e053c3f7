"""Provisioning job model for the asynchronous setup queue."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from broker.models.base import Base, StringUUID, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class JobStatus(str, Enum):
    """Status of a provisioning job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class JobAction(str, Enum):
    """Downstream action a job drives."""

    PROVISION_VPS = "provision_vps"
    DEPLOY_AGENTS = "deploy_agents"
    ACTIVATE_WORKFLOWS = "activate_workflows"


CLAIMABLE_STATUSES = (JobStatus.QUEUED.value, JobStatus.RETRYING.value)


class ProvisioningJob(Base, UUIDMixin, TimestampMixin):
    """Durable unit of asynchronous tenant setup work.

    State machine: queued -> processing -> completed | retrying | failed,
    and retrying -> processing once ``scheduled_at`` has passed.
    """

    __tablename__ = "provisioning_jobs"
    __table_args__ = (
        Index("ix_provisioning_jobs_status_scheduled", "status", "scheduled_at"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_provisioning_jobs_attempts"),
    )

    user_id: Mapped[str] = mapped_column(StringUUID(), nullable=False)
    activation_id: Mapped[str | None] = mapped_column(StringUUID())
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Earliest time the job may be claimed; pushed forward by backoff
    scheduled_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    claimed_by: Mapped[str | None] = mapped_column(String(64))
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    last_error: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<ProvisioningJob {self.action} ({self.status}) attempt {self.attempt_count}>"
