"""Durable provisioning job queue with claim-with-lock semantics."""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from broker.models import CLAIMABLE_STATUSES, JobAction, JobStatus, ProvisioningJob

logger = logging.getLogger(__name__)


class UnknownActionError(ValueError):
    """Raised when enqueueing an action no handler exists for."""

    pass


class ProvisioningQueue:
    """Enqueue and claim provisioning jobs."""

    def __init__(self, db: AsyncSession, default_max_attempts: int = 3):
        self.db = db
        self.default_max_attempts = default_max_attempts

    async def enqueue(
        self,
        user_id: str,
        action: str,
        payload: dict[str, Any] | None = None,
        activation_id: str | None = None,
        max_attempts: int | None = None,
        scheduled_at: datetime | None = None,
    ) -> ProvisioningJob:
        """Add a job in the queued state."""
        try:
            JobAction(action)
        except ValueError:
            raise UnknownActionError(f"Unknown action: {action}") from None

        job = ProvisioningJob(
            user_id=user_id,
            activation_id=activation_id,
            action=action,
            payload=payload or {},
            status=JobStatus.QUEUED.value,
            attempt_count=0,
            max_attempts=max_attempts or self.default_max_attempts,
            scheduled_at=scheduled_at or datetime.now(timezone.utc),
            last_error=None,
            completed_at=None,
        )
        self.db.add(job)
        await self.db.flush()
        logger.info(f"Enqueued {action} job {job.id} for user {user_id}")
        return job

    async def claim(self, limit: int) -> list[ProvisioningJob]:
        """Atomically claim up to ``limit`` eligible jobs.

        Eligible rows are locked with SKIP LOCKED so concurrent claimers never
        see each other's candidates, and the flip to processing is conditional
        on the row still being claimable. The claim is committed before
        returning so no other caller can take the same jobs.
        """
        now = datetime.now(timezone.utc)
        claim_token = uuid4().hex

        result = await self.db.execute(
            select(ProvisioningJob.id)
            .where(
                ProvisioningJob.status.in_(CLAIMABLE_STATUSES),
                ProvisioningJob.scheduled_at <= now,
            )
            .order_by(ProvisioningJob.scheduled_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidate_ids = list(result.scalars().all())
        if not candidate_ids:
            await self.db.commit()
            return []

        await self.db.execute(
            update(ProvisioningJob)
            .where(
                ProvisioningJob.id.in_(candidate_ids),
                ProvisioningJob.status.in_(CLAIMABLE_STATUSES),
            )
            .values(
                status=JobStatus.PROCESSING.value,
                claimed_by=claim_token,
                started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            select(ProvisioningJob)
            .where(ProvisioningJob.claimed_by == claim_token)
            .order_by(ProvisioningJob.scheduled_at)
            .execution_options(populate_existing=True)
        )
        jobs = list(result.scalars().all())
        await self.db.commit()

        if jobs:
            logger.info(f"Claimed {len(jobs)} provisioning job(s)")
        return jobs
