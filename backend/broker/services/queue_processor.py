"""Drains a bounded batch of provisioning jobs per invocation."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from broker.config import Settings
from broker.models import JobStatus, ProvisioningJob
from broker.services.action_dispatcher import ActionDispatcher, DispatchError
from broker.services.operation_log import record_operation, truncate
from broker.services.provisioning_queue import ProvisioningQueue
from broker.services.retry_policy import Outcome, RetryPolicy, Verdict

logger = logging.getLogger(__name__)

FUNCTION_NAME = "queue-processor"


@dataclass
class JobResult:
    id: str
    action: str
    status: str
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "action": self.action, "status": self.status}
        if self.error is not None:
            data["error"] = self.error
        return data


class QueueProcessor:
    """Claims jobs, dispatches each, and records the outcome.

    Every outcome is committed job by job so a crash mid-batch never loses
    the result of a job that already ran.
    """

    def __init__(self, db: AsyncSession, settings: Settings, dispatcher: ActionDispatcher):
        self.db = db
        self.settings = settings
        self.dispatcher = dispatcher
        self.queue = ProvisioningQueue(db, settings.queue_default_max_attempts)

    def policy_for(self, job: ProvisioningJob) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=job.max_attempts,
            base_delay_seconds=self.settings.queue_backoff_base_seconds,
            max_delay_seconds=self.settings.queue_backoff_max_seconds,
        )

    async def run(self, batch_size: int | None = None) -> list[JobResult]:
        """Process one batch. Claim failures propagate to the caller.

        A claimed job always leaves ``processing``: if its outcome cannot be
        written, the session is rolled back and the attempt is recorded as a
        failure instead.
        """
        jobs = await self.queue.claim(batch_size or self.settings.queue_batch_size)
        results = []
        for job in jobs:
            try:
                result = await self.process(job)
            except SQLAlchemyError as e:
                logger.error(f"Job {job.id} outcome not recorded: {type(e).__name__}")
                await self.db.rollback()
                await self.db.refresh(job)
                result = await self._record_failure(job, f"Outcome not recorded: {type(e).__name__}")
            results.append(result)
        return results

    async def process(self, job: ProvisioningJob) -> JobResult:
        """Dispatch one claimed job and persist its outcome."""
        try:
            await self.dispatcher.dispatch(job)
        except DispatchError as e:
            return await self._record_failure(job, str(e))
        except Exception as e:
            logger.error(f"Job {job.id} ({job.action}) crashed during dispatch: {type(e).__name__}")
            return await self._record_failure(job, f"Unexpected error: {type(e).__name__}")

        now = datetime.now(timezone.utc)
        job.status = JobStatus.COMPLETED.value
        job.completed_at = now
        job.last_error = None
        await record_operation(
            self.db,
            FUNCTION_NAME,
            "info",
            f"QUEUE_JOB_COMPLETE: {job.action} for user {job.user_id}",
            details={"job_id": job.id, "action": job.action, "attempt": job.attempt_count + 1},
            user_id=job.user_id,
        )
        await self.db.commit()
        logger.info(f"Job {job.id} ({job.action}) completed")
        return JobResult(id=job.id, action=job.action, status=JobStatus.COMPLETED.value)

    async def _record_failure(self, job: ProvisioningJob, error: str) -> JobResult:
        attempt = job.attempt_count + 1
        policy = self.policy_for(job)
        decision = policy.decide(Outcome.TRANSIENT_FAILURE, attempt)
        # Reported even on the final attempt, as the delay a retry would have had
        retry_delay = policy.backoff_delay(attempt)

        job.attempt_count = min(attempt, job.max_attempts)
        job.last_error = truncate(error, 1000)
        if decision.verdict == Verdict.FAIL:
            job.status = JobStatus.FAILED.value
            level = "error"
            label = "FAILED"
        else:
            job.status = JobStatus.RETRYING.value
            job.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=decision.delay_seconds)
            level = "warn"
            label = "RETRYING"

        await record_operation(
            self.db,
            FUNCTION_NAME,
            level,
            f"QUEUE_JOB_{label}: {job.action}: {truncate(error)}",
            details={
                "job_id": job.id,
                "action": job.action,
                "attempt": attempt,
                "retry_in_seconds": retry_delay,
            },
            user_id=job.user_id,
        )
        await self.db.commit()
        logger.warning(f"Job {job.id} ({job.action}) failed attempt {attempt}: {truncate(error)}")
        return JobResult(id=job.id, action=job.action, status=job.status, error=error)
