"""Provisioning queue routes."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from broker.api.dependencies import (
    AdminUser,
    AppSettings,
    DbSession,
    Dispatcher,
    is_valid_uuid,
    require_cron_or_admin,
)
from broker.models import JobAction
from broker.services.provisioning_queue import ProvisioningQueue
from broker.services.queue_processor import QueueProcessor

logger = logging.getLogger(__name__)

router = APIRouter()


class EnqueueJobRequest(BaseModel):
    """Request to add a provisioning job."""

    user_id: str
    action: JobAction
    payload: dict[str, Any] = Field(default_factory=dict)
    activation_id: str | None = None
    max_attempts: int | None = Field(default=None, ge=1, le=20)
    delay_seconds: int = Field(default=0, ge=0)


class JobResponse(BaseModel):
    """Provisioning job state."""

    id: str
    user_id: str
    activation_id: str | None
    action: str
    status: str
    attempt_count: int
    max_attempts: int
    scheduled_at: datetime
    last_error: str | None
    completed_at: datetime | None

    class Config:
        from_attributes = True


class ProcessResultItem(BaseModel):
    id: str
    action: str
    status: str
    error: str | None = None


class ProcessQueueResponse(BaseModel):
    processed: int
    results: list[ProcessResultItem]


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    request: EnqueueJobRequest,
    admin: AdminUser,
    db: DbSession,
    settings: AppSettings,
) -> JobResponse:
    """Enqueue a provisioning job (admin only)."""
    for value in (request.user_id, request.activation_id):
        if value is not None and not is_valid_uuid(value):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid identifier",
            )

    queue = ProvisioningQueue(db, settings.queue_default_max_attempts)
    job = await queue.enqueue(
        user_id=request.user_id,
        action=request.action.value,
        payload=request.payload,
        activation_id=request.activation_id,
        max_attempts=request.max_attempts,
        scheduled_at=datetime.now(timezone.utc) + timedelta(seconds=request.delay_seconds),
    )
    logger.info(f"Admin {admin.id} enqueued {job.action} job {job.id}")
    return JobResponse.model_validate(job)


@router.post("/process", response_model=ProcessQueueResponse)
async def process_queue(
    caller: Annotated[str, Depends(require_cron_or_admin)],
    db: DbSession,
    settings: AppSettings,
    dispatcher: Dispatcher,
) -> ProcessQueueResponse:
    """Claim and run one batch of due jobs."""
    processor = QueueProcessor(db, settings, dispatcher)
    try:
        results = await processor.run(settings.queue_batch_size)
    except SQLAlchemyError as e:
        logger.error(f"Queue drain failed: {type(e).__name__}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process queue",
        )

    logger.info(f"Queue drain by {caller}: {len(results)} job(s) processed")
    return ProcessQueueResponse(
        processed=len(results),
        results=[ProcessResultItem(**r.to_dict()) for r in results],
    )
