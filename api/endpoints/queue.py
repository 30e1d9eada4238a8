"""Queue inspection endpoints."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.config.database import get_db
from api.middleware.error_handler import ConflictError, NotFoundError
from api.models import Job
from api.models.base import utcnow
from api.models.jobs import ACTIVE_JOB_STATUSES, JOB_DEAD, JOB_EXTRACT, JOB_PENDING
from api.schemas.queue import QueueItem, QueueRetryResponse, QueueStatusResponse

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=QueueStatusResponse)
async def get_queue_status(
    db: Session = Depends(get_db),
    status_filter: Optional[str] = Query(None, alias="status"),
    analysis_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
):
    """Get queue status with item counts and recent items."""
    counts = dict(
        db.query(Job.status, func.count(Job.id))
        .group_by(Job.status)
        .all()
    )

    query = db.query(Job)
    if status_filter:
        query = query.filter(Job.status == status_filter)
    else:
        query = query.filter(Job.status.in_(ACTIVE_JOB_STATUSES + (JOB_DEAD,)))
    if analysis_id is not None:
        query = query.filter(Job.analysis_id == analysis_id)

    jobs = query.order_by(Job.created_at.desc(), Job.id.desc()).limit(limit).all()

    return QueueStatusResponse(
        pending=counts.get("pending", 0),
        running=counts.get("running", 0),
        completed=counts.get("completed", 0),
        dead=counts.get("dead", 0),
        items=[QueueItem.model_validate(j) for j in jobs],
    )


@router.post("/{job_id}/retry", response_model=QueueRetryResponse)
async def retry_job(
    job_id: int,
    db: Session = Depends(get_db),
):
    """Put a dead job back on the queue.

    Analyses are frozen once completed or failed, so a dead extract job
    whose analysis already reached a terminal status cannot be retried;
    the document has to be ingested again.
    """
    job = db.get(Job, job_id)
    if not job:
        raise NotFoundError("Job", job_id)

    if job.status != JOB_DEAD:
        return QueueRetryResponse(id=job.id, status=job.status, message=f"Job is {job.status}, not dead")

    analysis = job.analysis
    if job.job_type == JOB_EXTRACT and analysis is not None and analysis.is_terminal:
        raise ConflictError(
            f"Analysis is already {analysis.processing_status}; ingest the document again to reprocess it",
            code="ANALYSIS_TERMINAL",
            details={"job_id": job_id, "analysis_id": analysis.id, "processing_status": analysis.processing_status},
        )

    job.status = JOB_PENDING
    job.attempts = 0
    job.last_error = None
    job.started_at = None
    job.completed_at = None
    job.scheduled_for = utcnow()

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(
            "Analysis is already being processed",
            code="ANALYSIS_ALREADY_PROCESSING",
            details={"job_id": job_id},
        ) from e

    logger.info("Job retry triggered", job_id=job_id)
    return QueueRetryResponse(id=job.id, status=job.status, message="Job queued for retry")
