"""Queue manager for reliable job execution."""

from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.models import Analysis, Job
from api.models.analyses import STATUS_PENDING, STATUS_PROCESSING
from api.models.base import utcnow
from api.models.jobs import (
    ACTIVE_JOB_STATUSES,
    JOB_COMPLETED,
    JOB_DEAD,
    JOB_EXTRACT,
    JOB_PENDING,
    JOB_RUNNING,
)

logger = structlog.get_logger()


class QueueManager:
    """Manages the jobs table: claim, complete, retry with backoff, dead letter."""

    def __init__(self, db: Session, max_attempts: int = 3, retry_base_delay: int = 30):
        self.db = db
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    def enqueue(
        self,
        job_type: str,
        analysis_id: Optional[int] = None,
        priority: int = 0,
        payload: Optional[dict] = None,
    ) -> Optional[int]:
        """Add a job to the queue.

        Returns:
            Job ID, or None when an equivalent job is already pending/running
        """
        job = Job(
            job_type=job_type,
            analysis_id=analysis_id,
            priority=priority,
            status=JOB_PENDING,
            payload=payload,
            attempts=0,
            max_attempts=self.max_attempts,
            scheduled_for=utcnow(),
        )
        self.db.add(job)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Job already active", job_type=job_type, analysis_id=analysis_id)
            return None

        logger.info("Job enqueued", job_id=job.id, job_type=job_type, analysis_id=analysis_id)
        return job.id

    def claim_next(self) -> Optional[dict]:
        """Claim the next due job.

        Row locks skip jobs other workers are claiming where the database
        supports it; the conditional update guarantees a single winner
        everywhere else.

        Returns:
            Job data dict or None if no jobs available
        """
        now = utcnow()
        job = (
            self.db.query(Job)
            .filter(Job.status == JOB_PENDING, Job.scheduled_for <= now)
            .order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
            .with_for_update(skip_locked=True)
            .first()
        )
        if job is None:
            self.db.rollback()
            return None

        claimed = (
            self.db.query(Job)
            .filter(Job.id == job.id, Job.status == JOB_PENDING)
            .update(
                {
                    Job.status: JOB_RUNNING,
                    Job.started_at: now,
                    Job.attempts: Job.attempts + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        if not claimed:
            return None

        self.db.refresh(job)
        data = {
            "id": job.id,
            "job_type": job.job_type,
            "analysis_id": job.analysis_id,
            "priority": job.priority,
            "payload": job.payload,
            "attempts": job.attempts,
            "max_attempts": job.max_attempts,
            "created_at": job.created_at,
            "scheduled_for": job.scheduled_for,
        }
        logger.info(
            "Job claimed",
            job_id=data["id"],
            job_type=data["job_type"],
            attempt=data["attempts"],
        )
        return data

    def complete(self, job_id: int) -> None:
        """Mark a job as completed."""
        self.db.query(Job).filter(Job.id == job_id).update(
            {Job.status: JOB_COMPLETED, Job.completed_at: utcnow(), Job.last_error: None},
            synchronize_session=False,
        )
        self.db.commit()
        logger.info("Job completed", job_id=job_id)

    def fail(self, job_id: int, error: str, retryable: bool = True) -> bool:
        """Schedule a retry with exponential backoff, or move to dead letter.

        Backoff is base_delay * 2^(attempts-1). Non-retryable errors go
        straight to dead letter.

        Returns:
            True if the job is now dead
        """
        job = self.db.get(Job, job_id)
        if job is None:
            logger.error("Job not found for failure", job_id=job_id)
            return True

        attempts = job.attempts or 0
        max_attempts = job.max_attempts or self.max_attempts

        if not retryable or attempts >= max_attempts:
            job.status = JOB_DEAD
            job.last_error = error
            job.completed_at = utcnow()
            self.db.commit()
            logger.warning(
                "Job moved to dead letter",
                job_id=job_id,
                attempts=attempts,
                retryable=retryable,
                error=error,
            )
            return True

        delay_seconds = self.retry_base_delay * (2 ** (max(attempts, 1) - 1))
        next_attempt = utcnow() + timedelta(seconds=delay_seconds)
        job.status = JOB_PENDING
        job.last_error = error
        job.scheduled_for = next_attempt
        job.started_at = None
        self.db.commit()
        logger.info(
            "Job scheduled for retry",
            job_id=job_id,
            attempt=attempts,
            next_attempt=next_attempt.isoformat(),
        )
        return False

    def get_status(self) -> dict:
        """Get queue status counts."""
        status = {JOB_PENDING: 0, JOB_RUNNING: 0, JOB_COMPLETED: 0, JOB_DEAD: 0}
        for name, count in self.db.query(Job.status, func.count(Job.id)).group_by(Job.status):
            status[name] = count
        return status

    def recover_stuck_jobs(self, stuck_threshold_minutes: int = 30) -> int:
        """Reset jobs stuck in 'running' back to 'pending'.

        Jobs get stuck when a worker dies mid-processing.
        """
        cutoff = utcnow() - timedelta(minutes=stuck_threshold_minutes)
        count = (
            self.db.query(Job)
            .filter(Job.status == JOB_RUNNING, Job.started_at < cutoff)
            .update(
                {
                    Job.status: JOB_PENDING,
                    Job.started_at: None,
                    Job.last_error: "Recovered from stuck state (worker likely crashed)",
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        if count > 0:
            logger.warning("Recovered stuck jobs", count=count, threshold_minutes=stuck_threshold_minutes)
        return count

    def recover_stuck_analyses(self, stuck_threshold_minutes: int = 15) -> int:
        """Enqueue extraction for analyses left pending/processing with no active job.

        Returns:
            Number of extract jobs created
        """
        cutoff = utcnow() - timedelta(minutes=stuck_threshold_minutes)
        active_job = (
            self.db.query(Job.id)
            .filter(
                Job.analysis_id == Analysis.id,
                Job.job_type == JOB_EXTRACT,
                Job.status.in_(ACTIVE_JOB_STATUSES),
            )
            .exists()
        )
        stuck = (
            self.db.query(Analysis.id)
            .filter(
                Analysis.processing_status.in_((STATUS_PENDING, STATUS_PROCESSING)),
                or_(
                    Analysis.updated_at < cutoff,
                    and_(Analysis.updated_at.is_(None), Analysis.created_at < cutoff),
                ),
                ~active_job,
            )
            .all()
        )

        recovered = 0
        for (analysis_id,) in stuck:
            if self.enqueue(JOB_EXTRACT, analysis_id=analysis_id, priority=5) is not None:
                recovered += 1
        if recovered:
            logger.warning("Recovered stuck analyses", count=recovered)
        return recovered
