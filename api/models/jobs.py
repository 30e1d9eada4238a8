"""Job model for the processing queue."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import relationship

from api.config.database import Base
from api.models.base import utcnow

# Queue status values
JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_DEAD = "dead"

ACTIVE_JOB_STATUSES = (JOB_PENDING, JOB_RUNNING)

# Job types
JOB_EXTRACT = "extract"

_ACTIVE_JOB_FILTER = text("status IN ('pending', 'running')")


class Job(Base):
    """
    Queue for processing jobs.

    Worker polls this table to claim and execute jobs.
    """

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    analysis_id = Column(
        Integer,
        ForeignKey("analyses.id", ondelete="CASCADE"),
        nullable=True,
    )
    job_type = Column(String(50), nullable=False)

    # pending, running, completed, dead
    status = Column(String(20), nullable=False, default=JOB_PENDING)

    priority = Column(Integer, nullable=False, default=0)  # Higher = more urgent
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    payload = Column(JSON, nullable=True)

    last_error = Column(Text, nullable=True)

    # Timing
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    scheduled_for = Column(DateTime, default=utcnow, nullable=False)  # For delayed/retry jobs

    __table_args__ = (
        Index("idx_jobs_pending", "status", "scheduled_for", "priority"),
        Index("idx_jobs_analysis", "analysis_id"),
        # Only one active job per analysis + job type
        Index(
            "idx_jobs_idempotency",
            "analysis_id",
            "job_type",
            unique=True,
            sqlite_where=_ACTIVE_JOB_FILTER,
            postgresql_where=_ACTIVE_JOB_FILTER,
        ),
    )

    analysis = relationship("Analysis")

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, type={self.job_type}, status={self.status})>"
