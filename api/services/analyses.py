"""Analysis lookup, state checks and ingestion."""

from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.middleware.error_handler import ConflictError, NotFoundError
from api.models import Analysis, Job
from api.models.analyses import STATUS_PENDING
from api.models.jobs import JOB_EXTRACT

logger = structlog.get_logger()


def get_analysis(db: Session, analysis_id: int) -> Analysis:
    analysis = db.get(Analysis, analysis_id)
    if analysis is None:
        raise NotFoundError("Analysis", analysis_id)
    return analysis


def get_completed_analysis(db: Session, analysis_id: int) -> Analysis:
    """Load an analysis that downstream stages may run against.

    Raises:
        NotFoundError: Unknown id
        ConflictError: Extraction has not completed
    """
    analysis = get_analysis(db, analysis_id)
    if not analysis.is_completed:
        raise ConflictError(
            f"Analysis is {analysis.processing_status}; it must be completed first",
            code="ANALYSIS_NOT_COMPLETED",
            details={"analysis_id": analysis_id, "processing_status": analysis.processing_status},
        )
    return analysis


def enqueue_extraction(
    db: Session,
    analysis: Analysis,
    model: Optional[str] = None,
    max_attempts: int = 3,
) -> Job:
    """Add an extract job for the analysis to the session (caller commits)."""
    job = Job(
        analysis_id=analysis.id,
        job_type=JOB_EXTRACT,
        priority=0,
        max_attempts=max_attempts,
        payload={"model": model} if model else None,
    )
    db.add(job)
    return job


def ingest_document(
    db: Session,
    source_text: str,
    user_id: str,
    project_id: Optional[str] = None,
    model: Optional[str] = None,
    max_attempts: int = 3,
) -> tuple[Analysis, Job]:
    """Create a pending analysis and its extract job in one transaction.

    Raises:
        ConflictError: An extract job is already active for the analysis
    """
    analysis = Analysis(
        project_id=project_id,
        created_by=user_id,
        source_text=source_text,
        processing_status=STATUS_PENDING,
    )
    db.add(analysis)
    try:
        db.flush()
        job = enqueue_extraction(db, analysis, model=model, max_attempts=max_attempts)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(
            "Analysis is already being processed",
            code="ANALYSIS_ALREADY_PROCESSING",
        ) from e

    logger.info(
        "Analysis ingested",
        analysis_id=analysis.id,
        job_id=job.id,
        project_id=project_id,
        source_length=len(source_text),
    )
    return analysis, job
