"""Analysis ingestion, polling and secondary analysis endpoints."""

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from api.config.database import get_database, get_db
from api.config.settings import Settings, get_app_settings
from api.middleware.auth import get_current_user_id
from api.schemas.analyses import (
    AnalysisAccepted,
    AnalysisCreate,
    AnalysisResponse,
    AnalysisStatus,
)
from api.schemas.summaries import SecondaryAnalysisRequest, SecondaryAnalysisResponse
from api.services.analyses import get_analysis, ingest_document
from api.services.reasoning import ReasoningClient, get_reasoning_client
from api.services.secondary import SecondaryAnalyzer
from api.services.tasks import run_stage

logger = structlog.get_logger()
router = APIRouter()


@router.post("", response_model=AnalysisAccepted, status_code=202)
async def create_analysis(
    data: AnalysisCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    """Ingest a document. Extraction runs on the processor; poll the status endpoint."""
    analysis, job = ingest_document(
        db,
        source_text=data.source_text,
        user_id=user_id,
        project_id=data.project_id,
        model=data.model,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
    )
    return AnalysisAccepted(
        analysis_id=analysis.id,
        job_id=job.id,
        processing_status=analysis.processing_status,
    )


@router.post("/secondary-analysis", response_model=SecondaryAnalysisResponse)
async def secondary_analysis(
    data: SecondaryAnalysisRequest,
    request: Request,
    client: ReasoningClient = Depends(get_reasoning_client),
    settings: Settings = Depends(get_app_settings),
):
    """Deep-dive market and persona analysis from arbitrary question/answer pairs."""
    pairs = [(pair.question, pair.answer) for pair in data.answers]

    async def stage(db: Session) -> SecondaryAnalysisResponse:
        analyzer = SecondaryAnalyzer(db, client, max_tokens=settings.CLAUDE_MAX_TOKENS)
        result = await analyzer.analyze(data.analysis_id, pairs, model=data.model)
        return SecondaryAnalysisResponse(
            analysis_id=data.analysis_id,
            secondary_analysis=result.secondary_analysis,
            degraded=result.degraded,
        )

    return await run_stage(get_database(request), stage)


@router.get("/{analysis_id}", response_model=AnalysisResponse)
async def get_analysis_record(
    analysis_id: int,
    db: Session = Depends(get_db),
):
    """Full analysis record."""
    return AnalysisResponse.model_validate(get_analysis(db, analysis_id))


@router.get("/{analysis_id}/status", response_model=AnalysisStatus)
async def get_analysis_status(
    analysis_id: int,
    db: Session = Depends(get_db),
):
    """Poll extraction progress."""
    analysis = get_analysis(db, analysis_id)
    return AnalysisStatus(
        analysis_id=analysis.id,
        processing_status=analysis.processing_status,
        degraded=analysis.degraded,
        warning=analysis.warning,
        error_message=analysis.error_message,
        confidence_score=analysis.confidence_score,
        completed_at=analysis.completed_at,
    )
