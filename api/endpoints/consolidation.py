"""Consolidation and summary endpoints."""

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from api.config.database import get_database, get_db
from api.config.settings import Settings, get_app_settings
from api.middleware.auth import get_current_user_id
from api.middleware.error_handler import NotFoundError
from api.schemas.summaries import ConsolidateRequest, ConsolidateResponse, SummaryOut
from api.services.analyses import get_analysis
from api.services.consolidator import Consolidator, ReadinessThresholds
from api.services.reasoning import ReasoningClient, get_reasoning_client
from api.services.tasks import run_stage

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{analysis_id}/consolidate", response_model=ConsolidateResponse)
async def consolidate_analysis(
    analysis_id: int,
    request: Request,
    data: ConsolidateRequest = ConsolidateRequest(),
    user_id: str = Depends(get_current_user_id),
    client: ReasoningClient = Depends(get_reasoning_client),
    settings: Settings = Depends(get_app_settings),
):
    """Consolidate answers into insights and readiness flags.

    Returns the stored summary without calling the engine unless
    force_regenerate is set.
    """

    async def stage(db: Session) -> ConsolidateResponse:
        consolidator = Consolidator(
            db,
            client,
            thresholds=ReadinessThresholds.from_settings(settings),
            max_tokens=settings.CLAUDE_MAX_TOKENS,
        )
        result = await consolidator.consolidate(
            analysis_id,
            user_id,
            force_regenerate=data.force_regenerate,
            model=data.model,
            focus_areas=data.focus_areas,
            temperature=data.temperature,
            analysis_depth=data.analysis_depth,
            include_recommendations=data.include_recommendations,
        )
        return ConsolidateResponse(
            summary=SummaryOut.model_validate(result.summary),
            next_steps_ready=result.readiness.next_steps,
            was_cached=result.was_cached,
            degraded=result.degraded,
        )

    return await run_stage(get_database(request), stage)


@router.get("/{analysis_id}/summary", response_model=SummaryOut)
async def get_summary(
    analysis_id: int,
    db: Session = Depends(get_db),
):
    """The stored summary, if consolidation has run."""
    analysis = get_analysis(db, analysis_id)
    if analysis.summary is None:
        raise NotFoundError("AnalysisSummary", analysis_id)
    return SummaryOut.model_validate(analysis.summary)
