"""Pydantic schemas for consolidation and secondary analysis."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from .base import APIModel


class ConsolidateRequest(APIModel):
    force_regenerate: bool = False
    model: Optional[str] = None
    focus_areas: Optional[list[str]] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    analysis_depth: Optional[Literal["basic", "detailed", "comprehensive"]] = None
    include_recommendations: bool = True


class SummaryOut(APIModel):
    id: int
    analysis_id: int
    total_questions: int
    answered_questions: int
    ai_answers_used: int
    user_answers_used: int
    completion_percentage: float
    consolidated_insights: Optional[dict[str, Any]] = None
    degraded: bool
    model_used: Optional[str] = None
    ready_for_market_research: bool
    ready_for_persona_analysis: bool
    ready_for_proposal_writing: bool
    summary_generated_at: Optional[datetime] = None
    last_updated_at: datetime


class ConsolidateResponse(APIModel):
    summary: SummaryOut
    next_steps_ready: list[str]
    was_cached: bool
    degraded: bool


class QAPair(APIModel):
    question: str = Field(..., min_length=1)
    answer: str


class SecondaryAnalysisRequest(APIModel):
    analysis_id: int
    answers: list[QAPair] = Field(..., min_length=1)
    model: Optional[str] = None


class SecondaryAnalysisResponse(APIModel):
    analysis_id: int
    secondary_analysis: dict[str, Any]
    degraded: bool
