"""Pydantic schemas for analyses and their extracted sections."""

import json
from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, Field

from .base import APIModel, SectionModel


def _to_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _to_text_list(value: Any) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [_to_text(item) for item in value if item is not None]


def _to_objects(key: str):
    """Wrap bare strings in a list of objects as {key: string}."""

    def convert(value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            value = [value]
        return [item if isinstance(item, dict) else {key: _to_text(item)} for item in value]

    return convert


Text = Annotated[Optional[str], BeforeValidator(_to_text)]
TextList = Annotated[list[str], BeforeValidator(_to_text_list)]


class ProjectOverview(SectionModel):
    title: Text = None
    description: Text = None
    scope: Text = None
    objectives: TextList = []


class Requirement(SectionModel):
    title: Text = None
    description: Text = None
    priority: Text = None
    category: Text = None
    acceptance_criteria: TextList = []
    estimated_effort: Text = None


class TechnicalSpecifications(SectionModel):
    platform: TextList = []
    technologies: TextList = []
    integrations: TextList = []
    performance_requirements: TextList = []


class BusinessRequirements(SectionModel):
    budget_range: Text = None
    timeline: Text = None
    target_users: Text = None
    success_metrics: TextList = []


class Keyword(SectionModel):
    term: Text = None
    importance: Text = None
    category: Text = None


class RiskFactor(SectionModel):
    factor: Text = None
    level: Text = None
    mitigation: Text = None


class ExtractionResult(SectionModel):
    """Top-level extraction payload.

    Keys outside the known sections end up in model_extra.
    """

    project_overview: ProjectOverview = Field(default_factory=ProjectOverview)
    functional_requirements: Annotated[list[Requirement], BeforeValidator(_to_objects("title"))] = []
    non_functional_requirements: Annotated[list[Requirement], BeforeValidator(_to_objects("title"))] = []
    technical_specifications: TechnicalSpecifications = Field(default_factory=TechnicalSpecifications)
    business_requirements: BusinessRequirements = Field(default_factory=BusinessRequirements)
    keywords: Annotated[list[Keyword], BeforeValidator(_to_objects("term"))] = []
    risk_factors: Annotated[list[RiskFactor], BeforeValidator(_to_objects("factor"))] = []
    questions_for_client: TextList = []
    confidence_score: Optional[float] = None


# Requests / responses


class AnalysisCreate(APIModel):
    """Request to ingest a document."""

    source_text: str = Field(..., min_length=1)
    project_id: Optional[str] = Field(None, max_length=100)
    model: Optional[str] = None


class AnalysisAccepted(APIModel):
    """Pollable handle returned by ingestion."""

    analysis_id: int
    job_id: int
    processing_status: str


class AnalysisStatus(APIModel):
    analysis_id: int
    processing_status: str
    degraded: bool
    warning: Optional[str] = None
    error_message: Optional[str] = None
    confidence_score: Optional[float] = None
    completed_at: Optional[datetime] = None


class AnalysisResponse(APIModel):
    """Full analysis record."""

    id: int
    project_id: Optional[str] = None
    created_by: Optional[str] = None
    model_version: Optional[str] = None
    processing_status: str
    confidence_score: Optional[float] = None
    degraded: bool
    warning: Optional[str] = None
    error_message: Optional[str] = None
    input_truncated: bool

    project_overview: Optional[dict] = None
    functional_requirements: Optional[list] = None
    non_functional_requirements: Optional[list] = None
    technical_specifications: Optional[dict] = None
    business_requirements: Optional[dict] = None
    keywords: Optional[list] = None
    risk_factors: Optional[list] = None
    questions_for_client: Optional[list] = None
    extra_fields: Optional[dict] = None

    secondary_analysis: Optional[dict] = None
    secondary_analysis_at: Optional[datetime] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
