"""Pydantic schemas for API request/response validation."""

from .base import APIModel, SectionModel, ErrorResponse
from .analyses import (
    AnalysisAccepted,
    AnalysisCreate,
    AnalysisResponse,
    AnalysisStatus,
    ExtractionResult,
)
from .questions import (
    AnswerPayload,
    AnswersView,
    QuestionGenerateRequest,
    QuestionGenerateResponse,
    QuestionListResponse,
    QuestionOut,
    QuestionStatistics,
    RespondRequest,
    RespondResponse,
    SaveAnswersRequest,
    SaveAnswersResponse,
)
from .summaries import (
    ConsolidateRequest,
    ConsolidateResponse,
    QAPair,
    SecondaryAnalysisRequest,
    SecondaryAnalysisResponse,
    SummaryOut,
)
from .queue import QueueItem, QueueStatusResponse, QueueRetryResponse
