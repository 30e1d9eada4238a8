"""Pydantic schemas for follow-up questions and answers."""

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import Field

from .base import APIModel

ResponseType = Literal["ai_selected", "user_input", "mixed"]


class QuestionGenerateRequest(APIModel):
    """Request to generate follow-up questions."""

    max_questions: Optional[int] = None
    categories: Optional[list[str]] = None
    generate_ai_answers: bool = True
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)


class AIAnswerGenerateRequest(APIModel):
    """Request for one more suggested answer to an existing question."""

    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    context: Optional[str] = None


class AIAnswerOut(APIModel):
    id: int
    question_id: int
    answer_text: str
    model_used: Optional[str] = None
    confidence_score: float
    generation_metadata: Optional[dict[str, Any]] = None
    generated_at: datetime


class UserResponseOut(APIModel):
    id: int
    question_id: int
    user_id: str
    response_type: str
    final_answer: str
    ai_answer_id: Optional[int] = None
    user_input_text: Optional[str] = None
    confidence_level: Optional[float] = None
    notes: Optional[str] = None
    is_final: bool
    answered_at: datetime


class QuestionOut(APIModel):
    id: int
    analysis_id: int
    question_text: str
    question_type: str
    category: str
    priority: str
    context: Optional[str] = None
    order_index: int
    options: Optional[list[Any]] = None
    next_step_impact: Optional[str] = None
    created_at: datetime
    ai_answers: list[AIAnswerOut] = []
    user_response: Optional[UserResponseOut] = None


class QuestionStatistics(APIModel):
    """Answer statistics derived from the stored responses."""

    total_questions: int
    answered_questions: int
    ai_answers_used: int
    user_answers_used: int
    completion_percentage: float
    ready_for_consolidation: bool = False
    by_category: dict[str, dict[str, int]] = {}


class QuestionGenerateResponse(APIModel):
    analysis_id: int
    questions: list[QuestionOut]
    generated_count: int
    ai_answers_count: int
    degraded: bool = False
    warning: Optional[str] = None


class QuestionListResponse(APIModel):
    analysis_id: int
    questions: list[QuestionOut]
    statistics: QuestionStatistics


class AnswerPayload(APIModel):
    """One answer to reconcile.

    ai_selected needs ai_answer_id, user_input needs user_input_text,
    mixed needs at least one of them.
    """

    response_type: ResponseType = "user_input"
    ai_answer_id: Optional[int] = None
    user_input_text: Optional[str] = None
    confidence_level: Optional[float] = Field(None, ge=0.0, le=1.0)
    notes: Optional[str] = None


class RespondRequest(AnswerPayload):
    question_id: int


class RespondResponse(APIModel):
    response: UserResponseOut
    statistics: QuestionStatistics


class SaveAnswersRequest(APIModel):
    """Batch save. A plain string value is treated as a user_input answer."""

    analysis_id: int
    answers: dict[int, Union[str, AnswerPayload]] = Field(..., min_length=1)
    completeness_score: Optional[float] = Field(None, ge=0.0, le=100.0)


class SaveAnswersResponse(APIModel):
    analysis_id: int
    saved_count: int
    answers: dict[int, str]
    statistics: QuestionStatistics
    completeness_score: Optional[float] = None


class AnswersView(APIModel):
    """Aggregate question -> final answer view for one user."""

    analysis_id: int
    user_id: str
    answers: dict[int, str]
    statistics: QuestionStatistics
