"""Follow-up question and answer endpoints."""

from typing import Iterable, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from api.config.database import get_database, get_db
from api.config.settings import Settings, get_app_settings
from api.middleware.auth import get_current_user_id
from api.models import AIAnswer, Question, UserResponse
from api.schemas.questions import (
    AIAnswerGenerateRequest,
    AIAnswerOut,
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
    UserResponseOut,
)
from api.services.analyses import get_analysis
from api.services.question_generator import QuestionGenerator, delete_questions
from api.services.reasoning import ReasoningClient, get_reasoning_client
from api.services.reconciler import AnswerStatistics, ResponseReconciler, compute_statistics
from api.services.tasks import run_stage

logger = structlog.get_logger()
router = APIRouter()


def build_question_outs(
    db: Session,
    questions: Iterable[Question],
    responses: Optional[dict[int, UserResponse]] = None,
) -> list[QuestionOut]:
    """Serialize questions with their AI answers and the user's response."""
    questions = list(questions)
    responses = responses or {}
    answers: dict[int, list[AIAnswerOut]] = {}
    if questions:
        rows = (
            db.query(AIAnswer)
            .filter(AIAnswer.question_id.in_([q.id for q in questions]))
            .order_by(AIAnswer.generated_at, AIAnswer.id)
            .all()
        )
        for row in rows:
            answers.setdefault(row.question_id, []).append(AIAnswerOut.model_validate(row))

    outs = []
    for question in questions:
        out = QuestionOut.model_validate(question)
        out.ai_answers = answers.get(question.id, [])
        response = responses.get(question.id)
        out.user_response = UserResponseOut.model_validate(response) if response else None
        outs.append(out)
    return outs


def statistics_out(stats: AnswerStatistics, settings: Settings) -> QuestionStatistics:
    return QuestionStatistics(**stats.to_dict(settings.READINESS_CONSOLIDATION_MIN_COMPLETION))


@router.post(
    "/{analysis_id}/questions/generate",
    response_model=QuestionGenerateResponse,
    status_code=201,
)
async def generate_questions(
    analysis_id: int,
    data: QuestionGenerateRequest,
    request: Request,
    client: ReasoningClient = Depends(get_reasoning_client),
    settings: Settings = Depends(get_app_settings),
):
    """Generate follow-up questions once per analysis (409 if they already exist)."""

    async def stage(db: Session) -> QuestionGenerateResponse:
        generator = QuestionGenerator.from_settings(db, client, settings)
        result = await generator.generate(
            analysis_id,
            max_questions=data.max_questions,
            categories=data.categories,
            generate_ai_answers=data.generate_ai_answers,
            model=data.model,
            temperature=data.temperature,
        )
        return QuestionGenerateResponse(
            analysis_id=analysis_id,
            questions=build_question_outs(db, result.questions),
            generated_count=len(result.questions),
            ai_answers_count=result.ai_answers_count,
            degraded=result.degraded,
            warning=result.warning,
        )

    return await run_stage(get_database(request), stage)


@router.post(
    "/{analysis_id}/questions/{question_id}/ai-answers",
    response_model=AIAnswerOut,
    status_code=201,
)
async def generate_ai_answer(
    analysis_id: int,
    question_id: int,
    request: Request,
    data: AIAnswerGenerateRequest = AIAnswerGenerateRequest(),
    client: ReasoningClient = Depends(get_reasoning_client),
    settings: Settings = Depends(get_app_settings),
):
    """Append another AI-suggested answer to a question; earlier ones are kept."""

    async def stage(db: Session) -> AIAnswerOut:
        generator = QuestionGenerator.from_settings(db, client, settings)
        answer = await generator.generate_answer(
            analysis_id,
            question_id,
            model=data.model,
            temperature=data.temperature,
            context=data.context,
        )
        return AIAnswerOut.model_validate(answer)

    return await run_stage(get_database(request), stage)


@router.get("/{analysis_id}/questions/list", response_model=QuestionListResponse)
async def list_questions(
    analysis_id: int,
    category: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    """Questions with AI answers, the caller's responses, and answer statistics.

    Statistics always cover every question, regardless of filters.
    """
    get_analysis(db, analysis_id)
    reconciler = ResponseReconciler(db)
    questions = reconciler.questions_for(analysis_id)
    responses = reconciler.responses_for(analysis_id, user_id)

    stats = compute_statistics(questions, responses)
    visible = [
        q for q in questions
        if (category is None or q.category == category) and (priority is None or q.priority == priority)
    ]
    return QuestionListResponse(
        analysis_id=analysis_id,
        questions=build_question_outs(db, visible, responses),
        statistics=statistics_out(stats, settings),
    )


@router.delete("/{analysis_id}/questions", status_code=204)
async def remove_questions(
    analysis_id: int,
    db: Session = Depends(get_db),
):
    """Delete all questions, answers and the summary so questions can be regenerated."""
    delete_questions(db, analysis_id)


@router.post("/{analysis_id}/questions/respond", response_model=RespondResponse)
async def respond_to_question(
    analysis_id: int,
    data: RespondRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    """Save the caller's answer to one question."""
    reconciler = ResponseReconciler(db)
    response = reconciler.respond(analysis_id, user_id, data.question_id, data)
    stats = reconciler.statistics(analysis_id, user_id)
    return RespondResponse(
        response=UserResponseOut.model_validate(response),
        statistics=statistics_out(stats, settings),
    )


@router.get("/{analysis_id}/answers", response_model=AnswersView)
async def get_answers(
    analysis_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    """Aggregate question -> final answer view, derived from the stored responses."""
    get_analysis(db, analysis_id)
    reconciler = ResponseReconciler(db)
    return AnswersView(
        analysis_id=analysis_id,
        user_id=user_id,
        answers=reconciler.answers_view(analysis_id, user_id),
        statistics=statistics_out(reconciler.statistics(analysis_id, user_id), settings),
    )


@router.post("/save-answers", response_model=SaveAnswersResponse)
async def save_answers(
    data: SaveAnswersRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    """Save many answers at once; all or nothing."""
    reconciler = ResponseReconciler(db)
    saved = reconciler.save_answers(data.analysis_id, user_id, data.answers)
    stats = reconciler.statistics(data.analysis_id, user_id)

    if data.completeness_score is not None and abs(data.completeness_score - stats.completion_percentage) > 1:
        logger.info(
            "Client completeness differs from stored answers",
            analysis_id=data.analysis_id,
            client_completeness=data.completeness_score,
            completion_percentage=stats.completion_percentage,
        )

    return SaveAnswersResponse(
        analysis_id=data.analysis_id,
        saved_count=len(saved),
        answers=reconciler.answers_view(data.analysis_id, user_id),
        statistics=statistics_out(stats, settings),
        completeness_score=data.completeness_score,
    )
