"""Reconciles user choices into one final answer per question.

UserResponse rows are the only stored form of an answer. The aggregate
question -> answer view and every statistic are derived from them on read.

Merge rule for mixed responses: the AI answer text, stripped, then a single
newline, then the user's text, stripped. When either side is blank the
other side is used alone.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.middleware.error_handler import NotFoundError, PersistenceError, ValidationError
from api.models import AIAnswer, Question, UserResponse
from api.models.base import utcnow
from api.models.questions import (
    RESPONSE_AI_SELECTED,
    RESPONSE_MIXED,
    RESPONSE_USER_INPUT,
)
from api.schemas.questions import AnswerPayload
from api.services.analyses import get_completed_analysis

logger = structlog.get_logger()

MERGE_SEPARATOR = "\n"


def merge_mixed(ai_text: Optional[str], user_text: Optional[str]) -> str:
    """Combine an AI answer and the user's addition deterministically."""
    ai_part = (ai_text or "").strip()
    user_part = (user_text or "").strip()
    if ai_part and user_part:
        return f"{ai_part}{MERGE_SEPARATOR}{user_part}"
    return ai_part or user_part


def completion_percentage(answered: int, total: int) -> float:
    """answered / total as a percentage in [0, 100]; 0 when there are no questions."""
    if total <= 0:
        return 0.0
    return round(max(0.0, min(100.0, answered / total * 100)), 2)


@dataclass
class AnswerStatistics:
    total_questions: int = 0
    answered_questions: int = 0
    ai_answers_used: int = 0
    user_answers_used: int = 0
    completion_percentage: float = 0.0
    by_category: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def answered_categories(self) -> set[str]:
        return {name for name, counts in self.by_category.items() if counts["answered"] > 0}

    def to_dict(self, consolidation_threshold: Optional[float] = None) -> dict[str, Any]:
        data = {
            "total_questions": self.total_questions,
            "answered_questions": self.answered_questions,
            "ai_answers_used": self.ai_answers_used,
            "user_answers_used": self.user_answers_used,
            "completion_percentage": self.completion_percentage,
            "by_category": self.by_category,
        }
        if consolidation_threshold is not None:
            data["ready_for_consolidation"] = (
                self.answered_questions > 0
                and self.completion_percentage >= consolidation_threshold
            )
        return data


def is_answered(response: Optional[UserResponse]) -> bool:
    return bool(response is not None and response.is_final and (response.final_answer or "").strip())


def compute_statistics(
    questions: Iterable[Question],
    responses: dict[int, UserResponse],
) -> AnswerStatistics:
    """Answer counts for a set of questions given one user's responses by question id.

    ai_selected responses count as AI answers; user_input and mixed count
    as user answers.
    """
    stats = AnswerStatistics()
    for question in questions:
        stats.total_questions += 1
        bucket = stats.by_category.setdefault(question.category, {"total": 0, "answered": 0})
        bucket["total"] += 1

        response = responses.get(question.id)
        if not is_answered(response):
            continue
        stats.answered_questions += 1
        bucket["answered"] += 1
        if response.response_type == RESPONSE_AI_SELECTED:
            stats.ai_answers_used += 1
        else:
            stats.user_answers_used += 1

    stats.completion_percentage = completion_percentage(stats.answered_questions, stats.total_questions)
    return stats


@dataclass
class ResolvedAnswer:
    question_id: int
    response_type: str
    final_answer: str
    ai_answer_id: Optional[int] = None
    user_input_text: Optional[str] = None
    confidence_level: Optional[float] = None
    notes: Optional[str] = None


class ResponseReconciler:
    """Validates, merges and upserts user responses."""

    def __init__(self, db: Session):
        self.db = db

    def questions_for(self, analysis_id: int) -> list[Question]:
        return (
            self.db.query(Question)
            .filter(Question.analysis_id == analysis_id)
            .order_by(Question.order_index)
            .all()
        )

    def responses_for(self, analysis_id: int, user_id: str) -> dict[int, UserResponse]:
        rows = (
            self.db.query(UserResponse)
            .join(Question, UserResponse.question_id == Question.id)
            .filter(Question.analysis_id == analysis_id, UserResponse.user_id == user_id)
            .all()
        )
        return {row.question_id: row for row in rows}

    def statistics(self, analysis_id: int, user_id: str) -> AnswerStatistics:
        return compute_statistics(self.questions_for(analysis_id), self.responses_for(analysis_id, user_id))

    def answers_view(self, analysis_id: int, user_id: str) -> dict[int, str]:
        """Derived question id -> final answer map."""
        return {
            question_id: response.final_answer
            for question_id, response in self.responses_for(analysis_id, user_id).items()
            if is_answered(response)
        }

    def resolve(self, question: Question, payload: AnswerPayload) -> ResolvedAnswer:
        """Turn a payload into the final answer text, validating references.

        Raises:
            ValidationError: Required text or AI answer reference missing
            NotFoundError: AI answer does not belong to the question
        """
        ai_answer = None
        if payload.ai_answer_id is not None:
            ai_answer = self.db.get(AIAnswer, payload.ai_answer_id)
            if ai_answer is None or ai_answer.question_id != question.id:
                raise NotFoundError("AIAnswer", payload.ai_answer_id)

        user_text = payload.user_input_text
        response_type = payload.response_type

        if response_type == RESPONSE_AI_SELECTED:
            if ai_answer is None:
                raise ValidationError("ai_selected responses require ai_answer_id", field="ai_answer_id")
            final_answer = ai_answer.answer_text
            user_text = None
        elif response_type == RESPONSE_USER_INPUT:
            if not (user_text or "").strip():
                raise ValidationError("user_input responses require user_input_text", field="user_input_text")
            final_answer = user_text
            ai_answer = None
        else:
            final_answer = merge_mixed(ai_answer.answer_text if ai_answer else None, user_text)
            if not final_answer:
                raise ValidationError(
                    "mixed responses require an AI answer or user text",
                    field="user_input_text",
                )

        return ResolvedAnswer(
            question_id=question.id,
            response_type=response_type,
            final_answer=final_answer,
            ai_answer_id=ai_answer.id if ai_answer else None,
            user_input_text=user_text,
            confidence_level=payload.confidence_level,
            notes=payload.notes,
        )

    def respond(
        self,
        analysis_id: int,
        user_id: str,
        question_id: int,
        payload: AnswerPayload,
    ) -> UserResponse:
        """Record one user's answer to one question."""
        get_completed_analysis(self.db, analysis_id)
        question = self._question(analysis_id, question_id)
        resolved = self.resolve(question, payload)

        self._write(lambda: self._upsert(user_id, [resolved]))
        response = self.responses_for(analysis_id, user_id)[question_id]
        logger.info(
            "Response saved",
            analysis_id=analysis_id,
            question_id=question_id,
            response_type=resolved.response_type,
        )
        return response

    def save_answers(
        self,
        analysis_id: int,
        user_id: str,
        answers: dict[int, Union[str, AnswerPayload]],
    ) -> list[UserResponse]:
        """Save a batch of answers in one transaction.

        Plain string values are user_input answers. Every entry is validated
        before anything is written, so one bad entry saves nothing.
        """
        get_completed_analysis(self.db, analysis_id)
        questions = {q.id: q for q in self.questions_for(analysis_id)}

        resolved = []
        for question_id, value in answers.items():
            question = questions.get(question_id)
            if question is None:
                raise NotFoundError("Question", question_id)
            if isinstance(value, str):
                value = AnswerPayload(response_type=RESPONSE_USER_INPUT, user_input_text=value)
            resolved.append(self.resolve(question, value))

        self._write(lambda: self._upsert(user_id, resolved))
        saved = self.responses_for(analysis_id, user_id)
        logger.info("Answers saved", analysis_id=analysis_id, count=len(resolved))
        return [saved[item.question_id] for item in resolved]

    def _question(self, analysis_id: int, question_id: int) -> Question:
        question = self.db.get(Question, question_id)
        if question is None or question.analysis_id != analysis_id:
            raise NotFoundError("Question", question_id)
        return question

    def _upsert(self, user_id: str, items: list[ResolvedAnswer]) -> None:
        now = utcnow()
        for item in items:
            row = (
                self.db.query(UserResponse)
                .filter(UserResponse.question_id == item.question_id, UserResponse.user_id == user_id)
                .first()
            )
            if row is None:
                row = UserResponse(question_id=item.question_id, user_id=user_id)
                self.db.add(row)
            row.response_type = item.response_type
            row.final_answer = item.final_answer
            row.ai_answer_id = item.ai_answer_id
            row.user_input_text = item.user_input_text
            row.confidence_level = item.confidence_level
            row.notes = item.notes
            row.is_final = True
            row.answered_at = now

    def _write(self, apply: Callable[[], None]) -> None:
        """Apply and commit; a concurrent insert of the same key is retried once as an update."""
        try:
            apply()
            self.db.commit()
            return
        except IntegrityError:
            self.db.rollback()
            logger.info("Response upsert raced; retrying as update")

        try:
            apply()
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise PersistenceError("Failed to save responses") from e
