"""Follow-up question generation for a completed analysis."""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from api.middleware.error_handler import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from api.models import AIAnswer, Analysis, Question
from api.models.questions import PRIORITIES, QUESTION_TYPES
from api.services.analyses import get_completed_analysis
from api.services.extractor import clamp_confidence
from api.services.prompts import (
    ANSWER_GENERATION_PROMPT,
    ANSWER_INSTRUCTION,
    NO_ANSWER_INSTRUCTION,
    QUESTION_GENERATION_PROMPT,
    SYSTEM_PROMPT,
    safe_template_substitute,
    to_prompt_json,
)
from api.services.reasoning import ReasoningClient, extract_json_object

logger = structlog.get_logger()

DEFAULT_CATEGORIES = [
    "market_context",
    "technical_requirements",
    "business_goals",
    "target_audience",
]

DEFAULT_ANSWER_CONFIDENCE = 0.7
ANSWER_TEMPERATURE = 0.3
ANSWER_MAX_TOKENS = 2000

FALLBACK_WARNING = (
    "The reasoning engine response could not be parsed; generic template "
    "questions were generated instead."
)

# Template questions per category, used when the model output is unusable
FALLBACK_TEMPLATES: dict[str, list[dict[str, Any]]] = {
    "market_context": [
        {
            "question_text": "Which market or industry segment is this project primarily aimed at?",
            "question_type": "text_long",
            "priority": "high",
            "context": "Defines the scope of market research.",
            "next_step_impact": "Determines which competitors and trends to analyse.",
        },
        {
            "question_text": "Who are the main competitors or alternative solutions today?",
            "question_type": "text_long",
            "priority": "medium",
            "context": "Positions the proposal against existing offerings.",
            "next_step_impact": "Shapes the differentiation section of the proposal.",
        },
    ],
    "technical_requirements": [
        {
            "question_text": "Are there mandatory platforms, technologies or hosting constraints?",
            "question_type": "text_long",
            "priority": "high",
            "context": "Constrains the technical architecture.",
            "next_step_impact": "Determines the solution architecture and effort estimate.",
        },
        {
            "question_text": "Which existing systems must the solution integrate with?",
            "question_type": "text_long",
            "priority": "medium",
            "context": "Integrations are a common source of hidden effort.",
            "next_step_impact": "Adds integration work packages to the plan.",
        },
    ],
    "business_goals": [
        {
            "question_text": "What measurable outcome would make this project a success?",
            "question_type": "text_long",
            "priority": "high",
            "context": "Success criteria anchor the proposal.",
            "next_step_impact": "Defines the success metrics in the proposal.",
        },
        {
            "question_text": "What is the expected budget range for this project?",
            "question_type": "single_choice",
            "priority": "medium",
            "context": "Budget bounds the feasible scope.",
            "next_step_impact": "Guides phasing and scope recommendations.",
            "options": ["Under 50k", "50k-200k", "200k-1M", "Over 1M", "Not decided"],
        },
    ],
    "target_audience": [
        {
            "question_text": "Who are the primary end users of the solution?",
            "question_type": "text_long",
            "priority": "high",
            "context": "User groups drive persona analysis.",
            "next_step_impact": "Determines which personas to research.",
        },
        {
            "question_text": "Roughly how many users are expected at launch?",
            "question_type": "number",
            "priority": "low",
            "context": "Sizing affects performance requirements.",
            "next_step_impact": "Feeds capacity planning.",
        },
    ],
}

GENERIC_TEMPLATE = {
    "question_text": "What else should we know about {category} for this project?",
    "question_type": "text_long",
    "priority": "medium",
    "context": "Open question for a category without a template.",
    "next_step_impact": "Fills gaps the analysis could not cover.",
}


@dataclass
class GeneratedQuestions:
    questions: list[Question]
    ai_answers_count: int = 0
    degraded: bool = False
    warning: Optional[str] = None
    raw_response: str = ""
    failed_answers: list[int] = field(default_factory=list)


def normalize_question(item: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Clean one model-produced question; None when it has no text."""
    text = str(item.get("question_text") or item.get("question") or "").strip()
    if not text:
        return None

    question_type = str(item.get("question_type") or "").strip().lower()
    if question_type not in QUESTION_TYPES:
        question_type = "text_long"

    priority = str(item.get("priority") or "").strip().lower()
    if priority not in PRIORITIES:
        priority = "medium"

    category = str(item.get("category") or "").strip() or "general"

    options = item.get("options")
    if not isinstance(options, list) or not options:
        options = None

    suggested = item.get("ai_suggested_answer")
    if suggested is not None and not isinstance(suggested, str):
        suggested = str(suggested)

    return {
        "question_text": text,
        "question_type": question_type,
        "category": category,
        "priority": priority,
        "context": str(item["context"]) if item.get("context") else None,
        "next_step_impact": str(item["next_step_impact"]) if item.get("next_step_impact") else None,
        "options": options,
        "ai_suggested_answer": suggested.strip() if suggested and suggested.strip() else None,
        "confidence_score": item.get("confidence_score"),
    }


def fallback_questions(categories: list[str], max_questions: int) -> list[dict[str, Any]]:
    """Deterministic template questions, round-robin across categories."""
    pools = []
    for category in categories or DEFAULT_CATEGORIES:
        templates = FALLBACK_TEMPLATES.get(category)
        if not templates:
            generic = dict(GENERIC_TEMPLATE)
            generic["question_text"] = generic["question_text"].format(category=category.replace("_", " "))
            templates = [generic]
        pools.append([dict(t, category=category) for t in templates])

    questions = []
    depth = 0
    while len(questions) < max_questions and any(depth < len(pool) for pool in pools):
        for pool in pools:
            if depth < len(pool) and len(questions) < max_questions:
                questions.append(pool[depth])
        depth += 1
    return questions


class QuestionGenerator:
    """Generates and stores follow-up questions (and suggested answers)."""

    def __init__(
        self,
        db: Session,
        client: ReasoningClient,
        default_count: int = 8,
        max_count: int = 20,
        temperature: float = 0.7,
        max_tokens: int = 6000,
    ):
        self.db = db
        self.client = client
        self.default_count = default_count
        self.max_count = max_count
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, db: Session, client: ReasoningClient, settings) -> "QuestionGenerator":
        return cls(
            db,
            client,
            default_count=settings.QUESTIONS_DEFAULT_COUNT,
            max_count=settings.QUESTIONS_MAX_COUNT,
            temperature=settings.QUESTIONS_TEMPERATURE,
            max_tokens=settings.QUESTIONS_MAX_TOKENS,
        )

    def check_can_generate(self, analysis_id: int, max_questions: Optional[int]) -> Analysis:
        """Fail fast before any engine call.

        Raises:
            NotFoundError, ConflictError(ANALYSIS_NOT_COMPLETED | QUESTIONS_ALREADY_EXIST),
            ValidationError(PROJECT_ID_REQUIRED | VALIDATION_ERROR)
        """
        if max_questions is not None and not 1 <= max_questions <= self.max_count:
            raise ValidationError(
                f"max_questions must be between 1 and {self.max_count}",
                field="max_questions",
            )

        analysis = get_completed_analysis(self.db, analysis_id)
        if not analysis.project_id:
            raise ValidationError(
                "Question generation requires an analysis that belongs to a project",
                code="PROJECT_ID_REQUIRED",
                field="project_id",
            )

        existing = self.db.query(Question.id).filter(Question.analysis_id == analysis_id).count()
        if existing:
            raise ConflictError(
                "Questions already exist for this analysis; delete them before regenerating",
                code="QUESTIONS_ALREADY_EXIST",
                details={"analysis_id": analysis_id, "existing_count": existing},
            )
        return analysis

    async def generate(
        self,
        analysis_id: int,
        max_questions: Optional[int] = None,
        categories: Optional[list[str]] = None,
        generate_ai_answers: bool = True,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> GeneratedQuestions:
        analysis = self.check_can_generate(analysis_id, max_questions)
        max_questions = max_questions or self.default_count
        categories = [c.strip() for c in (categories or DEFAULT_CATEGORIES) if c and c.strip()] or DEFAULT_CATEGORIES
        model = model or self.client.default_model

        prompt = self.build_prompt(analysis, max_questions, categories, generate_ai_answers)

        raw_response = ""
        usage: dict = {}
        items: list[dict[str, Any]] = []
        warning = None
        try:
            response = await self.client.complete(
                prompt,
                model=model,
                max_tokens=self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                system=SYSTEM_PROMPT,
            )
            raw_response = response.content
            model = response.model
            usage = response.usage
            items = self.parse(raw_response)
        except UpstreamError as e:
            if not e.unusable_output:
                raise
            warning = e.message

        degraded = not items
        if degraded:
            logger.warning(
                "Falling back to template questions",
                analysis_id=analysis_id,
                reason=warning or "unparseable response",
            )
            items = fallback_questions(categories, max_questions)
            generate_ai_answers = False

        questions = self._store_questions(analysis_id, items[:max_questions])

        result = GeneratedQuestions(
            questions=questions,
            degraded=degraded,
            warning=FALLBACK_WARNING if degraded else None,
            raw_response=raw_response,
        )
        if generate_ai_answers:
            metadata = {"source": "question_generation", "batch_usage": usage}
            self._store_answers(questions, items, model, metadata, result)

        logger.info(
            "Questions generated",
            analysis_id=analysis_id,
            generated_count=len(questions),
            ai_answers_count=result.ai_answers_count,
            degraded=degraded,
        )
        return result

    def build_prompt(
        self,
        analysis: Analysis,
        max_questions: int,
        categories: list[str],
        generate_ai_answers: bool,
    ) -> str:
        return safe_template_substitute(
            QUESTION_GENERATION_PROMPT,
            project_overview=to_prompt_json(analysis.project_overview or {}),
            functional_requirements=to_prompt_json(analysis.functional_requirements or []),
            non_functional_requirements=to_prompt_json(analysis.non_functional_requirements or []),
            technical_specifications=to_prompt_json(analysis.technical_specifications or {}),
            business_requirements=to_prompt_json(analysis.business_requirements or {}),
            risk_factors=to_prompt_json(analysis.risk_factors or []),
            max_questions=max_questions,
            categories=", ".join(categories),
            answer_instruction=ANSWER_INSTRUCTION if generate_ai_answers else NO_ANSWER_INSTRUCTION,
        )

    def parse(self, raw_response: str) -> list[dict[str, Any]]:
        """Normalized question dicts, or [] when the response is unusable."""
        try:
            data = extract_json_object(raw_response)
        except ValueError as e:
            logger.warning("Failed to parse question generation response", error=str(e))
            return []

        raw_items = data.get("questions")
        if not isinstance(raw_items, list):
            logger.warning("Question generation response has no questions list")
            return []

        items = []
        for raw in raw_items:
            if isinstance(raw, dict):
                item = normalize_question(raw)
                if item:
                    items.append(item)
        return items

    def _store_questions(self, analysis_id: int, items: list[dict[str, Any]]) -> list[Question]:
        """Insert all questions in one transaction.

        A concurrent generator for the same analysis loses on the
        (analysis_id, order_index) constraint.
        """
        questions = [
            Question(
                analysis_id=analysis_id,
                question_text=item["question_text"],
                question_type=item["question_type"],
                category=item["category"],
                priority=item["priority"],
                context=item.get("context"),
                options=item.get("options"),
                next_step_impact=item.get("next_step_impact"),
                order_index=position + 1,
            )
            for position, item in enumerate(items)
        ]
        self.db.add_all(questions)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                "Questions were generated concurrently for this analysis",
                code="QUESTIONS_ALREADY_EXIST",
                details={"analysis_id": analysis_id},
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to save questions") from e
        return questions

    def _store_answers(
        self,
        questions: list[Question],
        items: list[dict[str, Any]],
        model: str,
        metadata: dict[str, Any],
        result: GeneratedQuestions,
    ) -> None:
        """Best effort: each suggested answer commits on its own."""
        for question, item in zip(questions, items):
            text = item.get("ai_suggested_answer")
            if not text:
                continue
            answer = AIAnswer(
                question_id=question.id,
                answer_text=text,
                model_used=model,
                confidence_score=clamp_confidence(item.get("confidence_score"), DEFAULT_ANSWER_CONFIDENCE),
                generation_metadata=metadata,
            )
            self.db.add(answer)
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result.failed_answers.append(question.id)
                logger.warning(
                    "Failed to store AI answer",
                    question_id=question.id,
                    error=str(e),
                )
                continue
            result.ai_answers_count += 1

    async def generate_answer(
        self,
        analysis_id: int,
        question_id: int,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        context: Optional[str] = None,
    ) -> AIAnswer:
        """Generate one more suggested answer for an existing question.

        Earlier answers are kept; the new one is appended.

        Raises:
            NotFoundError, ConflictError(ANALYSIS_NOT_COMPLETED),
            UpstreamError: including malformed_response when no answer can be parsed
        """
        analysis = get_completed_analysis(self.db, analysis_id)
        question = (
            self.db.query(Question)
            .filter(Question.id == question_id, Question.analysis_id == analysis_id)
            .first()
        )
        if question is None:
            raise NotFoundError("Question", question_id)

        temperature = ANSWER_TEMPERATURE if temperature is None else temperature
        response = await self.client.complete(
            self.build_answer_prompt(analysis, question, context),
            model=model or self.client.default_model,
            max_tokens=ANSWER_MAX_TOKENS,
            temperature=temperature,
            system=SYSTEM_PROMPT,
        )
        text, confidence = self.parse_answer(response.content)

        answer = AIAnswer(
            question_id=question.id,
            answer_text=text,
            model_used=response.model,
            confidence_score=confidence,
            generation_metadata={
                "source": "on_demand",
                "usage": response.usage,
                "temperature": temperature,
            },
        )
        self.db.add(answer)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to save AI answer") from e

        logger.info(
            "AI answer generated",
            analysis_id=analysis_id,
            question_id=question.id,
            answer_id=answer.id,
        )
        return answer

    def build_answer_prompt(self, analysis: Analysis, question: Question, context: Optional[str]) -> str:
        previous = [a.answer_text for a in question.ai_answers]
        previous_answers = ""
        if previous:
            listed = "\n".join(f"- {text}" for text in previous)
            previous_answers = f"\nEarlier suggestions (offer a different or improved answer):\n{listed}\n"
        return safe_template_substitute(
            ANSWER_GENERATION_PROMPT,
            analysis=to_prompt_json(analysis.sections()),
            category=question.category,
            question=question.question_text,
            question_context=question.context or "not stated",
            extra_context=f"\nAdditional context: {context}\n" if context else "",
            previous_answers=previous_answers,
        )

    def parse_answer(self, raw_response: str) -> tuple[str, float]:
        try:
            data = extract_json_object(raw_response)
        except ValueError as e:
            raise UpstreamError("malformed_response", f"Unparseable answer response: {e}") from e

        text = data.get("answer_text") or data.get("answer")
        if not isinstance(text, str) or not text.strip():
            raise UpstreamError("malformed_response", "Answer response has no answer_text")
        return text.strip(), clamp_confidence(data.get("confidence_score"), DEFAULT_ANSWER_CONFIDENCE)


def delete_questions(db: Session, analysis_id: int) -> int:
    """Remove an analysis's questions with their answers and responses, and its summary.

    Explicit deletion is the only way to allow regeneration.
    """
    analysis = get_completed_analysis(db, analysis_id)
    questions = db.query(Question).filter(Question.analysis_id == analysis_id).all()
    if not questions:
        raise NotFoundError("Questions", analysis_id)

    for question in questions:
        db.delete(question)
    if analysis.summary is not None:
        db.delete(analysis.summary)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to delete questions") from e

    logger.info("Questions deleted", analysis_id=analysis_id, count=len(questions))
    return len(questions)
