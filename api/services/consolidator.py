"""Consolidation of an analysis and its answers into insights and readiness.

Readiness thresholds (defaults, configurable through settings):

    market research     completion >= 50%, a market_context question answered,
                        insight confidence >= 0.6
    persona analysis    completion >= 50%, a target_audience question answered,
                        insight confidence >= 0.6
    proposal writing    completion >= 70%, at least 75% of the core categories
                        (market_context, technical_requirements, business_goals,
                        target_audience) answered, insight confidence >= 0.7
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from api.middleware.error_handler import PersistenceError, UpstreamError, ValidationError
from api.models import Analysis, AnalysisSummary
from api.models.base import utcnow
from api.services.analyses import get_completed_analysis
from api.services.extractor import clamp_confidence
from api.services.prompts import (
    CONSOLIDATION_PROMPT,
    DEPTH_INSTRUCTIONS,
    NO_RECOMMENDATION_CLAUSE,
    RECOMMENDATION_CLAUSE,
    SYSTEM_PROMPT,
    format_qa_pairs,
    safe_template_substitute,
    to_prompt_json,
)
from api.services.question_generator import DEFAULT_CATEGORIES
from api.services.reasoning import ReasoningClient, extract_json_object
from api.services.reconciler import AnswerStatistics, ResponseReconciler, compute_statistics, is_answered

logger = structlog.get_logger()

CORE_CATEGORIES = tuple(DEFAULT_CATEGORIES)

FALLBACK_INSIGHT_CONFIDENCE = 0.3

# Minimum answered questions per requested analysis depth
MINIMUM_ANSWERS_BY_DEPTH = {"basic": 3, "detailed": 5, "comprehensive": 7}
DEFAULT_PROMPT_DEPTH = "detailed"
COMPREHENSIVE_MAX_TOKENS = 12000

NEXT_STEP_MARKET_RESEARCH = "market_research"
NEXT_STEP_PERSONA_ANALYSIS = "persona_analysis"
NEXT_STEP_PROPOSAL_WRITING = "proposal_writing"


@dataclass(frozen=True)
class ReadinessThresholds:
    market_min_completion: float = 50.0
    market_min_confidence: float = 0.6
    persona_min_completion: float = 50.0
    persona_min_confidence: float = 0.6
    proposal_min_completion: float = 70.0
    proposal_min_coverage: float = 0.75
    proposal_min_confidence: float = 0.7

    @classmethod
    def from_settings(cls, settings) -> "ReadinessThresholds":
        return cls(
            market_min_completion=settings.READINESS_MARKET_MIN_COMPLETION,
            market_min_confidence=settings.READINESS_MARKET_MIN_CONFIDENCE,
            persona_min_completion=settings.READINESS_PERSONA_MIN_COMPLETION,
            persona_min_confidence=settings.READINESS_PERSONA_MIN_CONFIDENCE,
            proposal_min_completion=settings.READINESS_PROPOSAL_MIN_COMPLETION,
            proposal_min_coverage=settings.READINESS_PROPOSAL_MIN_COVERAGE,
            proposal_min_confidence=settings.READINESS_PROPOSAL_MIN_CONFIDENCE,
        )


@dataclass(frozen=True)
class Readiness:
    market_research: bool
    persona_analysis: bool
    proposal_writing: bool

    @property
    def next_steps(self) -> list[str]:
        steps = []
        if self.market_research:
            steps.append(NEXT_STEP_MARKET_RESEARCH)
        if self.persona_analysis:
            steps.append(NEXT_STEP_PERSONA_ANALYSIS)
        if self.proposal_writing:
            steps.append(NEXT_STEP_PROPOSAL_WRITING)
        return steps


def evaluate_readiness(
    completion: float,
    answered_categories: set[str],
    confidence: float,
    thresholds: ReadinessThresholds = ReadinessThresholds(),
) -> Readiness:
    """Readiness flags from completion percentage, answered categories and insight confidence."""
    coverage = len(answered_categories & set(CORE_CATEGORIES)) / len(CORE_CATEGORIES)
    return Readiness(
        market_research=(
            completion >= thresholds.market_min_completion
            and "market_context" in answered_categories
            and confidence >= thresholds.market_min_confidence
        ),
        persona_analysis=(
            completion >= thresholds.persona_min_completion
            and "target_audience" in answered_categories
            and confidence >= thresholds.persona_min_confidence
        ),
        proposal_writing=(
            completion >= thresholds.proposal_min_completion
            and coverage >= thresholds.proposal_min_coverage
            and confidence >= thresholds.proposal_min_confidence
        ),
    )


def readiness_of(summary: AnalysisSummary) -> Readiness:
    return Readiness(
        market_research=summary.ready_for_market_research,
        persona_analysis=summary.ready_for_persona_analysis,
        proposal_writing=summary.ready_for_proposal_writing,
    )


def fallback_insights(analysis: Analysis, qa_pairs: list[tuple[str, str]], stats: AnswerStatistics) -> dict[str, Any]:
    """Deterministic insights assembled from stored data only."""
    overview = analysis.project_overview or {}
    title = overview.get("title") or "the project"
    unanswered = stats.total_questions - stats.answered_questions
    return {
        "executive_summary": (
            f"Automatic consolidation was unavailable for {title}. "
            f"{stats.answered_questions} of {stats.total_questions} follow-up questions are answered."
        ),
        "confidence_score": FALLBACK_INSIGHT_CONFIDENCE,
        "analysis_quality": "low",
        "key_insights": [f"{question}: {answer}" for question, answer in qa_pairs[:10]],
        "market_context": {},
        "technical_requirements": {},
        "business_implications": {},
        "recommended_approach": {},
        "gap_analysis": [f"{unanswered} follow-up questions remain unanswered"] if unanswered else [],
        "next_steps": ["Review the answers manually and regenerate the consolidation"],
        "success_metrics": list((analysis.business_requirements or {}).get("success_metrics") or []),
    }


@dataclass
class ConsolidationResult:
    summary: AnalysisSummary
    readiness: Readiness
    was_cached: bool
    degraded: bool


class Consolidator:
    """Builds and caches the AnalysisSummary for an analysis."""

    def __init__(
        self,
        db: Session,
        client: ReasoningClient,
        thresholds: ReadinessThresholds = ReadinessThresholds(),
        max_tokens: int = 8000,
        temperature: float = 0.5,
    ):
        self.db = db
        self.client = client
        self.thresholds = thresholds
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.reconciler = ResponseReconciler(db)

    def get_summary(self, analysis_id: int) -> Optional[AnalysisSummary]:
        return self.db.query(AnalysisSummary).filter(AnalysisSummary.analysis_id == analysis_id).first()

    async def consolidate(
        self,
        analysis_id: int,
        user_id: str,
        force_regenerate: bool = False,
        model: Optional[str] = None,
        focus_areas: Optional[list[str]] = None,
        temperature: Optional[float] = None,
        analysis_depth: Optional[str] = None,
        include_recommendations: bool = True,
    ) -> ConsolidationResult:
        """Return the cached summary, or build a new one.

        analysis_depth (basic, detailed, comprehensive) shapes the prompt and
        requires at least 3, 5 or 7 answered questions. Without it any
        answered question is enough and the prompt asks for a detailed
        analysis.

        Raises:
            ValidationError(NO_ANSWERS_FOUND): Nothing answered yet; nothing is written
            ValidationError(INSUFFICIENT_ANSWERS): Too few answers for the requested depth
        """
        if analysis_depth is not None and analysis_depth not in MINIMUM_ANSWERS_BY_DEPTH:
            raise ValidationError(
                "analysis_depth must be one of " + ", ".join(MINIMUM_ANSWERS_BY_DEPTH),
                field="analysis_depth",
            )

        analysis = get_completed_analysis(self.db, analysis_id)

        existing = self.get_summary(analysis_id)
        if existing is not None and existing.summary_generated_at and not force_regenerate:
            logger.info("Returning cached summary", analysis_id=analysis_id)
            return ConsolidationResult(
                summary=existing,
                readiness=readiness_of(existing),
                was_cached=True,
                degraded=existing.degraded,
            )

        questions = self.reconciler.questions_for(analysis_id)
        responses = self.reconciler.responses_for(analysis_id, user_id)
        stats = compute_statistics(questions, responses)
        if stats.answered_questions == 0:
            raise ValidationError(
                "No answered questions found for this analysis",
                code="NO_ANSWERS_FOUND",
            )
        if analysis_depth is not None:
            required = MINIMUM_ANSWERS_BY_DEPTH[analysis_depth]
            if stats.answered_questions < required:
                raise ValidationError(
                    f"A {analysis_depth} analysis needs at least {required} answered questions",
                    code="INSUFFICIENT_ANSWERS",
                    details={
                        "analysis_depth": analysis_depth,
                        "current_answers": stats.answered_questions,
                        "required_answers": required,
                    },
                )

        qa_pairs = [
            (f"[{q.category}] {q.question_text}", responses[q.id].final_answer)
            for q in questions
            if is_answered(responses.get(q.id))
        ]
        model = model or self.client.default_model
        depth = analysis_depth or DEFAULT_PROMPT_DEPTH
        prompt = self.build_prompt(analysis, qa_pairs, focus_areas, depth, include_recommendations)
        max_tokens = max(self.max_tokens, COMPREHENSIVE_MAX_TOKENS) if depth == "comprehensive" else self.max_tokens

        insights = None
        try:
            response = await self.client.complete(
                prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                system=SYSTEM_PROMPT,
            )
            model = response.model
            insights = self.parse(response.content)
        except UpstreamError as e:
            if not e.unusable_output:
                raise

        degraded = insights is None
        if degraded:
            logger.warning("Using fallback insights", analysis_id=analysis_id)
            insights = fallback_insights(analysis, qa_pairs, stats)

        confidence = clamp_confidence(insights.get("confidence_score"), FALLBACK_INSIGHT_CONFIDENCE)
        insights["confidence_score"] = confidence
        readiness = evaluate_readiness(
            stats.completion_percentage,
            stats.answered_categories,
            confidence,
            self.thresholds,
        )

        summary = self._upsert(analysis_id, user_id, stats, insights, readiness, model, degraded)
        logger.info(
            "Consolidation complete",
            analysis_id=analysis_id,
            completion_percentage=stats.completion_percentage,
            next_steps_ready=readiness.next_steps,
            degraded=degraded,
        )
        return ConsolidationResult(summary=summary, readiness=readiness, was_cached=False, degraded=degraded)

    def build_prompt(
        self,
        analysis: Analysis,
        qa_pairs: list[tuple[str, str]],
        focus_areas: Optional[list[str]] = None,
        depth: str = DEFAULT_PROMPT_DEPTH,
        include_recommendations: bool = True,
    ) -> str:
        snapshot = analysis.sections()
        snapshot["confidence_score"] = analysis.confidence_score
        focus_clause = ""
        if focus_areas:
            focus_clause = f"\nPay particular attention to: {', '.join(focus_areas)}.\n"
        return safe_template_substitute(
            CONSOLIDATION_PROMPT,
            analysis=to_prompt_json(snapshot),
            answers=format_qa_pairs(qa_pairs),
            depth_instruction=DEPTH_INSTRUCTIONS[depth],
            recommendation_clause=RECOMMENDATION_CLAUSE if include_recommendations else NO_RECOMMENDATION_CLAUSE,
            focus_clause=focus_clause,
        )

    def parse(self, raw_response: str) -> Optional[dict[str, Any]]:
        try:
            data = extract_json_object(raw_response)
        except ValueError as e:
            logger.warning("Failed to parse consolidation response", error=str(e))
            return None
        if not data.get("executive_summary"):
            logger.warning("Consolidation response has no executive summary")
            return None
        return data

    def _upsert(
        self,
        analysis_id: int,
        user_id: str,
        stats: AnswerStatistics,
        insights: dict[str, Any],
        readiness: Readiness,
        model: str,
        degraded: bool,
    ) -> AnalysisSummary:
        def apply() -> AnalysisSummary:
            summary = self.get_summary(analysis_id)
            if summary is None:
                summary = AnalysisSummary(analysis_id=analysis_id)
                self.db.add(summary)
            now = utcnow()
            summary.total_questions = stats.total_questions
            summary.answered_questions = stats.answered_questions
            summary.ai_answers_used = stats.ai_answers_used
            summary.user_answers_used = stats.user_answers_used
            summary.completion_percentage = stats.completion_percentage
            summary.consolidated_insights = insights
            summary.degraded = degraded
            summary.model_used = model
            summary.generated_by = user_id
            summary.ready_for_market_research = readiness.market_research
            summary.ready_for_persona_analysis = readiness.persona_analysis
            summary.ready_for_proposal_writing = readiness.proposal_writing
            summary.summary_generated_at = now
            summary.last_updated_at = now
            return summary

        try:
            summary = apply()
            self.db.commit()
            return summary
        except IntegrityError:
            # Another consolidation inserted first; overwrite it
            self.db.rollback()

        try:
            summary = apply()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to save analysis summary") from e
        return summary

