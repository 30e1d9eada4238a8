"""Secondary (deep-dive) analysis from ad hoc question/answer pairs."""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.middleware.error_handler import PersistenceError, UpstreamError, ValidationError
from api.models import Analysis
from api.models.base import utcnow
from api.services.analyses import get_completed_analysis
from api.services.prompts import (
    SECONDARY_ANALYSIS_PROMPT,
    SYSTEM_PROMPT,
    format_qa_pairs,
    safe_template_substitute,
    to_prompt_json,
)
from api.services.reasoning import ReasoningClient, extract_json_object

logger = structlog.get_logger()

REQUIRED_BLOCKS = ("market_research_insights", "persona_analysis_insights")

FALLBACK_WARNING = "The reasoning engine response could not be parsed; raw output kept for manual review."


@dataclass
class SecondaryResult:
    analysis: Analysis
    secondary_analysis: dict[str, Any]
    degraded: bool


def analysis_snapshot(analysis: Analysis) -> dict[str, Any]:
    """Everything known about an analysis, for prompting."""
    snapshot = analysis.sections()
    snapshot.update(
        project_id=analysis.project_id,
        confidence_score=analysis.confidence_score,
        extra_fields=analysis.extra_fields or {},
    )
    if analysis.summary is not None:
        snapshot["consolidated_insights"] = analysis.summary.consolidated_insights
    return snapshot


class SecondaryAnalyzer:
    """Writes the secondary_analysis slot of an analysis (overwritten each run)."""

    def __init__(self, db: Session, client: ReasoningClient, max_tokens: int = 8000, temperature: float = 0.5):
        self.db = db
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def analyze(
        self,
        analysis_id: int,
        pairs: list[tuple[str, str]],
        model: Optional[str] = None,
    ) -> SecondaryResult:
        if not pairs:
            raise ValidationError("At least one question/answer pair is required", field="answers")
        analysis = get_completed_analysis(self.db, analysis_id)
        model = model or self.client.default_model

        prompt = safe_template_substitute(
            SECONDARY_ANALYSIS_PROMPT,
            analysis=to_prompt_json(analysis_snapshot(analysis)),
            answers=format_qa_pairs(pairs),
        )

        raw_response = ""
        data = None
        try:
            response = await self.client.complete(
                prompt,
                model=model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
            )
            raw_response = response.content
            model = response.model
            data = self.parse(raw_response)
        except UpstreamError as e:
            if not e.unusable_output:
                raise

        degraded = data is None
        if degraded:
            data = {
                "degraded": True,
                "warning": FALLBACK_WARNING,
                "raw_response": raw_response,
            }
        else:
            data["degraded"] = False

        data["model_used"] = model
        data["pair_count"] = len(pairs)
        data["generated_at"] = utcnow().isoformat()

        analysis.secondary_analysis = data
        analysis.secondary_analysis_at = utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to save secondary analysis") from e

        logger.info(
            "Secondary analysis stored",
            analysis_id=analysis_id,
            pair_count=len(pairs),
            degraded=degraded,
        )
        return SecondaryResult(analysis=analysis, secondary_analysis=data, degraded=degraded)

    def parse(self, raw_response: str) -> Optional[dict[str, Any]]:
        try:
            data = extract_json_object(raw_response)
        except ValueError as e:
            logger.warning("Failed to parse secondary analysis response", error=str(e))
            return None
        missing = [block for block in REQUIRED_BLOCKS if not isinstance(data.get(block), dict)]
        if missing:
            logger.warning("Secondary analysis response missing blocks", missing=missing)
            return None
        return data
