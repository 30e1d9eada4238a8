"""Structured extraction of RFP documents.

One Claude call turns raw document text into the typed sections stored on
an Analysis. Output that cannot be parsed produces a deterministic
fallback flagged as degraded, never an error.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from api.middleware.error_handler import UpstreamError
from api.models.analyses import SECTION_FIELDS, Analysis
from api.schemas.analyses import ExtractionResult
from api.services.prompts import EXTRACTION_PROMPT, SYSTEM_PROMPT, safe_template_substitute
from api.services.reasoning import ReasoningClient, extract_json_object

logger = structlog.get_logger()

TRUNCATION_MARKER = "\n\n[truncated]"

# Confidence at or below this marks a result as not trustworthy
LOW_CONFIDENCE_THRESHOLD = 0.3
FALLBACK_CONFIDENCE = 0.1
DEFAULT_CONFIDENCE = 0.7

FALLBACK_WARNING = (
    "The reasoning engine response could not be parsed; this record is a "
    "placeholder built from the source text and needs manual review."
)


@dataclass
class Extraction:
    """Result of one extraction run."""

    sections: dict[str, Any]
    confidence_score: float
    model: str
    raw_response: str = ""
    extra_fields: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False
    warning: Optional[str] = None
    truncated: bool = False


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Coerce a model-supplied confidence into [0, 1]."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return max(0.0, min(1.0, score))


def truncate_source(text: str, limit: int) -> tuple[str, bool]:
    """Cut text to limit characters, appending an explicit marker."""
    if len(text) <= limit:
        return text, False
    return text[:limit] + TRUNCATION_MARKER, True


class StructuredExtractor:
    """Turns RFP text into analysis sections."""

    def __init__(
        self,
        client: ReasoningClient,
        max_input_chars: int = 240_000,
        temperature: float = 0.3,
        max_tokens: int = 8000,
    ):
        self.client = client
        self.max_input_chars = max_input_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, client: ReasoningClient, settings) -> "StructuredExtractor":
        return cls(
            client,
            max_input_chars=settings.EXTRACTION_MAX_INPUT_CHARS,
            temperature=settings.EXTRACTION_TEMPERATURE,
            max_tokens=settings.CLAUDE_MAX_TOKENS,
        )

    async def extract(self, source_text: str, model: Optional[str] = None) -> Extraction:
        """Run extraction for one document.

        Raises:
            ConfigurationError: No API key (fatal)
            UpstreamError: Transport or API failure (retryable per kind)
        """
        model = model or self.client.default_model
        document, truncated = truncate_source(source_text, self.max_input_chars)
        if truncated:
            logger.warning(
                "Source text truncated for extraction",
                original_length=len(source_text),
                limit=self.max_input_chars,
            )

        prompt = safe_template_substitute(EXTRACTION_PROMPT, document=document)
        try:
            response = await self.client.complete(
                prompt,
                model=model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
            )
        except UpstreamError as e:
            if not e.unusable_output:
                raise
            result = self.fallback(source_text, model, raw_response="", reason=e.message)
        else:
            result = self.parse(response.content, source_text, response.model)

        result.truncated = truncated
        return result

    def parse(self, raw_response: str, source_text: str, model: str) -> Extraction:
        """Parse a raw model response, falling back when it is unusable."""
        try:
            data = extract_json_object(raw_response)
            parsed = ExtractionResult.model_validate(data)
        except (ValueError, PydanticValidationError) as e:
            return self.fallback(source_text, model, raw_response, reason=str(e))

        sections = parsed.model_dump(include=set(SECTION_FIELDS), mode="json")
        extra = dict(parsed.model_extra or {})
        confidence = clamp_confidence(parsed.confidence_score)

        logger.info(
            "Extraction parsed",
            functional_requirements=len(parsed.functional_requirements),
            non_functional_requirements=len(parsed.non_functional_requirements),
            risk_factors=len(parsed.risk_factors),
            unknown_fields=sorted(extra),
            confidence_score=confidence,
        )
        return Extraction(
            sections=sections,
            extra_fields=extra,
            confidence_score=confidence,
            model=model,
            raw_response=raw_response,
            warning=(
                "Low confidence extraction; review before relying on it"
                if confidence <= LOW_CONFIDENCE_THRESHOLD else None
            ),
        )

    def fallback(self, source_text: str, model: str, raw_response: str, reason: str) -> Extraction:
        """Deterministic placeholder derived only from the source text."""
        logger.warning("Failed to parse extraction response", error=reason)

        lines = [line.strip() for line in source_text.splitlines() if line.strip()]
        title = lines[0][:200] if lines else "Untitled RFP"
        overview = ExtractionResult(
            project_overview={
                "title": title,
                "description": source_text.strip()[:500],
                "scope": "Not determined (manual review required)",
                "objectives": [],
            }
        )
        return Extraction(
            sections=overview.model_dump(include=set(SECTION_FIELDS), mode="json"),
            confidence_score=FALLBACK_CONFIDENCE,
            model=model,
            raw_response=raw_response,
            degraded=True,
            warning=FALLBACK_WARNING,
        )


def apply_extraction(analysis: Analysis, extraction: Extraction) -> None:
    """Copy an extraction result onto its analysis row."""
    for name in SECTION_FIELDS:
        setattr(analysis, name, extraction.sections.get(name))
    analysis.extra_fields = extraction.extra_fields or None
    analysis.confidence_score = extraction.confidence_score
    analysis.model_version = extraction.model
    analysis.raw_response = extraction.raw_response
    analysis.degraded = extraction.degraded
    analysis.warning = extraction.warning
    analysis.input_truncated = extraction.truncated
