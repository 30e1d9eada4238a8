"""Structured extraction processor."""

from typing import Optional

from api.models import Analysis
from api.models.analyses import STATUS_COMPLETED, STATUS_FAILED, STATUS_PROCESSING
from api.models.base import utcnow
from api.models.jobs import JOB_EXTRACT
from api.services.extractor import StructuredExtractor, apply_extraction
from processor.processors.base import BaseProcessor


class ExtractProcessor(BaseProcessor):
    """Runs extraction for a pending analysis and stores the sections.

    Flow:
    1. Skip analyses already completed or failed
    2. Mark the analysis processing
    3. One Claude call via StructuredExtractor
    4. Write sections, confidence and degradation flags; mark completed

    An unparseable response still completes (degraded). Transport and
    configuration errors propagate so the worker can retry or dead-letter.
    """

    job_type = JOB_EXTRACT

    async def process(
        self,
        analysis_id: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> None:
        if not analysis_id:
            raise ValueError("analysis_id is required")

        analysis = self.db.get(Analysis, analysis_id)
        if analysis is None:
            self.logger.warning("Analysis not found, skipping", analysis_id=analysis_id)
            return
        if analysis.is_terminal:
            self.logger.info(
                "Analysis already terminal, skipping",
                analysis_id=analysis_id,
                status=analysis.processing_status,
            )
            return

        analysis.processing_status = STATUS_PROCESSING
        self.db.commit()

        model = (payload or {}).get("model") or analysis.model_version
        extractor = StructuredExtractor.from_settings(self.reasoning_client, self.settings)
        extraction = await extractor.extract(analysis.source_text, model=model)

        apply_extraction(analysis, extraction)
        analysis.processing_status = STATUS_COMPLETED
        analysis.error_message = None
        analysis.completed_at = utcnow()
        self.db.commit()

        self.logger.info(
            "Extraction stored",
            analysis_id=analysis_id,
            degraded=extraction.degraded,
            confidence_score=extraction.confidence_score,
            truncated=extraction.truncated,
        )

    def handle_failure(self, analysis_id: Optional[int], error: str, final: bool) -> None:
        super().handle_failure(analysis_id, error, final)
        if not analysis_id:
            return

        self.db.rollback()
        analysis = self.db.get(Analysis, analysis_id)
        if analysis is None or analysis.is_terminal:
            return

        analysis.error_message = error
        if final:
            analysis.processing_status = STATUS_FAILED
            analysis.completed_at = utcnow()
        self.db.commit()
