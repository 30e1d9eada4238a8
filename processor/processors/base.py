"""Base processor class for all job processors."""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from api.services.reasoning import ReasoningClient
from processor.config import ProcessorSettings
from processor.queue_manager import QueueManager


class BaseProcessor(ABC):
    """Abstract base class for job processors."""

    # Override in subclasses
    job_type: str = "base"

    def __init__(
        self,
        db: Session,
        queue: QueueManager,
        settings: ProcessorSettings,
        reasoning_client: ReasoningClient,
    ):
        """Initialize processor with its session, queue and shared services.

        Args:
            db: SQLAlchemy session owned by this job
            queue: Queue manager bound to the same session
            settings: Processor settings
            reasoning_client: Process-wide Claude client
        """
        self.db = db
        self.queue = queue
        self.settings = settings
        self.reasoning_client = reasoning_client
        self.logger = structlog.get_logger().bind(processor=self.job_type)

    @abstractmethod
    async def process(
        self,
        analysis_id: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> None:
        """Process a job.

        Args:
            analysis_id: ID of the analysis to process
            payload: Additional job data

        Raises:
            Exception: If processing fails (will be caught by worker for retry)
        """

    def handle_failure(self, analysis_id: Optional[int], error: str, final: bool) -> None:
        """Record a failed attempt on the domain row.

        Called by the worker after the job itself has been rescheduled or
        dead-lettered. final is True when no further attempt will run.
        """
        self.logger.warning(
            "Job attempt failed",
            analysis_id=analysis_id,
            error=error,
            final=final,
        )
