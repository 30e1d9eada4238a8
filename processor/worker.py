"""Worker that executes jobs from the queue."""

import asyncio
import time
from typing import Callable, Dict, Optional, Type

import structlog
from sqlalchemy.orm import Session

from api.middleware.error_handler import ConfigurationError, UpstreamError
from api.services.reasoning import ReasoningClient
from processor.config import ProcessorSettings
from processor.database import session_scope
from processor.processors.base import BaseProcessor
from processor.queue_manager import QueueManager

logger = structlog.get_logger()


def is_retryable(error: Exception) -> bool:
    """Whether a failed job should be attempted again."""
    if isinstance(error, ConfigurationError):
        return False
    if isinstance(error, UpstreamError):
        return error.retryable
    return True


class Worker:
    """Executes jobs from the queue with concurrency control.

    Uses a session factory to create fresh sessions per job to avoid
    concurrency issues with shared sessions.
    """

    def __init__(
        self,
        settings: ProcessorSettings,
        session_factory: Callable[[], Session],
        reasoning_client: ReasoningClient,
        processors: Optional[Dict[str, Type[BaseProcessor]]] = None,
    ):
        """Initialize worker.

        Args:
            settings: Processor settings (concurrency, polling, retry policy)
            session_factory: Factory function that creates new DB sessions
            reasoning_client: Claude client shared by every job
            processors: Map of job_type -> processor class
        """
        self.settings = settings
        self.session_factory = session_factory
        self.reasoning_client = reasoning_client
        self.processors = processors or {}
        self.running = False
        self.active_jobs: Dict[int, asyncio.Task] = {}
        self.max_concurrency = settings.QUEUE_MAX_CONCURRENCY
        self.poll_interval = settings.QUEUE_POLL_INTERVAL
        self._last_maintenance = 0.0

    def register_processor(self, processor_class: Type[BaseProcessor]) -> None:
        """Register a processor for a job type."""
        self.processors[processor_class.job_type] = processor_class
        logger.info("Processor registered", job_type=processor_class.job_type)

    def _queue(self, db: Session) -> QueueManager:
        return QueueManager(
            db,
            max_attempts=self.settings.QUEUE_MAX_ATTEMPTS,
            retry_base_delay=self.settings.QUEUE_RETRY_BASE_DELAY,
        )

    def _create_processor(self, job_type: str, db: Session) -> BaseProcessor:
        """Create a processor instance with its own session.

        Raises:
            ConfigurationError: If no processor registered for job type
        """
        if job_type not in self.processors:
            raise ConfigurationError(f"No processor registered for job type: {job_type}")

        processor_class = self.processors[job_type]
        return processor_class(db, self._queue(db), self.settings, self.reasoning_client)

    async def process_job(self, job: dict) -> None:
        """Process a single job with its own database session."""
        job_id = job["id"]
        job_type = job["job_type"]
        analysis_id = job.get("analysis_id")

        db = self.session_factory()
        processor = None
        try:
            processor = self._create_processor(job_type, db)

            logger.info(
                "Processing job",
                job_id=job_id,
                job_type=job_type,
                analysis_id=analysis_id,
                attempt=job.get("attempts"),
            )

            await processor.process(analysis_id=analysis_id, payload=job.get("payload"))
            self._queue(db).complete(job_id)

        except Exception as e:
            logger.error(
                "Job failed",
                job_id=job_id,
                job_type=job_type,
                analysis_id=analysis_id,
                error=str(e),
                exc_info=True,
            )
            db.rollback()
            dead = self._queue(db).fail(job_id, str(e), retryable=is_retryable(e))
            if processor is not None:
                processor.handle_failure(analysis_id, str(e), final=dead)

        finally:
            db.close()
            self.active_jobs.pop(job_id, None)

    def claim_next(self) -> Optional[dict]:
        """Claim one job using a fresh session."""
        with session_scope(self.session_factory) as db:
            return self._queue(db).claim_next()

    async def run(self) -> None:
        """Main worker loop."""
        self.running = True

        logger.info(
            "Worker started",
            max_concurrency=self.max_concurrency,
            registered_processors=list(self.processors.keys()),
        )

        while self.running:
            completed = [job_id for job_id, task in self.active_jobs.items() if task.done()]
            for job_id in completed:
                del self.active_jobs[job_id]

            now = time.monotonic()
            if now - self._last_maintenance > self.settings.QUEUE_MAINTENANCE_INTERVAL:
                self._last_maintenance = now
                self.run_maintenance()

            if len(self.active_jobs) >= self.max_concurrency:
                await asyncio.sleep(1)
                continue

            job = self.claim_next()
            if not job:
                await asyncio.sleep(self.poll_interval)
                continue

            task = asyncio.create_task(self.process_job(job))
            self.active_jobs[job["id"]] = task

        logger.info("Worker stopped")

    def run_maintenance(self) -> dict:
        """Recover stuck jobs and analyses left without a job."""
        db = self.session_factory()
        try:
            queue = self._queue(db)
            stuck_jobs = queue.recover_stuck_jobs(self.settings.QUEUE_STUCK_JOB_MINUTES)
            stuck_analyses = queue.recover_stuck_analyses(self.settings.QUEUE_STUCK_ANALYSIS_MINUTES)
        except Exception as e:
            # Maintenance retries on the next interval
            logger.error("Maintenance task failed", error=str(e), exc_info=True)
            db.rollback()
            return {"stuck_jobs": 0, "stuck_analyses": 0}
        finally:
            db.close()

        if stuck_jobs or stuck_analyses:
            logger.info(
                "Maintenance completed",
                stuck_jobs=stuck_jobs,
                stuck_analyses=stuck_analyses,
            )
        return {"stuck_jobs": stuck_jobs, "stuck_analyses": stuck_analyses}

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        self.running = False

        if self.active_jobs:
            logger.info("Waiting for active jobs to complete", count=len(self.active_jobs))
            await asyncio.gather(*self.active_jobs.values(), return_exceptions=True)

        logger.info("Worker shutdown complete")

    def get_status(self) -> dict:
        """Get worker status."""
        with session_scope(self.session_factory) as db:
            queue_status = self._queue(db).get_status()

        return {
            "running": self.running,
            "active_jobs": len(self.active_jobs),
            "max_concurrency": self.max_concurrency,
            "registered_processors": list(self.processors.keys()),
            "queue_status": queue_status,
        }
