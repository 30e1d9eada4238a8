"""Main entry point for the processor service."""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

import structlog

from api.services.reasoning import ReasoningClient
from processor.config import ProcessorSettings, get_settings
from processor.database import create_database
from processor.processors import ExtractProcessor
from processor.worker import Worker

logger = structlog.get_logger()


def configure_logging(settings: ProcessorSettings) -> None:
    """Configure stdlib logging level and structlog rendering."""
    # stdlib level is required for structlog.stdlib.filter_by_level
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
            if settings.LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ProcessorService:
    """Main processor service: owns the database, Claude client and worker."""

    def __init__(self, settings: Optional[ProcessorSettings] = None):
        self.settings = settings or get_settings()
        self.database = create_database(self.settings)
        self.reasoning_client = ReasoningClient.from_settings(self.settings)
        self.worker = Worker(
            self.settings,
            self.database.session_factory,
            self.reasoning_client,
        )
        self.worker.register_processor(ExtractProcessor)
        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Start the worker and wait for it to finish."""
        self.running = True
        logger.info("Starting processor service")

        if not self.settings.ANTHROPIC_API_KEY:
            logger.warning("ANTHROPIC_API_KEY is not set; extract jobs will be dead-lettered")

        self.tasks = [asyncio.create_task(self.worker.run(), name="worker")]
        logger.info(
            "Processor service started",
            components=[t.get_name() for t in self.tasks],
        )

        try:
            await asyncio.gather(*self.tasks)
        except asyncio.CancelledError:
            logger.info("Tasks cancelled")

    async def stop(self) -> None:
        """Stop all processor components gracefully."""
        if not self.running:
            return
        logger.info("Stopping processor service")
        self.running = False

        await self.worker.stop()
        logger.info("Final queue status", **self.worker.get_status())

        for task in self.tasks:
            if not task.done():
                task.cancel()

        await self.reasoning_client.close()
        self.database.dispose()

        logger.info("Processor service stopped")


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)
    service = ProcessorService(settings)

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def shutdown_handler():
        logger.info("Shutdown signal received")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    try:
        await service.start()
    except Exception as e:
        logger.error("Processor service error", error=str(e), exc_info=True)
        await service.stop()
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
