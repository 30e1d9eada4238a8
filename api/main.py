"""
RFP Insight API - FastAPI Application

Main entry point for the API server.
Run with: uvicorn api.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.config.database import Database
from api.config.settings import Settings, get_settings
from api.endpoints import api_router
from api.middleware.auth import AuthMiddleware
from api.middleware.error_handler import setup_exception_handlers
from api.middleware.logging import LoggingMiddleware, configure_logging
from api.services.reasoning import ReasoningClient

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    reasoning_client: Optional[ReasoningClient] = None,
) -> FastAPI:
    """Build the application.

    Components not passed in are constructed once in the lifespan and
    shared for the life of the process.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting RFP Insight API",
            version=settings.APP_VERSION,
            debug=settings.DEBUG,
        )

        owns_database = app.state.database is None
        owns_client = app.state.reasoning_client is None
        if owns_database:
            app.state.database = Database(settings.DATABASE_URL, debug=settings.DEBUG)
        if owns_client:
            app.state.reasoning_client = ReasoningClient.from_settings(settings)

        if not settings.ANTHROPIC_API_KEY and owns_client:
            logger.warning("ANTHROPIC_API_KEY is not set; pipeline stages will fail")

        if settings.AUTO_CREATE_TABLES:
            logger.info("Creating database tables")
            app.state.database.create_all()

        yield

        logger.info("Shutting down RFP Insight API")
        if owns_client:
            await app.state.reasoning_client.close()
        if owns_database:
            app.state.database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="RFP analysis: extraction, follow-up questions, answers and consolidation",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        openapi_url="/api/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.reasoning_client = reasoning_client

    setup_exception_handlers(app)

    # Starlette runs the last-added middleware first: CORS, logging, auth
    app.add_middleware(AuthMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def root_health():
        """Simple health check for load balancer."""
        return {"status": "ok", "version": settings.APP_VERSION}

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/api/docs" if settings.DEBUG else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_settings.DEBUG,
        log_level=_settings.LOG_LEVEL.lower(),
    )
