"""API endpoints for RFP Insight."""

from fastapi import APIRouter

from api.schemas.base import ErrorResponse

from .health import router as health_router
from .analyses import router as analyses_router
from .questions import router as questions_router
from .consolidation import router as consolidation_router
from .queue import router as queue_router

# Every error leaves the API in the same envelope
ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 401, 404, 409, 500, 502)
}

api_router = APIRouter(responses=ERROR_RESPONSES)

api_router.include_router(health_router, prefix="/health", tags=["Health"])
api_router.include_router(analyses_router, prefix="/analyses", tags=["Analyses"])
api_router.include_router(questions_router, prefix="/analyses", tags=["Questions"])
api_router.include_router(consolidation_router, prefix="/analyses", tags=["Consolidation"])
api_router.include_router(queue_router, prefix="/queue", tags=["Queue"])

__all__ = ["api_router"]
