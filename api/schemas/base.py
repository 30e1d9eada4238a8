"""Base Pydantic schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """
    Base model for request and response bodies.

    Field names go over the wire as-is (snake_case) and responses can be
    built straight from ORM rows.

    Usage:
        class MyResponse(APIModel):
            analysis_id: int
            processing_status: str
    """

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
    )


class SectionModel(BaseModel):
    """Lenient schema for a model-produced section.

    Unknown keys are kept rather than dropped so newer model output
    round-trips untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ErrorResponse(APIModel):
    """Standard error response format."""

    success: bool = False
    error: str
    code: str
    details: dict[str, Any] = {}
