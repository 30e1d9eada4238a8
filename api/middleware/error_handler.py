"""Error taxonomy and global exception handlers for the API."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int = 400,
        details: dict = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(APIError):
    """Request failed validation before any work was done."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", field: str = None, details: dict = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details,
        )


class AuthError(APIError):
    """Missing or invalid credentials."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message=message, code="UNAUTHORIZED", status_code=401)


class NotFoundError(APIError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str | int):
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "id": identifier},
        )


class ConflictError(APIError):
    """Operation conflicts with the current state of a resource."""

    def __init__(self, message: str, code: str = "CONFLICT", details: dict = None):
        super().__init__(message=message, code=code, status_code=409, details=details)


class PersistenceError(APIError):
    """A primary write failed."""

    def __init__(self, message: str = "Failed to persist changes", details: dict = None):
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
            status_code=500,
            details=details,
        )


class ConfigurationError(APIError):
    """The service is missing required configuration. Never retried."""

    def __init__(self, message: str):
        super().__init__(message=message, code="CONFIGURATION_ERROR", status_code=500)


class UpstreamError(APIError):
    """The reasoning engine call failed.

    kind is one of auth, quota, network, timeout, malformed_response.
    """

    RETRYABLE_KINDS = frozenset({"quota", "network", "timeout"})

    def __init__(self, kind: str, message: str, upstream_status: int = None):
        self.kind = kind
        self.upstream_status = upstream_status
        details = {"kind": kind}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(
            message=message,
            code=f"UPSTREAM_{kind.upper()}",
            status_code=502,
            details=details,
        )

    @property
    def retryable(self) -> bool:
        return self.kind in self.RETRYABLE_KINDS

    @property
    def unusable_output(self) -> bool:
        """The call succeeded but produced nothing parseable."""
        return self.kind == "malformed_response" and self.upstream_status is None


def error_body(message: str, code: str, details: dict = None) -> dict:
    """Build the standard error response body."""
    return {
        "success": False,
        "error": message,
        "code": code,
        "details": details or {},
    }


def _first_error_field(errors: list) -> tuple[str, str]:
    first_error = errors[0] if errors else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    return field, first_error.get("msg", "Validation error")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle taxonomy errors."""
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(
            "API error",
            code=exc.code,
            message=exc.message,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle malformed request bodies and parameters."""
        errors = exc.errors()
        field, message = _first_error_field(errors)

        logger.warning(
            "Request validation error",
            field=field,
            message=message,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=400,
            content=error_body(
                message,
                "VALIDATION_ERROR",
                {"field": field, "errors": [
                    {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
                    for e in errors
                ]},
            ),
        )

    @app.exception_handler(PydanticValidationError)
    async def validation_error_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
        """Handle Pydantic validation errors raised inside handlers."""
        field, message = _first_error_field(exc.errors())

        logger.warning(
            "Validation error",
            field=field,
            message=message,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=400,
            content=error_body(message, "VALIDATION_ERROR", {"field": field}),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Handle database errors."""
        logger.error(
            "Database error",
            error=str(exc),
            path=request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content=error_body("A database error occurred", "DATABASE_ERROR"),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception(
            "Unexpected error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content=error_body("An unexpected error occurred", "INTERNAL_ERROR"),
        )
