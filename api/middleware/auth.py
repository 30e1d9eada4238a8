"""Authentication middleware for JWT validation."""

import re
from typing import Any, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from api.middleware.error_handler import AuthError, error_body
from api.services.token import decode_token

logger = structlog.get_logger()

# Paths that don't require authentication
SKIP_AUTH_PATHS = [
    r"^/health",
    r"^/api/v1/health",
    r"^/api/docs",
    r"^/api/openapi\.json",
    r"^/api/redoc",
    r"^/$",
]

SKIP_AUTH_PATTERNS = [re.compile(p) for p in SKIP_AUTH_PATHS]

# Identity used when AUTH_ENABLED is off (local development only)
ANONYMOUS_USER = {"sub": "local-dev", "roles": []}


def should_skip_auth(path: str) -> bool:
    """Check if path should skip authentication."""
    return any(pattern.match(path) for pattern in SKIP_AUTH_PATTERNS)


def get_token_from_request(request: Request) -> Optional[str]:
    """Extract bearer token from the Authorization header."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(status_code=401, content=error_body(message, "UNAUTHORIZED"))


class AuthMiddleware(BaseHTTPMiddleware):
    """Validates JWT tokens on protected routes.

    Rejections are returned as responses here; exceptions raised inside
    middleware bypass the registered exception handlers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS" or should_skip_auth(request.url.path):
            return await call_next(request)

        settings = request.app.state.settings
        if not settings.AUTH_ENABLED:
            request.state.user = dict(ANONYMOUS_USER)
            return await call_next(request)

        token = get_token_from_request(request)
        if not token:
            return _unauthorized("Not authenticated")

        try:
            payload = decode_token(token, settings)
        except JWTError as e:
            logger.warning("Rejected token", path=request.url.path, error=str(e))
            return _unauthorized(str(e))

        request.state.user = payload
        structlog.contextvars.bind_contextvars(user_id=payload.get("sub"))

        return await call_next(request)


def get_current_user(request: Request) -> dict[str, Any]:
    """
    Get current user claims from request state.

    Usage:
        @router.get("/me")
        def get_me(user: dict = Depends(get_current_user)):
            return user
    """
    user = getattr(request.state, "user", None)
    if not user:
        raise AuthError()
    return user


def get_current_user_id(request: Request) -> str:
    """The requesting user's reference (the token subject)."""
    return str(get_current_user(request)["sub"])
