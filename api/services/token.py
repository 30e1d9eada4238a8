"""HS256 JWT token creation and validation.

Tokens are issued by the identity provider in front of this service;
create_token exists for tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, JWTError

from api.config.settings import Settings, get_settings


def create_token(
    data: dict[str, Any],
    expires_delta: timedelta = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Create an HS256-signed JWT token.

    Args:
        data: Claims to include in the token ("sub" is the user reference)
        expires_delta: Optional custom expiration time
        settings: Settings carrying the signing key (defaults to environment)

    Returns:
        Encoded JWT token string
    """
    settings = settings or get_settings()
    to_encode = data.copy()

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "iat": now})

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> dict[str, Any]:
    """
    Decode and validate an HS256-signed JWT token.

    Raises:
        JWTError: If token is invalid, expired, or has no subject
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise JWTError("Token has expired")
    except jwt.JWTClaimsError as e:
        raise JWTError(f"Invalid token claims: {e}")
    except JWTError as e:
        raise JWTError(f"Invalid token: {e}")

    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload
