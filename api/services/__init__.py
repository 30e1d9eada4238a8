"""Pipeline services for the RFP Insight API."""

from .token import create_token, decode_token

__all__ = [
    "create_token",
    "decode_token",
]
