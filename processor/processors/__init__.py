"""Job processors for the processing pipeline.

1. ExtractProcessor - Structured RFP extraction via Claude
"""

from .base import BaseProcessor
from .extract import ExtractProcessor

__all__ = [
    "BaseProcessor",
    "ExtractProcessor",
]
