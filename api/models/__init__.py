"""SQLAlchemy ORM models for RFP Insight.

All models are imported here to ensure they're registered with Base.metadata
before any database operations.
"""

# Import base first
from api.config.database import Base

# Pipeline models
from .analyses import Analysis
from .questions import Question, AIAnswer, UserResponse
from .summaries import AnalysisSummary

# Queue model
from .jobs import Job

__all__ = [
    "Base",
    "Analysis",
    "Question",
    "AIAnswer",
    "UserResponse",
    "AnalysisSummary",
    "Job",
]
