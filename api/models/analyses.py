"""Analysis model for structured RFP extraction results."""

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from api.models.base import BaseModel

# processing_status values
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

# Extracted sections, in prompt order
SECTION_FIELDS = (
    "project_overview",
    "functional_requirements",
    "non_functional_requirements",
    "technical_specifications",
    "business_requirements",
    "keywords",
    "risk_factors",
    "questions_for_client",
)


class Analysis(BaseModel):
    """
    Structured extraction of one RFP document.

    Created pending at ingestion, filled in by the extract job, and frozen
    once it reaches a terminal status. The secondary_analysis slot is the
    only field written afterwards (overwritten on every run).
    """

    __tablename__ = "analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Owning project (external reference; standalone analyses have none)
    project_id = Column(String(100), nullable=True)
    created_by = Column(String(255), nullable=True)

    source_text = Column(Text, nullable=False)
    model_version = Column(String(100), nullable=True)

    # Extracted sections
    project_overview = Column(JSON, nullable=True)
    functional_requirements = Column(JSON, nullable=True)
    non_functional_requirements = Column(JSON, nullable=True)
    technical_specifications = Column(JSON, nullable=True)
    business_requirements = Column(JSON, nullable=True)
    keywords = Column(JSON, nullable=True)
    risk_factors = Column(JSON, nullable=True)
    questions_for_client = Column(JSON, nullable=True)
    extra_fields = Column(JSON, nullable=True)  # Unrecognised top-level keys from the model

    confidence_score = Column(Float, nullable=True)

    # pending, processing, completed, failed
    processing_status = Column(String(20), nullable=False, default=STATUS_PENDING)
    degraded = Column(Boolean, nullable=False, default=False)
    warning = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    input_truncated = Column(Boolean, nullable=False, default=False)

    # Raw AI response for debugging
    raw_response = Column(Text, nullable=True)

    secondary_analysis = Column(JSON, nullable=True)
    secondary_analysis_at = Column(DateTime, nullable=True)

    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_analyses_project", "project_id"),
        Index("idx_analyses_status", "processing_status"),
    )

    # Relationships
    questions = relationship(
        "Question",
        back_populates="analysis",
        cascade="all, delete-orphan",
        order_by="Question.order_index",
    )
    summary = relationship(
        "AnalysisSummary",
        back_populates="analysis",
        cascade="all, delete-orphan",
        uselist=False,
    )

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.processing_status == STATUS_COMPLETED

    def sections(self) -> dict:
        """Extracted sections keyed by name."""
        return {name: getattr(self, name) for name in SECTION_FIELDS}

    def __repr__(self) -> str:
        return f"<Analysis(id={self.id}, status={self.processing_status})>"
