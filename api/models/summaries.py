"""Consolidated analysis summary model."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from api.config.database import Base
from api.models.base import utcnow


class AnalysisSummary(Base):
    """
    Consolidated insights and readiness flags for one analysis.

    Written only by the consolidator, upserted on analysis_id.
    """

    __tablename__ = "analysis_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(
        Integer,
        ForeignKey("analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Statistics at generation time
    total_questions = Column(Integer, nullable=False, default=0)
    answered_questions = Column(Integer, nullable=False, default=0)
    ai_answers_used = Column(Integer, nullable=False, default=0)
    user_answers_used = Column(Integer, nullable=False, default=0)
    completion_percentage = Column(Float, nullable=False, default=0.0)

    consolidated_insights = Column(JSON, nullable=True)
    degraded = Column(Boolean, nullable=False, default=False)
    model_used = Column(String(100), nullable=True)
    generated_by = Column(String(255), nullable=True)

    # Readiness flags
    ready_for_market_research = Column(Boolean, nullable=False, default=False)
    ready_for_persona_analysis = Column(Boolean, nullable=False, default=False)
    ready_for_proposal_writing = Column(Boolean, nullable=False, default=False)

    summary_generated_at = Column(DateTime, nullable=True)
    last_updated_at = Column(DateTime, default=utcnow, nullable=False)

    analysis = relationship("Analysis", back_populates="summary")

    def __repr__(self) -> str:
        return f"<AnalysisSummary(id={self.id}, analysis_id={self.analysis_id})>"
