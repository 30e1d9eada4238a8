"""Follow-up question, AI answer and user response models."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from api.config.database import Base
from api.models.base import utcnow

QUESTION_TYPES = (
    "single_choice",
    "multiple_choice",
    "text_short",
    "text_long",
    "number",
    "rating",
    "yes_no",
    "date",
    "checklist",
)

PRIORITIES = ("high", "medium", "low")

# response_type values
RESPONSE_AI_SELECTED = "ai_selected"
RESPONSE_USER_INPUT = "user_input"
RESPONSE_MIXED = "mixed"
RESPONSE_TYPES = (RESPONSE_AI_SELECTED, RESPONSE_USER_INPUT, RESPONSE_MIXED)


class Question(Base):
    """
    Follow-up question generated for an analysis.

    Written once per analysis; the (analysis_id, order_index) constraint
    rejects a second concurrent generation at the storage layer.
    """

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(
        Integer,
        ForeignKey("analyses.id", ondelete="CASCADE"),
        nullable=False,
    )

    question_text = Column(Text, nullable=False)
    question_type = Column(String(30), nullable=False, default="text_long")
    category = Column(String(100), nullable=False, default="general")
    priority = Column(String(10), nullable=False, default="medium")
    context = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False)
    options = Column(JSON, nullable=True)
    next_step_impact = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("analysis_id", "order_index", name="uq_questions_analysis_order"),
        Index("idx_questions_analysis", "analysis_id"),
    )

    # Relationships
    analysis = relationship("Analysis", back_populates="questions")
    ai_answers = relationship(
        "AIAnswer",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="AIAnswer.generated_at",
    )
    responses = relationship(
        "UserResponse",
        back_populates="question",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, analysis_id={self.analysis_id}, order={self.order_index})>"


class AIAnswer(Base):
    """AI-suggested answer for a question. New generations never overwrite old ones."""

    __tablename__ = "ai_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )

    answer_text = Column(Text, nullable=False)
    model_used = Column(String(100), nullable=True)
    confidence_score = Column(Float, nullable=False, default=0.7)
    generation_metadata = Column(JSON, nullable=True)
    generated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_ai_answers_question", "question_id"),
    )

    question = relationship("Question", back_populates="ai_answers")

    def __repr__(self) -> str:
        return f"<AIAnswer(id={self.id}, question_id={self.question_id})>"


class UserResponse(Base):
    """
    A user's final answer to a question.

    At most one row per (question, user); saving again updates it in place.
    """

    __tablename__ = "user_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(255), nullable=False)

    # ai_selected, user_input, mixed
    response_type = Column(String(20), nullable=False)
    final_answer = Column(Text, nullable=False)
    ai_answer_id = Column(
        Integer,
        ForeignKey("ai_answers.id", ondelete="SET NULL"),
        nullable=True,
    )
    user_input_text = Column(Text, nullable=True)
    confidence_level = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    is_final = Column(Boolean, nullable=False, default=True)
    answered_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=utcnow, nullable=True)

    __table_args__ = (
        UniqueConstraint("question_id", "user_id", name="uq_user_responses_question_user"),
        Index("idx_user_responses_user", "user_id"),
    )

    question = relationship("Question", back_populates="responses")
    ai_answer = relationship("AIAnswer")

    def __repr__(self) -> str:
        return f"<UserResponse(id={self.id}, question_id={self.question_id}, type={self.response_type})>"
