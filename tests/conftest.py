"""
Pytest Configuration and Shared Fixtures

In-memory SQLite database, a scripted reasoning client and an
authenticated TestClient over the real application factory.
"""

import json
from typing import Any, Optional, Union

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from api.config.database import Database
from api.config.settings import Settings
from api.main import create_app
from api.models import AIAnswer, Analysis, Question, UserResponse
from api.models.analyses import STATUS_COMPLETED
from api.services.reasoning import ReasoningClient, ReasoningResponse
from api.services.token import create_token


# ============================================================================
# Reasoning client
# ============================================================================

class FakeReasoningClient(ReasoningClient):
    """Returns scripted responses in order and records every call.

    A scripted item may be a string (response text), a dict (serialised
    to JSON) or an exception instance (raised).
    """

    def __init__(self, responses: Optional[list[Union[str, dict, Exception]]] = None):
        super().__init__(api_key="test-key", default_model="test-model")
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Union[str, dict, Exception]) -> None:
        self.responses.extend(responses)

    async def complete(self, prompt, model=None, max_tokens=None, temperature=0.3, system=None):
        self.calls.append(
            {
                "prompt": prompt,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "system": system,
            }
        )
        if not self.responses:
            raise AssertionError("FakeReasoningClient has no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        content = json.dumps(item) if isinstance(item, dict) else item
        return ReasoningResponse(content=content, model=model or self.default_model)

    async def close(self) -> None:
        pass


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def database():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def db_session(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def fake_client():
    return FakeReasoningClient()


# ============================================================================
# Application
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        AUTH_ENABLED=True,
        SECRET_KEY="test-secret-key",
        ANTHROPIC_API_KEY="test-key",
        CLAUDE_MODEL="test-model",
        DEBUG=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings, database, fake_client):
    return create_app(settings=settings, database=database, reasoning_client=fake_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings):
    token = create_token({"sub": "user-1"}, settings=settings)
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Data builders
# ============================================================================

def make_analysis(db, project_id: Optional[str] = "project-1", status: str = STATUS_COMPLETED, **fields) -> Analysis:
    """Insert an analysis with typical extracted sections."""
    values = {
        "source_text": "Website relaunch RFP\nWe need a new customer portal.",
        "project_overview": {
            "title": "Website relaunch",
            "description": "New customer portal",
            "scope": "Design and build",
            "objectives": ["Improve self-service"],
        },
        "functional_requirements": [{"title": "User login", "priority": "high"}],
        "non_functional_requirements": [],
        "technical_specifications": {"platform": ["web"], "technologies": [], "integrations": ["CRM"]},
        "business_requirements": {"budget_range": "100k", "success_metrics": ["NPS +10"]},
        "keywords": [{"term": "portal"}],
        "risk_factors": [{"factor": "Tight timeline", "level": "medium"}],
        "questions_for_client": [],
        "confidence_score": 0.8,
        "model_version": "test-model",
    }
    values.update(fields)
    analysis = Analysis(project_id=project_id, processing_status=status, **values)
    db.add(analysis)
    db.commit()
    return analysis


def make_questions(db, analysis: Analysis, categories: list[str]) -> list[Question]:
    """One question per entry in categories, each with one AI answer."""
    questions = []
    for position, category in enumerate(categories, start=1):
        question = Question(
            analysis_id=analysis.id,
            question_text=f"Question {position} about {category}?",
            question_type="text_long",
            category=category,
            priority="medium",
            order_index=position,
        )
        db.add(question)
        questions.append(question)
    db.commit()

    for question in questions:
        db.add(
            AIAnswer(
                question_id=question.id,
                answer_text=f"Suggested answer {question.order_index}",
                model_used="test-model",
                confidence_score=0.7,
            )
        )
    db.commit()
    return questions


def first_ai_answer(db, question: Question) -> AIAnswer:
    return db.query(AIAnswer).filter(AIAnswer.question_id == question.id).first()


def add_response(db, question: Question, user_id: str, response_type: str, final_answer: str) -> UserResponse:
    response = UserResponse(
        question_id=question.id,
        user_id=user_id,
        response_type=response_type,
        final_answer=final_answer,
    )
    db.add(response)
    db.commit()
    return response


def extraction_payload(**overrides) -> dict:
    payload = {
        "project_overview": {
            "title": "Customer Portal",
            "description": "Replace the legacy portal",
            "scope": "Web and mobile",
            "objectives": ["Self-service", "Lower support cost"],
        },
        "functional_requirements": [
            {"title": "Login", "description": "SSO login", "priority": "high"},
            "Order history",
        ],
        "non_functional_requirements": [{"title": "Availability", "description": "99.9%"}],
        "technical_specifications": {"platform": "web", "technologies": ["Python"], "integrations": ["SAP"]},
        "business_requirements": {"budget_range": "200k", "timeline": "6 months", "success_metrics": ["NPS"]},
        "keywords": ["portal", {"term": "SSO", "importance": "high"}],
        "risk_factors": [{"factor": "Legacy data", "level": "high", "mitigation": "Migration plan"}],
        "questions_for_client": ["Who hosts the system?"],
        "confidence_score": 0.85,
    }
    payload.update(overrides)
    return payload
