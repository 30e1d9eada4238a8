"""
Secondary Analysis Tests
"""

import pytest

from api.middleware.error_handler import ConflictError, ValidationError
from api.models import AnalysisSummary
from api.services.secondary import SecondaryAnalyzer, analysis_snapshot
from tests.conftest import FakeReasoningClient, make_analysis

PAIRS = [("Who are the users?", "Store managers"), ("Budget?", "About 200k")]


def secondary_payload() -> dict:
    return {
        "market_research_insights": {"market_size": "Large", "trends": ["Omnichannel"]},
        "persona_analysis_insights": {"primary_personas": ["Store manager"]},
        "enhanced_recommendations": ["Start with a pilot"],
    }


async def test_stores_secondary_analysis(db_session):
    analysis = make_analysis(db_session)
    client = FakeReasoningClient([secondary_payload()])

    result = await SecondaryAnalyzer(db_session, client).analyze(analysis.id, PAIRS)

    assert not result.degraded
    stored = analysis.secondary_analysis
    assert stored["market_research_insights"]["market_size"] == "Large"
    assert stored["pair_count"] == 2
    assert stored["model_used"] == "test-model"
    assert analysis.secondary_analysis_at is not None
    assert "Q2: Budget?\nA2: About 200k" in client.calls[0]["prompt"]


async def test_rerun_overwrites(db_session):
    analysis = make_analysis(db_session)
    second = secondary_payload()
    second["enhanced_recommendations"] = ["Go big"]
    client = FakeReasoningClient([secondary_payload(), second])
    analyzer = SecondaryAnalyzer(db_session, client)

    await analyzer.analyze(analysis.id, PAIRS)
    await analyzer.analyze(analysis.id, PAIRS[:1])

    assert analysis.secondary_analysis["enhanced_recommendations"] == ["Go big"]
    assert analysis.secondary_analysis["pair_count"] == 1


async def test_missing_blocks_are_degraded(db_session):
    analysis = make_analysis(db_session)
    client = FakeReasoningClient(['{"market_research_insights": {}}'])

    result = await SecondaryAnalyzer(db_session, client).analyze(analysis.id, PAIRS)

    assert result.degraded
    assert analysis.secondary_analysis["degraded"] is True
    assert analysis.secondary_analysis["raw_response"] == '{"market_research_insights": {}}'


async def test_requires_pairs(db_session):
    analysis = make_analysis(db_session)

    with pytest.raises(ValidationError):
        await SecondaryAnalyzer(db_session, FakeReasoningClient()).analyze(analysis.id, [])


async def test_requires_completed_analysis(db_session):
    analysis = make_analysis(db_session, status="failed")

    with pytest.raises(ConflictError):
        await SecondaryAnalyzer(db_session, FakeReasoningClient()).analyze(analysis.id, PAIRS)


def test_snapshot_includes_consolidated_insights(db_session):
    analysis = make_analysis(db_session)
    db_session.add(AnalysisSummary(analysis_id=analysis.id, consolidated_insights={"executive_summary": "S"}))
    db_session.commit()
    db_session.refresh(analysis)

    snapshot = analysis_snapshot(analysis)

    assert snapshot["consolidated_insights"] == {"executive_summary": "S"}
    assert snapshot["project_id"] == "project-1"
