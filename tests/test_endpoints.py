"""
API Endpoint Tests

Authentication, error body shape and the full request flow over the
application factory.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.middleware.error_handler import UpstreamError
from api.models import Analysis, Job
from api.services.token import create_token
from tests.conftest import add_response, first_ai_answer, make_analysis, make_questions

API = "/api/v1"


def questions_payload(count: int = 4) -> dict:
    categories = ["market_context", "technical_requirements", "business_goals", "target_audience"]
    return {
        "questions": [
            {
                "question_text": f"Question {i}?",
                "category": categories[i % 4],
                "priority": "high",
                "ai_suggested_answer": f"Answer {i}",
                "confidence_score": 0.75,
            }
            for i in range(count)
        ]
    }


def consolidation_payload(summary: str = "Ready to propose") -> dict:
    return {"executive_summary": summary, "confidence_score": 0.8, "key_insights": ["a"]}


class TestAuthentication:

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert client.get(f"{API}/health").json()["database"] == "connected"

    def test_missing_token(self, client):
        response = client.get(f"{API}/analyses/1")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "UNAUTHORIZED"
        assert set(body) == {"success", "error", "code", "details"}

    def test_invalid_token(self, client):
        response = client.get(f"{API}/analyses/1", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_expired_token(self, client, settings):
        token = create_token({"sub": "user-1"}, expires_delta=timedelta(minutes=-5), settings=settings)

        response = client.get(f"{API}/analyses/1", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert "expired" in response.json()["error"]

    def test_token_without_subject(self, client, settings):
        token = create_token({"role": "admin"}, settings=settings)

        response = client.get(f"{API}/analyses/1", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_request_id_is_echoed(self, client, auth_headers):
        response = client.get(f"{API}/analyses/1", headers={**auth_headers, "X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestAnalyses:

    def test_ingest_returns_pollable_handle(self, client, auth_headers, db_session):
        response = client.post(
            f"{API}/analyses",
            json={"source_text": "RFP for a portal", "project_id": "p-1"},
            headers=auth_headers,
        )

        assert response.status_code == 202
        body = response.json()
        assert body["processing_status"] == "pending"

        status = client.get(f"{API}/analyses/{body['analysis_id']}/status", headers=auth_headers)
        assert status.json()["processing_status"] == "pending"

        job = db_session.get(Job, body["job_id"])
        assert job.job_type == "extract"
        assert job.analysis_id == body["analysis_id"]
        assert db_session.get(Analysis, body["analysis_id"]).created_by == "user-1"

    def test_empty_source_text(self, client, auth_headers):
        response = client.post(f"{API}/analyses", json={"source_text": ""}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_analysis(self, client, auth_headers):
        response = client.get(f"{API}/analyses/424242", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_get_record(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session)

        body = client.get(f"{API}/analyses/{analysis.id}", headers=auth_headers).json()

        assert body["project_overview"]["title"] == "Website relaunch"
        assert body["processing_status"] == "completed"


class TestQuestionFlow:

    def test_generate_then_conflict(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        fake_client.queue(questions_payload(4))

        response = client.post(
            f"{API}/analyses/{analysis.id}/questions/generate",
            json={"max_questions": 4},
            headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["generated_count"] == 4
        assert body["ai_answers_count"] == 4
        assert len(body["questions"][0]["ai_answers"]) == 1

        again = client.post(f"{API}/analyses/{analysis.id}/questions/generate", json={}, headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["code"] == "QUESTIONS_ALREADY_EXIST"
        assert len(fake_client.calls) == 1

    def test_generate_on_pending_analysis(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session, status="pending")

        response = client.post(f"{API}/analyses/{analysis.id}/questions/generate", json={}, headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "ANALYSIS_NOT_COMPLETED"

    def test_upstream_error_maps_to_502(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        fake_client.queue(UpstreamError("quota", "rate limited", 429))

        response = client.post(f"{API}/analyses/{analysis.id}/questions/generate", json={}, headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_QUOTA"

    def test_list_respond_and_answers(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session)
        questions = make_questions(db_session, analysis, ["market_context", "business_goals"])
        ai_answer = first_ai_answer(db_session, questions[0])

        response = client.post(
            f"{API}/analyses/{analysis.id}/questions/respond",
            json={
                "question_id": questions[0].id,
                "response_type": "mixed",
                "ai_answer_id": ai_answer.id,
                "user_input_text": "Plus loyalty members",
            },
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["response"]["final_answer"] == "Suggested answer 1\nPlus loyalty members"
        assert response.json()["statistics"]["completion_percentage"] == 50.0

        listing = client.get(
            f"{API}/analyses/{analysis.id}/questions/list",
            params={"category": "market_context"},
            headers=auth_headers,
        ).json()
        assert len(listing["questions"]) == 1
        assert listing["questions"][0]["user_response"]["response_type"] == "mixed"
        assert listing["statistics"]["total_questions"] == 2

        answers = client.get(f"{API}/analyses/{analysis.id}/answers", headers=auth_headers).json()
        assert answers["answers"] == {str(questions[0].id): "Suggested answer 1\nPlus loyalty members"}

    def test_generate_another_ai_answer(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        question = make_questions(db_session, analysis, ["business_goals"])[0]
        fake_client.queue({"answer_text": "Grow online sales", "confidence_score": 0.6})

        response = client.post(
            f"{API}/analyses/{analysis.id}/questions/{question.id}/ai-answers",
            json={"context": "Retail client"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["answer_text"] == "Grow online sales"
        assert body["question_id"] == question.id
        assert body["generation_metadata"]["source"] == "on_demand"

        listing = client.get(f"{API}/analyses/{analysis.id}/questions/list", headers=auth_headers).json()
        texts = [a["answer_text"] for a in listing["questions"][0]["ai_answers"]]
        assert texts == ["Suggested answer 1", "Grow online sales"]

    def test_generate_ai_answer_for_unknown_question(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)

        response = client.post(
            f"{API}/analyses/{analysis.id}/questions/99999/ai-answers",
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert fake_client.calls == []

    def test_save_answers(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session)
        questions = make_questions(db_session, analysis, ["market_context", "business_goals"])

        response = client.post(
            f"{API}/analyses/save-answers",
            json={
                "analysis_id": analysis.id,
                "answers": {str(questions[0].id): "Retail", str(questions[1].id): "Grow revenue"},
                "completeness_score": 100,
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["saved_count"] == 2
        assert body["statistics"]["completion_percentage"] == 100.0
        assert body["statistics"]["ready_for_consolidation"] is True
        assert body["completeness_score"] == 100

    def test_save_answers_requires_entries(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session)

        response = client.post(
            f"{API}/analyses/save-answers",
            json={"analysis_id": analysis.id, "answers": {}},
            headers=auth_headers,
        )

        assert response.status_code == 400

    def test_delete_questions(self, client, auth_headers, db_session):
        analysis = make_analysis(db_session)
        make_questions(db_session, analysis, ["market_context"])

        response = client.delete(f"{API}/analyses/{analysis.id}/questions", headers=auth_headers)
        assert response.status_code == 204

        again = client.delete(f"{API}/analyses/{analysis.id}/questions", headers=auth_headers)
        assert again.status_code == 404


class TestConsolidation:

    def test_consolidate_cached_and_forced(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        questions = make_questions(db_session, analysis, ["market_context", "target_audience"])
        add_response(db_session, questions[0], "user-1", "user_input", "Retail")
        fake_client.queue(consolidation_payload("First"), consolidation_payload("Second"))
        url = f"{API}/analyses/{analysis.id}/consolidate"

        first = client.post(url, headers=auth_headers)
        second = client.post(url, json={}, headers=auth_headers)
        forced = client.post(url, json={"force_regenerate": True}, headers=auth_headers)

        assert first.status_code == 200
        assert first.json()["was_cached"] is False
        assert first.json()["summary"]["completion_percentage"] == 50.0
        assert first.json()["next_steps_ready"] == ["market_research"]
        assert second.json()["was_cached"] is True
        assert second.json()["summary"] == first.json()["summary"]
        assert forced.json()["summary"]["consolidated_insights"]["executive_summary"] == "Second"
        assert len(fake_client.calls) == 2

        summary = client.get(f"{API}/analyses/{analysis.id}/summary", headers=auth_headers)
        assert summary.json()["consolidated_insights"]["executive_summary"] == "Second"

    def test_no_answers(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        make_questions(db_session, analysis, ["market_context"])

        response = client.post(f"{API}/analyses/{analysis.id}/consolidate", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "NO_ANSWERS_FOUND"
        assert fake_client.calls == []
        assert client.get(f"{API}/analyses/{analysis.id}/summary", headers=auth_headers).status_code == 404

    def test_depth_needs_enough_answers(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        questions = make_questions(db_session, analysis, ["market_context", "target_audience"])
        add_response(db_session, questions[0], "user-1", "user_input", "Retail")
        url = f"{API}/analyses/{analysis.id}/consolidate"

        insufficient = client.post(url, json={"analysis_depth": "basic"}, headers=auth_headers)
        invalid = client.post(url, json={"analysis_depth": "deep"}, headers=auth_headers)

        assert insufficient.status_code == 400
        assert insufficient.json()["code"] == "INSUFFICIENT_ANSWERS"
        assert insufficient.json()["details"]["required_answers"] == 3
        assert invalid.status_code == 400
        assert invalid.json()["code"] == "VALIDATION_ERROR"
        assert fake_client.calls == []

    def test_secondary_analysis(self, client, auth_headers, db_session, fake_client):
        analysis = make_analysis(db_session)
        fake_client.queue(
            {
                "market_research_insights": {"market_size": "Large"},
                "persona_analysis_insights": {"primary_personas": []},
            }
        )

        response = client.post(
            f"{API}/analyses/secondary-analysis",
            json={"analysis_id": analysis.id, "answers": [{"question": "Users?", "answer": "Staff"}]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["secondary_analysis"]["market_research_insights"]["market_size"] == "Large"
        record = client.get(f"{API}/analyses/{analysis.id}", headers=auth_headers).json()
        assert record["secondary_analysis"]["pair_count"] == 1


class TestQueue:

    def test_list_and_retry_dead_job(self, client, auth_headers, db_session):
        created = client.post(f"{API}/analyses", json={"source_text": "RFP"}, headers=auth_headers).json()
        job = db_session.get(Job, created["job_id"])
        job.status = "dead"
        job.attempts = 3
        analysis = db_session.get(Analysis, created["analysis_id"])
        analysis.processing_status = "processing"
        db_session.commit()

        listing = client.get(f"{API}/queue", params={"status": "dead"}, headers=auth_headers).json()
        assert listing["dead"] == 1
        assert listing["items"][0]["analysis_id"] == created["analysis_id"]

        retried = client.post(f"{API}/queue/{job.id}/retry", headers=auth_headers)
        assert retried.json()["status"] == "pending"

        db_session.expire_all()
        assert db_session.get(Job, job.id).attempts == 0
        assert db_session.get(Analysis, created["analysis_id"]).processing_status == "processing"

    @pytest.mark.parametrize("terminal_status", ["failed", "completed"])
    def test_retry_refused_for_terminal_analysis(self, client, auth_headers, db_session, terminal_status):
        created = client.post(f"{API}/analyses", json={"source_text": "RFP"}, headers=auth_headers).json()
        job = db_session.get(Job, created["job_id"])
        job.status = "dead"
        analysis = db_session.get(Analysis, created["analysis_id"])
        analysis.processing_status = terminal_status
        analysis.error_message = "Extraction failed"
        db_session.commit()

        response = client.post(f"{API}/queue/{job.id}/retry", headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "ANALYSIS_TERMINAL"
        db_session.expire_all()
        assert db_session.get(Job, job.id).status == "dead"
        stored = db_session.get(Analysis, created["analysis_id"])
        assert stored.processing_status == terminal_status
        assert stored.error_message == "Extraction failed"

    def test_retry_unknown_job(self, client, auth_headers):
        assert client.post(f"{API}/queue/999/retry", headers=auth_headers).status_code == 404


def test_auth_disabled_uses_local_identity(settings, database, fake_client, db_session):
    open_settings = settings.model_copy(update={"AUTH_ENABLED": False})
    app = create_app(settings=open_settings, database=database, reasoning_client=fake_client)

    with TestClient(app) as open_client:
        response = open_client.post(f"{API}/analyses", json={"source_text": "RFP"})

    assert response.status_code == 202
    assert db_session.get(Analysis, response.json()["analysis_id"]).created_by == "local-dev"
