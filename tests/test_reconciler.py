"""
Answer Reconciliation Tests

Merge rule, statistics and transactional saves.
"""

from unittest.mock import MagicMock, patch

import pytest

from api.middleware.error_handler import ConflictError, NotFoundError, ValidationError
from api.models import UserResponse
from api.schemas.questions import AnswerPayload
from api.services.reconciler import (
    ResponseReconciler,
    completion_percentage,
    compute_statistics,
    merge_mixed,
)
from tests.conftest import add_response, first_ai_answer, make_analysis, make_questions

USER = "user-1"

CATEGORIES = [
    "market_context",
    "market_context",
    "technical_requirements",
    "technical_requirements",
    "business_goals",
    "business_goals",
    "target_audience",
    "target_audience",
]


@pytest.fixture
def analysis(db_session):
    return make_analysis(db_session)


@pytest.fixture
def questions(db_session, analysis):
    return make_questions(db_session, analysis, CATEGORIES)


class TestMergeMixed:

    def test_joins_with_newline(self):
        assert merge_mixed("X", "Y") == "X\nY"

    def test_strips_both_sides(self):
        assert merge_mixed("  X \n", "\tY  ") == "X\nY"

    def test_one_side_blank(self):
        assert merge_mixed("X", "   ") == "X"
        assert merge_mixed(None, "Y") == "Y"
        assert merge_mixed("", "") == ""

    def test_deterministic(self):
        assert {merge_mixed("X", "Y") for _ in range(5)} == {"X\nY"}


class TestCompletionPercentage:

    @pytest.mark.parametrize(
        "answered,total,expected",
        [(5, 8, 62.5), (0, 8, 0.0), (8, 8, 100.0), (0, 0, 0.0), (1, 3, 33.33)],
    )
    def test_values(self, answered, total, expected):
        assert completion_percentage(answered, total) == expected

    def test_always_within_bounds(self):
        for total in range(1, 25):
            for answered in range(total + 1):
                assert 0.0 <= completion_percentage(answered, total) <= 100.0


class TestStatistics:

    def test_eight_questions_five_answered(self, db_session, analysis, questions):
        for question in questions[:3]:
            add_response(db_session, question, USER, "ai_selected", "AI text")
        for question in questions[3:5]:
            add_response(db_session, question, USER, "user_input", "User text")

        stats = ResponseReconciler(db_session).statistics(analysis.id, USER)

        assert stats.total_questions == 8
        assert stats.answered_questions == 5
        assert stats.ai_answers_used == 3
        assert stats.user_answers_used == 2
        assert stats.completion_percentage == 62.5

    def test_mixed_counts_as_user_answer(self, db_session, analysis, questions):
        add_response(db_session, questions[0], USER, "mixed", "A\nB")

        stats = compute_statistics(questions, ResponseReconciler(db_session).responses_for(analysis.id, USER))

        assert stats.user_answers_used == 1
        assert stats.ai_answers_used == 0

    def test_other_users_are_ignored(self, db_session, analysis, questions):
        add_response(db_session, questions[0], "someone-else", "user_input", "Theirs")

        stats = ResponseReconciler(db_session).statistics(analysis.id, USER)

        assert stats.answered_questions == 0

    def test_ready_for_consolidation_hint(self, db_session, analysis, questions):
        for question in questions[:5]:
            add_response(db_session, question, USER, "user_input", "text")

        stats = ResponseReconciler(db_session).statistics(analysis.id, USER)

        assert stats.to_dict(60.0)["ready_for_consolidation"] is True
        assert stats.to_dict(70.0)["ready_for_consolidation"] is False
        assert stats.answered_categories == {"market_context", "technical_requirements", "business_goals"}


class TestRespond:

    def test_ai_selected_copies_answer_text(self, db_session, analysis, questions):
        ai_answer = first_ai_answer(db_session, questions[0])
        payload = AnswerPayload(response_type="ai_selected", ai_answer_id=ai_answer.id)

        response = ResponseReconciler(db_session).respond(analysis.id, USER, questions[0].id, payload)

        assert response.final_answer == ai_answer.answer_text
        assert response.ai_answer_id == ai_answer.id
        assert response.user_input_text is None

    def test_mixed_merges_deterministically(self, db_session, analysis, questions):
        ai_answer = first_ai_answer(db_session, questions[0])
        ai_answer.answer_text = "X"
        db_session.commit()
        payload = AnswerPayload(response_type="mixed", ai_answer_id=ai_answer.id, user_input_text="Y")
        reconciler = ResponseReconciler(db_session)

        first = reconciler.respond(analysis.id, USER, questions[0].id, payload).final_answer
        second = reconciler.respond(analysis.id, USER, questions[0].id, payload).final_answer

        assert first == second == "X\nY"

    def test_second_save_updates_in_place(self, db_session, analysis, questions):
        reconciler = ResponseReconciler(db_session)
        reconciler.respond(analysis.id, USER, questions[0].id, AnswerPayload(user_input_text="first"))
        reconciler.respond(analysis.id, USER, questions[0].id, AnswerPayload(user_input_text="second"))

        rows = db_session.query(UserResponse).filter(UserResponse.question_id == questions[0].id).all()
        assert len(rows) == 1
        assert rows[0].final_answer == "second"

    def test_concurrent_insert_is_retried_as_update(self, db_session, analysis, questions):
        question = questions[0]

        class RacingReconciler(ResponseReconciler):
            raced = False

            def _upsert(self, user_id, items):
                if self.raced:
                    return super()._upsert(user_id, items)
                self.raced = True
                # Another request commits the same (question, user) after our lookup missed
                add_response(self.db, question, user_id, "user_input", "Concurrent answer")
                missed = MagicMock()
                missed.filter.return_value.first.return_value = None
                with patch.object(self.db, "query", return_value=missed):
                    super()._upsert(user_id, items)

        reconciler = RacingReconciler(db_session)
        response = reconciler.respond(analysis.id, USER, question.id, AnswerPayload(user_input_text="Mine"))

        assert reconciler.raced
        rows = db_session.query(UserResponse).filter(UserResponse.question_id == question.id).all()
        assert len(rows) == 1
        assert rows[0].id == response.id
        assert rows[0].final_answer == "Mine"

    def test_user_input_requires_text(self, db_session, analysis, questions):
        with pytest.raises(ValidationError):
            ResponseReconciler(db_session).respond(
                analysis.id, USER, questions[0].id, AnswerPayload(user_input_text="  ")
            )

    def test_ai_selected_requires_answer(self, db_session, analysis, questions):
        with pytest.raises(ValidationError):
            ResponseReconciler(db_session).respond(
                analysis.id, USER, questions[0].id, AnswerPayload(response_type="ai_selected")
            )

    def test_ai_answer_of_another_question(self, db_session, analysis, questions):
        foreign = first_ai_answer(db_session, questions[1])
        payload = AnswerPayload(response_type="ai_selected", ai_answer_id=foreign.id)

        with pytest.raises(NotFoundError):
            ResponseReconciler(db_session).respond(analysis.id, USER, questions[0].id, payload)

    def test_question_of_another_analysis(self, db_session, analysis, questions):
        other = make_analysis(db_session)

        with pytest.raises(NotFoundError):
            ResponseReconciler(db_session).respond(
                other.id, USER, questions[0].id, AnswerPayload(user_input_text="x")
            )

    def test_analysis_must_be_completed(self, db_session):
        pending = make_analysis(db_session, status="pending")

        with pytest.raises(ConflictError):
            ResponseReconciler(db_session).respond(pending.id, USER, 1, AnswerPayload(user_input_text="x"))


class TestSaveAnswers:

    def test_strings_are_user_input(self, db_session, analysis, questions):
        reconciler = ResponseReconciler(db_session)

        saved = reconciler.save_answers(
            analysis.id,
            USER,
            {questions[0].id: "Retail", questions[1].id: "EU and US"},
        )

        assert [r.response_type for r in saved] == ["user_input", "user_input"]
        assert reconciler.answers_view(analysis.id, USER) == {
            questions[0].id: "Retail",
            questions[1].id: "EU and US",
        }

    def test_one_invalid_entry_saves_nothing(self, db_session, analysis, questions):
        answers = {
            questions[0].id: "Valid",
            questions[1].id: AnswerPayload(response_type="ai_selected"),
        }

        with pytest.raises(ValidationError):
            ResponseReconciler(db_session).save_answers(analysis.id, USER, answers)

        assert db_session.query(UserResponse).count() == 0

    def test_unknown_question_saves_nothing(self, db_session, analysis, questions):
        with pytest.raises(NotFoundError):
            ResponseReconciler(db_session).save_answers(
                analysis.id, USER, {questions[0].id: "Valid", 99999: "Unknown"}
            )

        assert db_session.query(UserResponse).count() == 0
