"""Finalizing attempts and auto-scoring objective questions."""

from datetime import timedelta

import pytest
from sqlmodel import Session, select

from exam_portal.errors import AlreadySubmitted, NotFound, ValidationError
from exam_portal.models import Answer, AttemptStatus, ExamAttempt, ExamQuestion, QuestionType
from exam_portal.services.answer_service import save_answer
from exam_portal.services.attempt_service import start_or_resume_attempt
from exam_portal.services.common import list_questions
from exam_portal.services.scoring import (
    attempt_result,
    option_index,
    parse_bool,
    score_response,
    submit_attempt,
)
from exam_portal.utils import utcnow

TF_QUESTION = dict(
    text="Lagos is in Nigeria.",
    question_type=QuestionType.TRUE_FALSE,
    points=1.0,
    options=["True", "False"],
    correct_answer=True,
)


def _start(session, student, exam):
    t0 = utcnow()
    payload = start_or_resume_attempt(session, student.id, exam.id, now=t0)
    return payload["attempt"]["id"], [q.id for q in list_questions(session, exam.id)], t0


def _answer_rows(session, attempt_id):
    return {a.question_id: a for a in session.exec(select(Answer).where(Answer.attempt_id == attempt_id)).all()}


class TestDeadlines:
    def test_manual_submit_before_deadline(self, session, student, make_exam):
        """Answer saved at t0+1m, submitted at t0+2m."""
        exam = make_exam(duration_minutes=10, max_attempts=1, questions=[TF_QUESTION])
        attempt_id, (q1,), t0 = _start(session, student, exam)

        save_answer(session, attempt_id, q1, "true", now=t0 + timedelta(minutes=1))
        result = submit_attempt(session, attempt_id, trigger="manual", now=t0 + timedelta(minutes=2))

        assert result["status"] == AttemptStatus.SUBMITTED
        answer = _answer_rows(session, attempt_id)[q1]
        assert answer.is_correct is True
        assert answer.points_awarded == 1.0
        assert session.get(ExamAttempt, attempt_id).score == 1.0

    def test_late_submit_is_expired_and_still_scored(self, session, student, make_exam):
        """Nothing submitted until t0+11m."""
        exam = make_exam(duration_minutes=10, max_attempts=1, questions=[TF_QUESTION])
        attempt_id, (q1,), t0 = _start(session, student, exam)

        save_answer(session, attempt_id, q1, "true", now=t0 + timedelta(minutes=1))
        result = submit_attempt(session, attempt_id, trigger="auto", now=t0 + timedelta(minutes=11))

        assert result["status"] == AttemptStatus.EXPIRED
        attempt = session.get(ExamAttempt, attempt_id)
        assert attempt.score == 1.0
        assert attempt.submit_trigger == "auto"
        assert attempt.time_spent_seconds == 11 * 60

    def test_submit_exactly_at_deadline_is_expired(self, session, student, make_exam):
        exam = make_exam(duration_minutes=10, questions=[TF_QUESTION])
        attempt_id, _, t0 = _start(session, student, exam)

        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=10))
        assert result["status"] == AttemptStatus.EXPIRED

    def test_submit_just_before_deadline_is_submitted(self, session, student, make_exam):
        exam = make_exam(duration_minutes=10, questions=[TF_QUESTION])
        attempt_id, _, t0 = _start(session, student, exam)

        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=10) - timedelta(milliseconds=1))
        assert result["status"] == AttemptStatus.SUBMITTED


class TestIdempotence:
    def test_second_submit_changes_nothing(self, session, student, active_exam):
        attempt_id, (q1, _, _), t0 = _start(session, student, active_exam)
        save_answer(session, attempt_id, q1, 1, now=t0 + timedelta(seconds=20))
        submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        before = session.get(ExamAttempt, attempt_id)
        snapshot = (before.status, before.score, before.submitted_at, before.time_spent_seconds)

        with pytest.raises(AlreadySubmitted):
            submit_attempt(session, attempt_id, trigger="auto", now=t0 + timedelta(minutes=9))

        session.expire_all()
        after = session.get(ExamAttempt, attempt_id)
        assert (after.status, after.score, after.submitted_at, after.time_spent_seconds) == snapshot

    def test_losing_a_concurrent_submit_changes_nothing(self, session, student, active_exam):
        attempt_id, (q1, _, _), t0 = _start(session, student, active_exam)
        save_answer(session, attempt_id, q1, 1, now=t0 + timedelta(seconds=20))
        # Loaded while still IN_PROGRESS, so the early status check passes
        assert session.get(ExamAttempt, attempt_id).status == AttemptStatus.IN_PROGRESS

        with Session(session.get_bind()) as other:
            submit_attempt(other, attempt_id, trigger="manual", now=t0 + timedelta(minutes=1))
            winner = other.get(ExamAttempt, attempt_id)
            snapshot = (winner.status, winner.score, winner.submitted_at, winner.submit_trigger)

        with pytest.raises(AlreadySubmitted):
            submit_attempt(session, attempt_id, trigger="auto", now=t0 + timedelta(minutes=11))

        with Session(session.get_bind()) as fresh:
            after = fresh.get(ExamAttempt, attempt_id)
            assert (after.status, after.score, after.submitted_at, after.submit_trigger) == snapshot
        assert snapshot[:2] == (AttemptStatus.SUBMITTED, 2.0)

    def test_unknown_trigger(self, session, student, active_exam):
        attempt_id, _, _ = _start(session, student, active_exam)
        with pytest.raises(ValidationError):
            submit_attempt(session, attempt_id, trigger="timer")


class TestScoring:
    def test_all_correct_scores_total_marks(self, session, student, make_exam):
        mcq = dict(
            text="Capital of Ghana?",
            question_type=QuestionType.MCQ,
            points=2.5,
            options=["Accra", "Kumasi", "Tamale"],
            correct_answer="Accra",
        )
        exam = make_exam(questions=[mcq, TF_QUESTION, dict(mcq, text="Largest city in Ghana?", points=1.5)])
        attempt_id, (q1, q2, q3), t0 = _start(session, student, exam)
        save_answer(session, attempt_id, q1, {"index": 0, "text": "Accra"}, now=t0)
        save_answer(session, attempt_id, q2, "T", now=t0)
        save_answer(session, attempt_id, q3, "a", now=t0)

        submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        attempt = session.get(ExamAttempt, attempt_id)
        assert attempt.score == exam.total_marks == 5.0
        assert attempt.percentage == 100.0

    def test_negative_marking_and_unanswered(self, session, student, make_exam):
        exam = make_exam(negative_marking=True)
        attempt_id, (q_mcq, q_tf, q_essay), t0 = _start(session, student, exam)
        save_answer(session, attempt_id, q_mcq, 0, now=t0)
        save_answer(session, attempt_id, q_essay, "Plants make food from light.", now=t0)

        submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1), penalty=0.25)
        answers = _answer_rows(session, attempt_id)
        assert answers[q_mcq].is_correct is False
        assert answers[q_mcq].points_awarded == -0.5
        assert q_tf not in answers
        assert answers[q_essay].points_awarded is None

        attempt = session.get(ExamAttempt, attempt_id)
        assert attempt.score == -0.5
        assert attempt.percentage == pytest.approx(-0.5 / 8 * 100)

    def test_wrong_answer_without_negative_marking(self, session, student, active_exam):
        attempt_id, (q_mcq, q_tf, _), t0 = _start(session, student, active_exam)
        save_answer(session, attempt_id, q_mcq, 3, now=t0)
        save_answer(session, attempt_id, q_tf, "", now=t0)

        submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        answers = _answer_rows(session, attempt_id)
        assert answers[q_mcq].points_awarded == 0.0
        assert answers[q_tf].points_awarded == 0.0
        assert session.get(ExamAttempt, attempt_id).score == 0.0

    def test_malformed_key_leaves_question_unscored(self, session, student, active_exam):
        attempt_id, (q_mcq, q_tf, _), t0 = _start(session, student, active_exam)
        broken = session.get(ExamQuestion, q_mcq)
        broken.correct_answer = "not an option"
        session.add(broken)
        session.commit()
        save_answer(session, attempt_id, q_mcq, 1, now=t0)
        save_answer(session, attempt_id, q_tf, True, now=t0)

        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        assert result["status"] == AttemptStatus.SUBMITTED
        answers = _answer_rows(session, attempt_id)
        assert answers[q_mcq].points_awarded is None
        assert answers[q_mcq].is_correct is None
        assert answers[q_tf].points_awarded == 1.0

    def test_exam_without_marks(self, session, student, make_exam):
        exam = make_exam(questions=[], show_results_immediately=True)
        attempt_id, _, t0 = _start(session, student, exam)
        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        assert result["score"] == 0.0
        assert result["percentage"] == 0.0

    def test_time_spent_is_capped_by_server_clock(self, session, student, active_exam):
        attempt_id, _, t0 = _start(session, student, active_exam)
        result = submit_attempt(session, attempt_id, time_spent=5000, now=t0 + timedelta(seconds=90))
        assert result["time_spent_seconds"] == 90

        assert session.get(ExamAttempt, attempt_id).time_spent_seconds == 90


class TestResultVisibility:
    def test_scores_hidden_unless_shown_immediately(self, session, student, active_exam):
        attempt_id, _, t0 = _start(session, student, active_exam)
        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        assert "score" not in result
        assert "percentage" not in result

        view = attempt_result(session, attempt_id, student.id)
        assert "score" not in view
        assert view["attempt"]["status"] == AttemptStatus.SUBMITTED

    def test_scores_shown_immediately(self, session, student, make_exam):
        exam = make_exam(show_results_immediately=True, passing_marks=2.0)
        attempt_id, (q_mcq, _, q_essay), t0 = _start(session, student, exam)
        save_answer(session, attempt_id, q_mcq, "4", now=t0)
        save_answer(session, attempt_id, q_essay, "Light to sugar.", now=t0)

        result = submit_attempt(session, attempt_id, now=t0 + timedelta(minutes=1))
        assert result["score"] == 2.0
        assert result["total_marks"] == 8.0
        assert result["percentage"] == 25.0
        assert result["passed"] is True
        assert result["pending_manual_grading"] == 1

        view = attempt_result(session, attempt_id, student.id)
        assert [row["question_id"] for row in view["breakdown"]] == [q.id for q in list_questions(session, exam.id)]

    def test_no_result_while_in_progress(self, session, student, active_exam):
        attempt_id, _, _ = _start(session, student, active_exam)
        with pytest.raises(NotFound):
            attempt_result(session, attempt_id, student.id)


class TestAnswerNormalization:
    OPTIONS = ["Red", "Green", "Blue"]

    @pytest.mark.parametrize("value", [1, "1", "Green", " Green ", "B", "b", {"index": 1}])
    def test_option_index_forms(self, value):
        assert option_index(value, self.OPTIONS) == 1

    @pytest.mark.parametrize("value", [True, 7, -1, "Purple", None, 1.5])
    def test_option_index_rejects(self, value):
        with pytest.raises(ValueError):
            option_index(value, self.OPTIONS)

    @pytest.mark.parametrize(
        "value,expected",
        [(True, True), ("TRUE", True), ("yes", True), ("f", False), ("No", False), (0, True), (1, False)],
    )
    def test_parse_bool(self, value, expected):
        assert parse_bool(value, ["True", "False"]) is expected

    def test_essay_is_never_auto_scored(self):
        essay = ExamQuestion(exam_id=1, text="Discuss", question_type=QuestionType.ESSAY, points=4)
        assert score_response(essay, "anything", negative_marking=True, penalty=0.25) == (None, None)
