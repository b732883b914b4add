"""End-to-end checks of the HTTP surface."""

from datetime import timedelta

from exam_portal.models import AttemptStatus, ExamAttempt, ExamStatus
from exam_portal.utils import utcnow


def test_login_and_me(client, teacher):
    assert client.get("/auth/me").status_code == 401

    client.login(teacher.email)
    me = client.get("/auth/me").json()
    assert me["role"] == "TEACHER"
    assert me["school_id"] == teacher.school_id

    client.logout()
    assert client.get("/auth/me").status_code == 401


def test_bad_password(client, teacher):
    response = client.post("/auth/login", json={"email": teacher.email, "password": "wrong"})
    assert response.status_code == 401


def test_unauthenticated_start_is_rejected(client, active_exam):
    response = client.post(f"/exams/{active_exam.id}/start")
    assert response.status_code == 401
    assert response.json()["kind"] == "Unauthenticated"


def test_students_cannot_create_exams(client, student):
    client.login("alice@example.com")
    response = client.post("/exams", json={"title": "Mine", "duration_minutes": 10})
    assert response.status_code == 403
    assert response.json()["kind"] == "Forbidden"


def test_request_validation_errors(client, teacher):
    client.login(teacher.email)
    response = client.post("/exams", json={"title": "No duration"})
    assert response.status_code == 422
    body = response.json()
    assert body["kind"] == "ValidationError"
    assert "duration_minutes" in body["errors"]


def test_domain_errors_carry_kind(client, teacher, make_exam):
    exam = make_exam(status=ExamStatus.DRAFT, questions=[])
    client.login(teacher.email)

    response = client.post(f"/exams/{exam.id}/submit-for-approval")
    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"

    response = client.post(f"/exams/{exam.id + 999}/submit-for-approval")
    assert response.status_code == 404
    assert response.json()["kind"] == "NotFound"


def test_invalid_transition_reports_states(client, school_admin, make_exam):
    exam = make_exam(status=ExamStatus.DRAFT)
    client.login(school_admin.email)

    response = client.post(f"/admin/exams/{exam.id}/approve")
    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "InvalidTransition"
    assert body["current"] == ExamStatus.DRAFT
    assert body["attempted"] == ExamStatus.APPROVED


def test_full_exam_lifecycle(client, session, teacher, school_admin, student):
    now = utcnow()

    # Teacher authors and submits
    client.login(teacher.email)
    created = client.post(
        "/exams",
        json={
            "title": "Civic Education",
            "duration_minutes": 15,
            "start_time": (now - timedelta(minutes=30)).isoformat(),
            "end_time": (now + timedelta(hours=1)).isoformat(),
            "show_results_immediately": True,
        },
    )
    assert created.status_code == 201, created.text
    exam_id = created.json()["id"]
    assert created.json()["status"] == ExamStatus.DRAFT

    question = client.post(
        f"/exams/{exam_id}/questions",
        json={
            "text": "Nigeria became independent in 1960.",
            "type": "TRUE_FALSE",
            "points": 2,
            "correctAnswer": "true",
        },
    )
    assert question.status_code == 201, question.text
    question_id = question.json()["id"]

    submitted = client.post(f"/exams/{exam_id}/submit-for-approval")
    assert submitted.json()["status"] == ExamStatus.PENDING_APPROVAL
    assert client.patch(f"/exams/{exam_id}", json={"title": "Too late"}).status_code == 409
    client.logout()

    # Admin reviews
    client.login(school_admin.email)
    listing = client.get("/admin/exams", params={"status": "PENDING_APPROVAL"}).json()
    assert [e["id"] for e in listing] == [exam_id]
    approved = client.post(f"/admin/exams/{exam_id}/approve", json={"publishNow": True})
    assert approved.json()["status"] == ExamStatus.PUBLISHED
    client.logout()

    # Student sits the exam
    client.login("alice@example.com")
    dashboard = client.get("/student/exams").json()
    assert dashboard[0]["status"] == ExamStatus.ACTIVE
    assert dashboard[0]["can_take"] is True

    started = client.post(f"/exams/{exam_id}/start")
    assert started.status_code == 200, started.text
    payload = started.json()
    assert 0 < payload["time_remaining_ms"] <= 15 * 60 * 1000
    assert "correct_answer" not in payload["questions"][0]
    attempt_id = payload["attempt"]["id"]

    saved = client.post(
        f"/exams/{exam_id}/answer",
        json={"attemptId": attempt_id, "questionId": question_id, "response": "true"},
    )
    assert saved.json()["saved"] is True

    result = client.post(f"/exams/{exam_id}/submit", json={"attemptId": attempt_id, "timeSpent": 42})
    assert result.status_code == 200, result.text
    assert result.json()["status"] == AttemptStatus.SUBMITTED
    assert result.json()["score"] == 2.0
    assert result.json()["passed"] is True

    again = client.post(f"/exams/{exam_id}/submit", json={"attemptId": attempt_id, "timeSpent": 43})
    assert again.status_code == 409
    assert again.json()["kind"] == "AlreadySubmitted"

    late_save = client.post(
        f"/exams/{exam_id}/answer",
        json={"attemptId": attempt_id, "questionId": question_id, "response": "false"},
    )
    assert late_save.status_code == 409
    assert late_save.json()["kind"] == "AttemptNotActive"

    view = client.get(f"/exams/{exam_id}/attempts/{attempt_id}/result").json()
    assert view["breakdown"][0]["is_correct"] is True

    restart = client.post(f"/exams/{exam_id}/start")
    assert restart.status_code == 409
    assert restart.json()["kind"] == "MaxAttemptsExceeded"

    attempt = session.get(ExamAttempt, attempt_id)
    assert attempt.time_spent_seconds <= 42


def test_student_cannot_touch_another_students_attempt(client, student, other_student, active_exam):
    client.login("bob@example.com")
    attempt_id = client.post(f"/exams/{active_exam.id}/start").json()["attempt"]["id"]
    client.logout()

    client.login("alice@example.com")
    response = client.post(f"/exams/{active_exam.id}/submit", json={"attemptId": attempt_id})
    assert response.status_code == 403
    assert response.json()["kind"] == "Forbidden"


def test_reject_requires_reason_over_http(client, school_admin, make_exam):
    exam = make_exam(status=ExamStatus.PENDING_APPROVAL)
    client.login(school_admin.email)

    response = client.post(f"/admin/exams/{exam.id}/reject", json={"reason": ""})
    assert response.status_code == 400

    response = client.post(f"/admin/exams/{exam.id}/reject", json={"reason": "Marks do not add up"})
    assert response.json()["status"] == ExamStatus.REJECTED
    assert response.json()["rejection_reason"] == "Marks do not add up"
