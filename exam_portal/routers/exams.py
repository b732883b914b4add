"""Exam routes: authoring, approval submission, attempts and results."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_login, require_role, require_student
from exam_portal.models import Role, Student, User
from exam_portal.services import answer_service, approval, attempt_service, exam_service, scoring

router = APIRouter()


class ExamIn(BaseModel):
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: int
    passing_marks: Optional[float] = None
    negative_marking: bool = False
    shuffle: bool = False
    max_attempts: int = 1
    show_results_immediately: bool = False
    allow_preview: bool = False


class ExamPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    passing_marks: Optional[float] = None
    negative_marking: Optional[bool] = None
    shuffle: Optional[bool] = None
    max_attempts: Optional[int] = None
    show_results_immediately: Optional[bool] = None
    allow_preview: Optional[bool] = None


class QuestionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    question_type: str = Field(default="MCQ", alias="type")
    points: float = 1.0
    difficulty: str = "MEDIUM"
    order_index: Optional[int] = None
    options: Optional[List[str]] = None
    correct_answer: Any = Field(default=None, alias="correctAnswer")
    explanation: Optional[str] = None


class QuestionPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    question_type: Optional[str] = Field(default=None, alias="type")
    points: Optional[float] = None
    difficulty: Optional[str] = None
    order_index: Optional[int] = None
    options: Optional[List[str]] = None
    correct_answer: Any = Field(default=None, alias="correctAnswer")
    explanation: Optional[str] = None


class AnswerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attempt_id: int = Field(alias="attemptId")
    question_id: int = Field(alias="questionId")
    response: Any = None


class SubmitIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attempt_id: int = Field(alias="attemptId")
    time_spent: Optional[float] = Field(default=None, alias="timeSpent")
    trigger: str = "manual"


class GradeIn(BaseModel):
    points: float
    feedback: Optional[str] = None


# --- Authoring (teacher) ---


@router.post("", status_code=201)
def create_exam(
    payload: ExamIn,
    current_user: User = Depends(require_role([Role.TEACHER])),
    session: Session = Depends(get_session),
):
    exam = exam_service.create_exam(session, current_user, **payload.model_dump(exclude_none=True))
    return exam_service.exam_detail(session, exam.id, current_user)


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    return exam_service.exam_detail(session, exam_id, current_user)


@router.patch("/{exam_id}")
def update_exam(
    exam_id: int,
    payload: ExamPatch,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    exam_service.update_exam(session, exam_id, current_user, **payload.model_dump(exclude_unset=True))
    return exam_service.exam_detail(session, exam_id, current_user)


@router.delete("/{exam_id}", status_code=204)
def delete_exam(
    exam_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    exam_service.delete_exam(session, exam_id, current_user)


@router.post("/{exam_id}/questions", status_code=201)
def add_question(
    exam_id: int,
    payload: QuestionIn,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    question = exam_service.add_question(session, exam_id, current_user, **payload.model_dump(exclude_none=True))
    return question.model_dump()


@router.patch("/{exam_id}/questions/{question_id}")
def edit_question(
    exam_id: int,
    question_id: int,
    payload: QuestionPatch,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    question = exam_service.edit_question(
        session, exam_id, question_id, current_user, **payload.model_dump(exclude_unset=True)
    )
    return question.model_dump()


@router.delete("/{exam_id}/questions/{question_id}", status_code=204)
def delete_question(
    exam_id: int,
    question_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    exam_service.delete_question(session, exam_id, question_id, current_user)


@router.post("/{exam_id}/submit-for-approval")
def submit_for_approval(
    exam_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    exam = approval.submit_for_approval(session, exam_id, current_user)
    return {"id": exam.id, "status": exam.status}


# --- Attempts (student) ---


@router.post("/{exam_id}/start")
def start_exam(
    exam_id: int,
    student: Student = Depends(require_student),
    session: Session = Depends(get_session),
):
    return attempt_service.start_or_resume_attempt(session, student.id, exam_id)


@router.post("/{exam_id}/answer")
def save_answer(
    exam_id: int,
    payload: AnswerIn,
    student: Student = Depends(require_student),
    session: Session = Depends(get_session),
):
    answer = answer_service.save_answer(
        session,
        payload.attempt_id,
        payload.question_id,
        payload.response,
        student_id=student.id,
        exam_id=exam_id,
    )
    return {
        "saved": True,
        "attempt_id": answer.attempt_id,
        "question_id": answer.question_id,
        "saved_at": answer.saved_at,
    }


@router.post("/{exam_id}/submit")
def submit_exam(
    exam_id: int,
    payload: SubmitIn,
    student: Student = Depends(require_student),
    session: Session = Depends(get_session),
):
    return scoring.submit_attempt(
        session,
        payload.attempt_id,
        time_spent=payload.time_spent,
        trigger=payload.trigger,
        student_id=student.id,
        exam_id=exam_id,
    )


@router.get("/{exam_id}/attempts/{attempt_id}/result")
def attempt_result(
    exam_id: int,
    attempt_id: int,
    student: Student = Depends(require_student),
    session: Session = Depends(get_session),
):
    return scoring.attempt_result(session, attempt_id, student.id, exam_id=exam_id)


# --- Results and manual grading (teacher / admin) ---


@router.get("/{exam_id}/results")
def exam_results(
    exam_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    return scoring.exam_results(session, exam_id, current_user)


@router.get("/{exam_id}/grading")
def pending_grading(
    exam_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    return scoring.pending_grading(session, exam_id, current_user)


@router.post("/{exam_id}/grading/{answer_id}")
def grade_answer(
    exam_id: int,
    answer_id: int,
    payload: GradeIn,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    answer = scoring.grade_answer(
        session, answer_id, payload.points, current_user, feedback=payload.feedback, exam_id=exam_id
    )
    return {
        "answer_id": answer.id,
        "points_awarded": answer.points_awarded,
        "is_correct": answer.is_correct,
        "grader_feedback": answer.grader_feedback,
    }
