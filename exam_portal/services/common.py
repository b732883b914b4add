"""Lookups shared by the exam, attempt and scoring services."""

from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from exam_portal.errors import NotFound
from exam_portal.models import Exam, ExamAttempt, ExamQuestion, Role, User


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound(f"Exam with id={exam_id} does not exist")
    return exam


def get_attempt(session: Session, attempt_id: int) -> ExamAttempt:
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt:
        raise NotFound(f"Attempt with id={attempt_id} does not exist")
    return attempt


def list_questions(session: Session, exam_id: int) -> List[ExamQuestion]:
    """Questions of an exam in authoring order."""
    stmt = (
        select(ExamQuestion)
        .where(ExamQuestion.exam_id == exam_id)
        .order_by(ExamQuestion.order_index, ExamQuestion.id)
    )
    return list(session.exec(stmt).all())


def count_attempts(session: Session, exam_id: int, student_id: Optional[int] = None) -> int:
    stmt = select(func.count()).select_from(ExamAttempt).where(ExamAttempt.exam_id == exam_id)
    if student_id is not None:
        stmt = stmt.where(ExamAttempt.student_id == student_id)
    return session.exec(stmt).one()


def is_owner(exam: Exam, actor: User) -> bool:
    return actor.role == Role.TEACHER and exam.teacher_id == actor.id


def is_admin_for(exam: Exam, actor: User) -> bool:
    """Super admins review every school; school admins only their own."""
    if actor.role == Role.SUPER_ADMIN:
        return True
    return actor.role == Role.SCHOOL_ADMIN and actor.school_id == exam.school_id
