"""Attempt manager: starting, resuming and presenting timed exam attempts."""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_portal.errors import ExamNotActive, MaxAttemptsExceeded, NotFound
from exam_portal.models import (
    Answer,
    AttemptStatus,
    Exam,
    ExamAttempt,
    ExamQuestion,
    ExamStatus,
    QuestionType,
    Student,
)
from exam_portal.services.common import count_attempts, get_exam, list_questions
from exam_portal.services.exam_status import effective_status
from exam_portal.utils import utcnow

logger = logging.getLogger(__name__)

# Stored statuses under which students can see an exam at all
STUDENT_VISIBLE_STATUSES = (ExamStatus.APPROVED, ExamStatus.PUBLISHED)


def attempt_deadline(attempt: ExamAttempt, exam: Exam) -> datetime:
    """Hard deadline of an attempt, independent of any client clock."""
    return attempt.started_at + timedelta(minutes=exam.duration_minutes)


def time_remaining_ms(attempt: ExamAttempt, exam: Exam, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    remaining = attempt_deadline(attempt, exam) - now
    return max(0, int(remaining / timedelta(milliseconds=1)))


def find_in_progress_attempt(session: Session, exam_id: int, student_id: int) -> Optional[ExamAttempt]:
    stmt = select(ExamAttempt).where(
        (ExamAttempt.exam_id == exam_id)
        & (ExamAttempt.student_id == student_id)
        & (ExamAttempt.status == AttemptStatus.IN_PROGRESS)
    )
    return session.exec(stmt).first()


def student_can_see(exam: Exam, student: Student) -> bool:
    if exam.school_id != student.school_id:
        return False
    return exam.class_name is None or exam.class_name == student.class_name


def exam_summary(exam: Exam, status: str) -> Dict[str, Any]:
    """Student-safe exam metadata."""
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "subject": exam.subject,
        "class_name": exam.class_name,
        "duration_minutes": exam.duration_minutes,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "negative_marking": exam.negative_marking,
        "shuffle": exam.shuffle,
        "max_attempts": exam.max_attempts,
        "show_results_immediately": exam.show_results_immediately,
        "allow_preview": exam.allow_preview,
        "status": status,
    }


def attempt_summary(attempt: ExamAttempt) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "exam_id": attempt.exam_id,
        "student_id": attempt.student_id,
        "attempt_number": attempt.attempt_number,
        "started_at": attempt.started_at,
        "status": attempt.status,
        "submitted_at": attempt.submitted_at,
        "time_spent_seconds": attempt.time_spent_seconds,
    }


def present_questions(exam: Exam, questions: List[ExamQuestion], attempt_id: int) -> List[Dict[str, Any]]:
    """Build the student view of the question set for one attempt.

    Answer keys and explanations are stripped. When the exam shuffles, the
    question order and MCQ option order come from generators seeded with the
    attempt id, so every read of the same attempt sees the same order while
    the stored ordering stays untouched. Options keep their original index so
    responses map back to the answer key.
    """
    ordered = list(questions)
    if exam.shuffle:
        random.Random(f"attempt:{attempt_id}:exam:{exam.id}").shuffle(ordered)

    presented = []
    for position, question in enumerate(ordered, start=1):
        options = None
        if question.options:
            options = [{"index": i, "text": text} for i, text in enumerate(question.options)]
            if exam.shuffle and question.question_type == QuestionType.MCQ:
                random.Random(f"attempt:{attempt_id}:question:{question.id}").shuffle(options)
        presented.append(
            {
                "id": question.id,
                "position": position,
                "text": question.text,
                "type": question.question_type,
                "points": question.points,
                "difficulty": question.difficulty,
                "options": options,
            }
        )
    return presented


def saved_responses(session: Session, attempt_id: int) -> Dict[int, Any]:
    answers = session.exec(select(Answer).where(Answer.attempt_id == attempt_id)).all()
    return {a.question_id: a.response for a in answers}


def _create_attempt(session: Session, exam: Exam, student_id: int, attempt_number: int, now: datetime) -> ExamAttempt:
    attempt = ExamAttempt(
        exam_id=exam.id,
        student_id=student_id,
        attempt_number=attempt_number,
        started_at=now,
        status=AttemptStatus.IN_PROGRESS,
    )
    session.add(attempt)
    session.commit()
    session.refresh(attempt)
    return attempt


def start_or_resume_attempt(
    session: Session, student_id: int, exam_id: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Start a new attempt or resume the student's in-progress one.

    Raises:
        NotFound: unknown student, or the exam is not visible to the student
        ExamNotActive: the exam is not effectively ACTIVE at ``now``
        MaxAttemptsExceeded: every allowed attempt has been used
    """
    now = now or utcnow()
    student = session.get(Student, student_id)
    if not student:
        raise NotFound(f"Student with id={student_id} does not exist")

    exam = get_exam(session, exam_id)
    if exam.status not in STUDENT_VISIBLE_STATUSES or not student_can_see(exam, student):
        raise NotFound("Exam not found or not accessible")

    status = effective_status(exam, now)
    if status != ExamStatus.ACTIVE:
        raise ExamNotActive(
            "Exam has not started yet" if status == ExamStatus.SCHEDULED else "Exam is not currently active",
            status=status,
        )

    attempt = find_in_progress_attempt(session, exam_id, student_id)
    resumed = attempt is not None
    if attempt is None:
        used = count_attempts(session, exam_id, student_id)
        if used >= exam.max_attempts:
            raise MaxAttemptsExceeded(
                f"Maximum attempts ({exam.max_attempts}) reached for this exam",
                max_attempts=exam.max_attempts,
            )
        try:
            attempt = _create_attempt(session, exam, student_id, used + 1, now)
        except IntegrityError:
            # A concurrent start for the same student won the insert
            session.rollback()
            attempt = find_in_progress_attempt(session, exam_id, student_id)
            if attempt is None:
                raise MaxAttemptsExceeded(
                    f"Maximum attempts ({exam.max_attempts}) reached for this exam",
                    max_attempts=exam.max_attempts,
                )
            resumed = True
        else:
            logger.info(
                "Student %s started attempt %s (#%s) of exam %s",
                student_id,
                attempt.id,
                attempt.attempt_number,
                exam_id,
            )

    return {
        "exam": exam_summary(exam, status),
        "attempt": attempt_summary(attempt),
        "questions": present_questions(exam, list_questions(session, exam_id), attempt.id),
        "answers": saved_responses(session, attempt.id),
        "time_remaining_ms": time_remaining_ms(attempt, exam, now),
        "resumed": resumed,
    }


def list_student_exams(session: Session, student: Student, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Exams visible to a student with their effective status and attempt state."""
    now = now or utcnow()
    stmt = (
        select(Exam)
        .where(Exam.school_id == student.school_id, Exam.status.in_(STUDENT_VISIBLE_STATUSES))
        .order_by(Exam.start_time)
    )
    listing = []
    for exam in session.exec(stmt).all():
        if not student_can_see(exam, student):
            continue
        status = effective_status(exam, now)
        used = count_attempts(session, exam.id, student.id)
        in_progress = find_in_progress_attempt(session, exam.id, student.id)
        active = status == ExamStatus.ACTIVE

        entry = exam_summary(exam, status)
        entry.update(
            {
                "attempts_used": used,
                "can_resume": active and in_progress is not None,
                "can_take": active and (in_progress is not None or used < exam.max_attempts),
                "time_remaining_ms": time_remaining_ms(in_progress, exam, now) if in_progress else None,
            }
        )
        listing.append(entry)
    return listing
