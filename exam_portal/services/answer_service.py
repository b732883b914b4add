"""Answer persistence for in-progress attempts (autosave and manual save)."""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_portal.errors import AttemptNotActive, Forbidden, NotFound, ValidationError
from exam_portal.models import Answer, AttemptStatus, ExamAttempt, ExamQuestion
from exam_portal.services.attempt_service import attempt_deadline
from exam_portal.services.common import get_attempt, get_exam
from exam_portal.services.exam_status import effective_status, is_active
from exam_portal.utils import utcnow

logger = logging.getLogger(__name__)


def _find_answer(session: Session, attempt_id: int, question_id: int) -> Optional[Answer]:
    stmt = select(Answer).where((Answer.attempt_id == attempt_id) & (Answer.question_id == question_id))
    return session.exec(stmt).first()


def load_owned_attempt(
    session: Session,
    attempt_id: int,
    student_id: Optional[int] = None,
    exam_id: Optional[int] = None,
) -> ExamAttempt:
    """Fetch an attempt, checking it belongs to the given student and exam."""
    attempt = get_attempt(session, attempt_id)
    if exam_id is not None and attempt.exam_id != exam_id:
        raise NotFound(f"Attempt {attempt_id} does not belong to exam {exam_id}")
    if student_id is not None and attempt.student_id != student_id:
        raise Forbidden("This attempt belongs to another student")
    return attempt


def save_answer(
    session: Session,
    attempt_id: int,
    question_id: int,
    response: Any,
    now: Optional[datetime] = None,
    student_id: Optional[int] = None,
    exam_id: Optional[int] = None,
) -> Answer:
    """Insert or overwrite the response for one question of an attempt.

    Saving the same question again replaces the previous response; the last
    write to reach the database wins. No scoring happens here.

    Raises:
        AttemptNotActive: the attempt is finalized, its deadline has passed,
            or the exam is no longer effectively ACTIVE
        ValidationError: the question is not part of the attempt's exam
    """
    now = now or utcnow()
    attempt = load_owned_attempt(session, attempt_id, student_id, exam_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise AttemptNotActive("Attempt is no longer in progress", status=attempt.status)

    exam = get_exam(session, attempt.exam_id)
    if now >= attempt_deadline(attempt, exam):
        logger.warning("Rejected late save for attempt %s question %s", attempt_id, question_id)
        raise AttemptNotActive("Time for this attempt has expired", status=attempt.status)
    if not is_active(exam, now):
        logger.warning("Rejected save for attempt %s: exam %s is not active", attempt_id, exam.id)
        raise AttemptNotActive("Exam is no longer active", exam_status=effective_status(exam, now))

    question = session.get(ExamQuestion, question_id)
    if not question or question.exam_id != exam.id:
        raise ValidationError("Question not found in this exam")

    _hold_in_progress(session, attempt_id)
    answer = _find_answer(session, attempt_id, question_id)
    if answer:
        answer.response = response
        answer.saved_at = now
    else:
        answer = Answer(attempt_id=attempt_id, question_id=question_id, response=response, saved_at=now)
    session.add(answer)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        _hold_in_progress(session, attempt_id)
        answer = _find_answer(session, attempt_id, question_id)
        if answer is None:
            session.rollback()
            raise
        # Another request inserted the row first; overwrite it instead
        answer.response = response
        answer.saved_at = now
        session.add(answer)
        session.commit()
    session.refresh(answer)
    return answer


def _hold_in_progress(session: Session, attempt_id: int) -> None:
    """Lock the attempt row for this transaction, failing if it was finalized.

    Submission moves the attempt out of IN_PROGRESS with the same kind of
    conditional UPDATE, so a save and a submit on one attempt are serialized
    and a scored answer is never overwritten.
    """
    held = session.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt_id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
        .values(status=AttemptStatus.IN_PROGRESS)
        .execution_options(synchronize_session=False)
    )
    if held.rowcount != 1:
        session.rollback()
        logger.warning("Rejected save for attempt %s: attempt was finalized", attempt_id)
        raise AttemptNotActive("Attempt is no longer in progress")
