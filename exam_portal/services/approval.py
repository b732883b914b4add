"""Exam approval workflow.

Teachers author exams in DRAFT, submit them for review, and school admins
approve or reject them::

    DRAFT ------submit------> PENDING_APPROVAL
    REJECTED ---submit------> PENDING_APPROVAL
    PENDING_APPROVAL --approve--> APPROVED | PUBLISHED
    PENDING_APPROVAL --reject---> REJECTED
    PENDING_APPROVAL | APPROVED | PUBLISHED --cancel--> CANCELLED

Editing and deleting are gated by the guards at the bottom of this module,
which every CRUD path must call instead of re-checking status itself.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from exam_portal.errors import Forbidden, InvalidTransition, ScheduleConflict, ValidationError
from exam_portal.models import Exam, ExamStatus, User
from exam_portal.services.common import count_attempts, get_exam, is_admin_for, is_owner, list_questions
from exam_portal.services.exam_status import effective_status
from exam_portal.utils import utcnow

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (ExamStatus.DRAFT, ExamStatus.REJECTED)
SUBMITTABLE_STATUSES = (ExamStatus.DRAFT, ExamStatus.REJECTED)
CANCELLABLE_STATUSES = (ExamStatus.PENDING_APPROVAL, ExamStatus.APPROVED, ExamStatus.PUBLISHED)
# Exams that occupy their time slot for conflict detection
_SCHEDULED_STATUSES = (ExamStatus.APPROVED, ExamStatus.PUBLISHED)


def _require_owner(exam: Exam, actor: User, action: str) -> None:
    if not is_owner(exam, actor):
        raise Forbidden(f"Only the teacher who owns this exam can {action} it")


def _require_admin(exam: Exam, actor: User, action: str) -> None:
    if not is_admin_for(exam, actor):
        raise Forbidden(f"Only an administrator of this school can {action} exams")


def _transition(session: Session, exam: Exam, new_status: str, now: datetime) -> Exam:
    old_status = exam.status
    exam.status = new_status
    exam.updated_at = now
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s: %s -> %s", exam.id, old_status, new_status)
    return exam


def validate_schedule(exam: Exam) -> None:
    """Raise ValidationError unless the exam has a usable schedule."""
    if exam.start_time is None or exam.end_time is None:
        raise ValidationError("Exam must have start and end times")
    if exam.end_time <= exam.start_time:
        raise ValidationError("End time must be after start time")
    if not exam.duration_minutes or exam.duration_minutes <= 0:
        raise ValidationError("Duration must be a positive number of minutes")


def submit_for_approval(session: Session, exam_id: int, actor: User, now: Optional[datetime] = None) -> Exam:
    """Teacher sends a DRAFT (or previously REJECTED) exam for review."""
    now = now or utcnow()
    exam = get_exam(session, exam_id)
    _require_owner(exam, actor, "submit")

    if exam.status not in SUBMITTABLE_STATUSES:
        raise InvalidTransition(
            "Only draft or rejected exams can be submitted for approval",
            current=exam.status,
            attempted=ExamStatus.PENDING_APPROVAL,
        )
    if not list_questions(session, exam.id):
        raise ValidationError("Exam must have at least one question")
    validate_schedule(exam)

    exam.rejection_reason = None
    return _transition(session, exam, ExamStatus.PENDING_APPROVAL, now)


def _find_conflicts(session: Session, exam: Exam) -> list[Exam]:
    stmt = select(Exam).where(
        Exam.id != exam.id,
        Exam.school_id == exam.school_id,
        Exam.status.in_(_SCHEDULED_STATUSES),
        Exam.start_time < exam.end_time,
        Exam.end_time > exam.start_time,
    )
    candidates = session.exec(stmt).all()
    # An unscoped exam is sat by every class of the school
    return [
        other
        for other in candidates
        if other.class_name is None or exam.class_name is None or other.class_name == exam.class_name
    ]


def approve(
    session: Session,
    exam_id: int,
    actor: User,
    publish_now: bool = False,
    now: Optional[datetime] = None,
) -> Exam:
    """Admin approves a pending exam, optionally publishing it straight away."""
    now = now or utcnow()
    exam = get_exam(session, exam_id)
    _require_admin(exam, actor, "approve")

    target = ExamStatus.PUBLISHED if publish_now else ExamStatus.APPROVED
    if exam.status != ExamStatus.PENDING_APPROVAL:
        raise InvalidTransition(
            "Only exams pending approval can be approved",
            current=exam.status,
            attempted=target,
        )

    conflicts = _find_conflicts(session, exam)
    if conflicts:
        raise ScheduleConflict(
            "Exam time conflicts with existing exams",
            conflicts=[
                {
                    "id": other.id,
                    "title": other.title,
                    "start_time": other.start_time.isoformat(),
                    "end_time": other.end_time.isoformat(),
                }
                for other in conflicts
            ],
        )

    exam.approver_id = actor.id
    exam.reviewed_at = now
    if publish_now:
        exam.published_at = now
    return _transition(session, exam, target, now)


def reject(session: Session, exam_id: int, actor: User, reason: Optional[str], now: Optional[datetime] = None) -> Exam:
    """Admin sends a pending exam back to its teacher with a reason."""
    now = now or utcnow()
    exam = get_exam(session, exam_id)
    _require_admin(exam, actor, "reject")

    if exam.status != ExamStatus.PENDING_APPROVAL:
        raise InvalidTransition(
            "Only exams pending approval can be rejected",
            current=exam.status,
            attempted=ExamStatus.REJECTED,
        )
    reason_clean = (reason or "").strip()
    if not reason_clean:
        raise ValidationError("Rejection reason is required when rejecting an exam")

    exam.rejection_reason = reason_clean
    exam.approver_id = actor.id
    exam.reviewed_at = now
    return _transition(session, exam, ExamStatus.REJECTED, now)


def cancel(session: Session, exam_id: int, actor: User, now: Optional[datetime] = None) -> Exam:
    """Admin withdraws an exam that has not finished yet."""
    now = now or utcnow()
    exam = get_exam(session, exam_id)
    _require_admin(exam, actor, "cancel")

    if exam.status not in CANCELLABLE_STATUSES or effective_status(exam, now) == ExamStatus.COMPLETED:
        raise InvalidTransition(
            "Exam can no longer be cancelled",
            current=effective_status(exam, now),
            attempted=ExamStatus.CANCELLED,
        )
    return _transition(session, exam, ExamStatus.CANCELLED, now)


# --- Guards for the authoring surface ---


def can_edit(exam: Exam) -> bool:
    """True while the exam's stored status still allows authoring changes."""
    return exam.status in EDITABLE_STATUSES


def ensure_can_edit(exam: Exam, actor: User) -> None:
    _require_owner(exam, actor, "edit")
    if not can_edit(exam):
        raise InvalidTransition(
            "Exam can only be edited while in draft or rejected",
            current=exam.status,
            attempted="EDIT",
        )


def ensure_can_delete(session: Session, exam: Exam, actor: User) -> None:
    _require_owner(exam, actor, "delete")
    if not can_edit(exam):
        raise InvalidTransition(
            "Exam can only be deleted while in draft or rejected",
            current=exam.status,
            attempted="DELETE",
        )
    if count_attempts(session, exam.id) > 0:
        raise InvalidTransition(
            "Exam has attempts and cannot be deleted",
            current=exam.status,
            attempted="DELETE",
        )
