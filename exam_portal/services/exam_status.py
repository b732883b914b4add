"""Time-derived exam status.

The stored status only records workflow decisions. Whether an approved exam
is upcoming, running or over is derived from its schedule at read time, so
two reads of the same row at different instants may disagree.
"""

from datetime import datetime
from typing import Optional

from exam_portal.models import Exam, ExamStatus
from exam_portal.utils import utcnow

# Stored statuses whose effective status follows the schedule
_TIME_DERIVED = (ExamStatus.APPROVED, ExamStatus.PUBLISHED)


def effective_status(exam: Exam, now: Optional[datetime] = None) -> str:
    """Return the exam's effective status at ``now``.

    APPROVED and PUBLISHED exams become SCHEDULED, ACTIVE or COMPLETED
    depending on where ``now`` falls in [start_time, end_time). Every other
    stored status is returned unchanged.
    """
    if exam.status not in _TIME_DERIVED:
        return exam.status

    if exam.start_time is None or exam.end_time is None:
        # Approval requires a schedule; treat a missing one as not yet open
        return ExamStatus.SCHEDULED

    now = now or utcnow()
    if now < exam.start_time:
        return ExamStatus.SCHEDULED
    if now < exam.end_time:
        return ExamStatus.ACTIVE
    return ExamStatus.COMPLETED


def is_active(exam: Exam, now: Optional[datetime] = None) -> bool:
    return effective_status(exam, now) == ExamStatus.ACTIVE
