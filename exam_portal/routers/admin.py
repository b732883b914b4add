"""Admin routes for reviewing, approving and cancelling exams."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_role
from exam_portal.models import Exam, Role, User
from exam_portal.services import approval, exam_service

router = APIRouter()


class ApproveIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    publish_now: bool = Field(default=False, alias="publishNow")


class RejectIn(BaseModel):
    reason: Optional[str] = None


def _review_payload(exam: Exam) -> dict:
    return {
        "id": exam.id,
        "status": exam.status,
        "approver_id": exam.approver_id,
        "reviewed_at": exam.reviewed_at,
        "published_at": exam.published_at,
        "rejection_reason": exam.rejection_reason,
    }


@router.get("/exams")
def list_exams(
    status: Optional[str] = Query(None),
    current_user: User = Depends(require_role(list(Role.ADMINS))),
    session: Session = Depends(get_session),
):
    """Exams of the admin's school (every school for a super admin)."""
    return exam_service.list_exams(session, current_user, status=status)


@router.post("/exams/{exam_id}/approve")
def approve_exam(
    exam_id: int,
    payload: Optional[ApproveIn] = None,
    current_user: User = Depends(require_role(list(Role.ADMINS))),
    session: Session = Depends(get_session),
):
    publish_now = payload.publish_now if payload else False
    exam = approval.approve(session, exam_id, current_user, publish_now=publish_now)
    return _review_payload(exam)


@router.post("/exams/{exam_id}/reject")
def reject_exam(
    exam_id: int,
    payload: RejectIn,
    current_user: User = Depends(require_role(list(Role.ADMINS))),
    session: Session = Depends(get_session),
):
    exam = approval.reject(session, exam_id, current_user, payload.reason)
    return _review_payload(exam)


@router.post("/exams/{exam_id}/cancel")
def cancel_exam(
    exam_id: int,
    current_user: User = Depends(require_role(list(Role.ADMINS))),
    session: Session = Depends(get_session),
):
    exam = approval.cancel(session, exam_id, current_user)
    return _review_payload(exam)
