"""Student dashboard routes."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_student
from exam_portal.models import Student
from exam_portal.services.attempt_service import list_student_exams

router = APIRouter()


@router.get("/student/exams")
def student_exams(
    student: Student = Depends(require_student),
    session: Session = Depends(get_session),
):
    """Exams visible to the logged-in student with their attempt state."""
    return list_student_exams(session, student)
