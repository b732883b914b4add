"""Exam and question authoring.

Every mutation goes through the approval guards, so exams can only change
while DRAFT or REJECTED and only at the hands of their owning teacher.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from exam_portal.errors import Forbidden, NotFound, ValidationError
from exam_portal.models import (
    DIFFICULTIES,
    Exam,
    ExamQuestion,
    ExamStatus,
    QuestionType,
    Role,
    User,
)
from exam_portal.services.approval import ensure_can_delete, ensure_can_edit
from exam_portal.services.common import get_exam, is_admin_for, is_owner, list_questions
from exam_portal.services.exam_status import effective_status
from exam_portal.services.scoring import normalize_key
from exam_portal.utils import sanitize_question_text, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

EXAM_TITLE_MAX_LENGTH = 200
EXAM_SUBJECT_MAX_LENGTH = 120
EXAM_DESCRIPTION_MAX_LENGTH = 2000
EXAM_DURATION_MAX_MINUTES = 600
QUESTION_TEXT_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000
DEFAULT_TRUE_FALSE_OPTIONS = ["True", "False"]

EXAM_FIELDS = (
    "title",
    "description",
    "subject",
    "class_name",
    "start_time",
    "end_time",
    "duration_minutes",
    "passing_marks",
    "negative_marking",
    "shuffle",
    "max_attempts",
    "show_results_immediately",
    "allow_preview",
)
QUESTION_FIELDS = (
    "text",
    "question_type",
    "points",
    "difficulty",
    "order_index",
    "options",
    "correct_answer",
    "explanation",
)


# --- Validation ---


def _validate_exam_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    """Validate exam fields and return cleaned values; raise with every error found."""
    errors: Dict[str, str] = {}
    cleaned = dict(values)

    title = (values.get("title") or "").strip()
    if not title:
        errors["title"] = "Title is required."
    elif len(title) > EXAM_TITLE_MAX_LENGTH:
        errors["title"] = f"Title must be at most {EXAM_TITLE_MAX_LENGTH} characters."
    cleaned["title"] = title

    subject = (values.get("subject") or "").strip() or None
    if subject and len(subject) > EXAM_SUBJECT_MAX_LENGTH:
        errors["subject"] = f"Subject must be at most {EXAM_SUBJECT_MAX_LENGTH} characters."
    cleaned["subject"] = subject

    description = (values.get("description") or "").strip() or None
    if description and len(description) > EXAM_DESCRIPTION_MAX_LENGTH:
        errors["description"] = f"Description must be at most {EXAM_DESCRIPTION_MAX_LENGTH} characters."
    cleaned["description"] = description

    cleaned["class_name"] = (values.get("class_name") or "").strip() or None

    duration = values.get("duration_minutes")
    if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
        errors["duration_minutes"] = "Duration must be a positive whole number of minutes."
    elif duration > EXAM_DURATION_MAX_MINUTES:
        errors["duration_minutes"] = f"Duration cannot exceed {EXAM_DURATION_MAX_MINUTES} minutes."

    max_attempts = values.get("max_attempts", 1)
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
        errors["max_attempts"] = "Max attempts must be at least 1."

    passing_marks = values.get("passing_marks", 0.0)
    if passing_marks is None or passing_marks < 0:
        errors["passing_marks"] = "Passing marks cannot be negative."
    elif "passing_marks" in values:
        cleaned["passing_marks"] = float(passing_marks)

    start_time = to_naive_utc(values.get("start_time"))
    end_time = to_naive_utc(values.get("end_time"))
    if start_time and end_time and end_time <= start_time:
        errors["end_time"] = "End time must be after start time."
    cleaned["start_time"] = start_time
    cleaned["end_time"] = end_time

    if errors:
        raise ValidationError("Invalid exam details", errors=errors)
    return cleaned


def _validate_question_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    """Validate question fields (modelled on the MCQ form rules) and return cleaned values."""
    errors: Dict[str, str] = {}
    cleaned = dict(values)

    text = sanitize_question_text(values.get("text") or "")
    if not text:
        errors["text"] = "Question text is required."
    elif len(text) > QUESTION_TEXT_MAX_LENGTH:
        errors["text"] = f"Question text must be at most {QUESTION_TEXT_MAX_LENGTH} characters."
    cleaned["text"] = text

    question_type = (values.get("question_type") or "").strip().upper()
    if question_type not in QuestionType.ALL:
        errors["question_type"] = f"Question type must be one of: {', '.join(QuestionType.ALL)}."
    cleaned["question_type"] = question_type

    points = values.get("points")
    if points is None or isinstance(points, bool) or points <= 0:
        errors["points"] = "Points must be greater than zero."
    else:
        cleaned["points"] = float(points)

    difficulty = (values.get("difficulty") or "MEDIUM").strip().upper()
    if difficulty not in DIFFICULTIES:
        errors["difficulty"] = f"Difficulty must be one of: {', '.join(DIFFICULTIES)}."
    cleaned["difficulty"] = difficulty

    options = values.get("options")
    if question_type == QuestionType.TRUE_FALSE and not options:
        options = list(DEFAULT_TRUE_FALSE_OPTIONS)
    if options is not None:
        options = [(opt or "").strip() if isinstance(opt, str) else opt for opt in options]
    cleaned["options"] = options or None

    if question_type in QuestionType.AUTO_SCORED:
        if not options or len(options) < 2:
            errors["options"] = "At least two options are required."
        elif any(not isinstance(opt, str) or not opt for opt in options):
            errors["options"] = "All options must be provided and non-empty."
        elif any(len(opt) > OPTION_MAX_LENGTH for opt in options):
            errors["options"] = f"Options must be at most {OPTION_MAX_LENGTH} characters."
        elif len({opt.lower() for opt in options}) != len(options):
            errors["options"] = "All options must be unique."

        if values.get("correct_answer") is None:
            errors["correct_answer"] = "Correct answer must be specified."
        elif "options" not in errors and "question_type" not in errors:
            probe = ExamQuestion(
                exam_id=0,
                text=text,
                question_type=question_type,
                options=options,
                correct_answer=values.get("correct_answer"),
            )
            try:
                normalize_key(probe)
            except (ValueError, TypeError, IndexError):
                errors["correct_answer"] = "Correct answer must match one of the options."

    if errors:
        raise ValidationError("Invalid question", errors=errors)
    return cleaned


def recompute_total_marks(session: Session, exam: Exam) -> Exam:
    """Keep exam.total_marks equal to the sum of its question points."""
    exam.total_marks = float(sum(q.points for q in list_questions(session, exam.id)))
    session.add(exam)
    return exam


# --- Exams ---


def create_exam(session: Session, actor: User, **fields: Any) -> Exam:
    if actor.role != Role.TEACHER:
        raise Forbidden("Only teachers can create exams")
    if actor.school_id is None:
        raise ValidationError("Teacher account is not linked to a school")

    values = {key: fields[key] for key in EXAM_FIELDS if key in fields}
    unknown = set(fields) - set(EXAM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown exam fields: {', '.join(sorted(unknown))}")
    cleaned = _validate_exam_fields(values)

    exam = Exam(
        **cleaned,
        school_id=actor.school_id,
        teacher_id=actor.id,
        status=ExamStatus.DRAFT,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Teacher %s created exam %s", actor.id, exam.id)
    return exam


def update_exam(session: Session, exam_id: int, actor: User, **changes: Any) -> Exam:
    exam = get_exam(session, exam_id)
    ensure_can_edit(exam, actor)

    unknown = set(changes) - set(EXAM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown exam fields: {', '.join(sorted(unknown))}")

    merged = {key: getattr(exam, key) for key in EXAM_FIELDS}
    merged.update(changes)
    cleaned = _validate_exam_fields(merged)
    for key, value in cleaned.items():
        setattr(exam, key, value)
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def delete_exam(session: Session, exam_id: int, actor: User) -> None:
    exam = get_exam(session, exam_id)
    ensure_can_delete(session, exam, actor)
    for question in list_questions(session, exam.id):
        session.delete(question)
    session.delete(exam)
    session.commit()
    logger.info("Teacher %s deleted exam %s", actor.id, exam_id)


def list_exams(
    session: Session,
    actor: User,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Exams an admin or teacher may review, optionally filtered by stored status."""
    now = now or utcnow()
    stmt = select(Exam).order_by(Exam.created_at.desc())
    if actor.role == Role.SCHOOL_ADMIN:
        stmt = stmt.where(Exam.school_id == actor.school_id)
    elif actor.role == Role.TEACHER:
        stmt = stmt.where(Exam.teacher_id == actor.id)
    elif actor.role != Role.SUPER_ADMIN:
        raise Forbidden("Students cannot list exams here")
    if status:
        stmt = stmt.where(Exam.status == status.upper())

    return [
        {
            "id": exam.id,
            "title": exam.title,
            "subject": exam.subject,
            "class_name": exam.class_name,
            "school_id": exam.school_id,
            "teacher_id": exam.teacher_id,
            "start_time": exam.start_time,
            "end_time": exam.end_time,
            "stored_status": exam.status,
            "status": effective_status(exam, now),
            "total_marks": exam.total_marks,
        }
        for exam in session.exec(stmt).all()
    ]


def exam_detail(session: Session, exam_id: int, actor: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Full exam definition including answer keys, for its teacher or an admin."""
    exam = get_exam(session, exam_id)
    if not (is_owner(exam, actor) or is_admin_for(exam, actor)):
        raise Forbidden("You cannot view this exam's definition")

    data = exam.model_dump()
    data["stored_status"] = exam.status
    data["status"] = effective_status(exam, now)
    data["questions"] = [q.model_dump() for q in list_questions(session, exam.id)]
    return data


# --- Questions ---


def _get_question(session: Session, exam: Exam, question_id: int) -> ExamQuestion:
    question = session.get(ExamQuestion, question_id)
    if not question or question.exam_id != exam.id:
        raise NotFound("Question not found in this exam")
    return question


def add_question(session: Session, exam_id: int, actor: User, **fields: Any) -> ExamQuestion:
    exam = get_exam(session, exam_id)
    ensure_can_edit(exam, actor)

    unknown = set(fields) - set(QUESTION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown question fields: {', '.join(sorted(unknown))}")
    cleaned = _validate_question_fields(fields)
    if cleaned.get("order_index") is None:
        existing = list_questions(session, exam.id)
        cleaned["order_index"] = (existing[-1].order_index + 1) if existing else 0

    question = ExamQuestion(exam_id=exam.id, **cleaned)
    session.add(question)
    session.flush()
    recompute_total_marks(session, exam)
    exam.updated_at = utcnow()
    session.commit()
    session.refresh(question)
    return question


def edit_question(session: Session, exam_id: int, question_id: int, actor: User, **changes: Any) -> ExamQuestion:
    exam = get_exam(session, exam_id)
    ensure_can_edit(exam, actor)
    question = _get_question(session, exam, question_id)

    unknown = set(changes) - set(QUESTION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown question fields: {', '.join(sorted(unknown))}")
    merged = {key: getattr(question, key) for key in QUESTION_FIELDS}
    merged.update(changes)
    cleaned = _validate_question_fields(merged)
    for key, value in cleaned.items():
        setattr(question, key, value)
    session.add(question)
    session.flush()
    recompute_total_marks(session, exam)
    exam.updated_at = utcnow()
    session.commit()
    session.refresh(question)
    return question


def delete_question(session: Session, exam_id: int, question_id: int, actor: User) -> None:
    exam = get_exam(session, exam_id)
    ensure_can_edit(exam, actor)
    question = _get_question(session, exam, question_id)
    session.delete(question)
    session.flush()
    recompute_total_marks(session, exam)
    exam.updated_at = utcnow()
    session.commit()
