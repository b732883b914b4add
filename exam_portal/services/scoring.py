"""Submission and scoring of exam attempts, plus manual grading.

Scoring rules:

- MCQ and TRUE_FALSE questions are scored automatically. A correct answer
  earns the question's points. A wrong answer earns 0, or
  ``-points * penalty`` when the exam uses negative marking, where
  ``penalty`` is ``config.NEGATIVE_MARKING_PENALTY``.
- An unanswered question (no saved row, or an empty response) earns 0 and is
  never penalised.
- ESSAY, SHORT_ANSWER, FILL_IN_BLANK and MATCHING answers stay unscored
  (``points_awarded is None``) until a teacher grades them.
- A question whose answer key cannot be interpreted is left unscored instead
  of failing the whole submission.
"""

import logging
import string
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from exam_portal import config
from exam_portal.errors import AlreadySubmitted, Forbidden, InvalidTransition, NotFound, ValidationError
from exam_portal.models import (
    Answer,
    AttemptStatus,
    Exam,
    ExamAttempt,
    ExamQuestion,
    QuestionType,
    Student,
    User,
)
from exam_portal.services.answer_service import load_owned_attempt
from exam_portal.services.attempt_service import attempt_deadline, attempt_summary
from exam_portal.services.common import get_exam, is_admin_for, is_owner, list_questions
from exam_portal.utils import sanitize_feedback, utcnow, validate_marks

logger = logging.getLogger(__name__)

TRIGGERS = ("manual", "auto")
_TRUE_WORDS = ("true", "t", "yes")
_FALSE_WORDS = ("false", "f", "no")


# --- Answer key interpretation ---


def option_index(value: Any, options: Optional[Sequence[str]]) -> int:
    """Resolve a response or answer key to a 0-based option index.

    Accepts an int index, an option's text, a digit string, an option letter
    ("A", "b", ...), or a presented option dict carrying ``index``.

    Raises:
        ValueError: the value does not identify one of ``options``
    """
    options = list(options or [])
    if isinstance(value, dict) and "index" in value:
        value = value["index"]

    if isinstance(value, bool):
        raise ValueError("Boolean is not an option index")
    if isinstance(value, int):
        index = value
    elif isinstance(value, str):
        cleaned = value.strip()
        stripped_options = [opt.strip() for opt in options]
        if cleaned in stripped_options:
            return stripped_options.index(cleaned)
        if cleaned.isdigit():
            index = int(cleaned)
        elif len(cleaned) == 1 and cleaned.upper() in string.ascii_uppercase:
            index = string.ascii_uppercase.index(cleaned.upper())
        else:
            raise ValueError(f"{value!r} is not one of the options")
    else:
        raise ValueError(f"Unsupported option reference {value!r}")

    if not 0 <= index < len(options):
        raise ValueError(f"Option index {index} out of range")
    return index


def parse_bool(value: Any, options: Optional[Sequence[str]] = None) -> bool:
    """Normalize a TRUE_FALSE response or key to a bool.

    Raises:
        ValueError: the value is neither a boolean word nor an option
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    if options:
        # Fall back to the option the value points at, e.g. index 0 -> "True"
        text = options[option_index(value, options)].strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
    raise ValueError(f"{value!r} is not a true/false answer")


def is_unanswered(response: Any) -> bool:
    if response is None:
        return True
    if isinstance(response, str):
        return not response.strip()
    if isinstance(response, (list, dict)):
        return len(response) == 0
    return False


def normalize_key(question: ExamQuestion) -> Any:
    """Canonical form of an auto-scored question's answer key."""
    if question.question_type == QuestionType.MCQ:
        return option_index(question.correct_answer, question.options)
    if question.question_type == QuestionType.TRUE_FALSE:
        return parse_bool(question.correct_answer, question.options)
    raise ValueError(f"{question.question_type} questions have no automatic key")


def score_response(
    question: ExamQuestion,
    response: Any,
    negative_marking: bool,
    penalty: float,
) -> Tuple[Optional[bool], Optional[float]]:
    """Return ``(is_correct, points_awarded)`` for one response.

    ``(None, None)`` means the question is not auto-scored, either because of
    its type or because its answer key is malformed.
    """
    if question.question_type not in QuestionType.AUTO_SCORED:
        return None, None

    try:
        key = normalize_key(question)
    except (ValueError, TypeError, IndexError):
        logger.warning("Question %s has a malformed answer key; leaving it unscored", question.id)
        return None, None

    if is_unanswered(response):
        return False, 0.0

    try:
        if question.question_type == QuestionType.MCQ:
            given = option_index(response, question.options)
        else:
            given = parse_bool(response, question.options)
    except (ValueError, TypeError, IndexError):
        # Unrecognised responses are wrong answers, not unanswered ones
        given = None

    if given is not None and given == key:
        return True, float(question.points)
    if negative_marking:
        return False, -float(question.points) * penalty
    return False, 0.0


def percentage_of(score: float, total_marks: float) -> float:
    if not total_marks:
        return 0.0
    return score / total_marks * 100


def _answers_by_question(session: Session, attempt_id: int) -> Dict[int, Answer]:
    answers = session.exec(select(Answer).where(Answer.attempt_id == attempt_id)).all()
    return {a.question_id: a for a in answers}


def _score_total(questions: List[ExamQuestion], answers: Dict[int, Answer]) -> float:
    # Summed in question order, the same order total_marks is summed in
    return sum(
        answers[q.id].points_awarded
        for q in questions
        if q.id in answers and answers[q.id].points_awarded is not None
    )


def _score_payload(exam: Exam, attempt: ExamAttempt, pending: int) -> Dict[str, Any]:
    return {
        "score": attempt.score,
        "total_marks": exam.total_marks,
        "percentage": attempt.percentage,
        "passed": attempt.score is not None and attempt.score >= exam.passing_marks,
        "pending_manual_grading": pending,
    }


def _pending_count(questions: List[ExamQuestion], answers: Dict[int, Answer]) -> int:
    return sum(
        1
        for q in questions
        if q.question_type not in QuestionType.AUTO_SCORED
        and q.id in answers
        and answers[q.id].points_awarded is None
    )


# --- Submission ---


def submit_attempt(
    session: Session,
    attempt_id: int,
    time_spent: Optional[float] = None,
    trigger: str = "manual",
    now: Optional[datetime] = None,
    student_id: Optional[int] = None,
    exam_id: Optional[int] = None,
    penalty: Optional[float] = None,
) -> Dict[str, Any]:
    """Finalize an attempt and score its saved answers.

    The attempt is EXPIRED when ``now`` is at or past its deadline, whatever
    the trigger, and SUBMITTED otherwise. Only the first call succeeds; later
    calls raise AlreadySubmitted and change nothing.

    ``time_spent`` is the client's claim in seconds; the stored value never
    exceeds the server-observed elapsed time.
    """
    now = now or utcnow()
    if trigger not in TRIGGERS:
        raise ValidationError(f"Trigger must be one of {', '.join(TRIGGERS)}")
    penalty = config.NEGATIVE_MARKING_PENALTY if penalty is None else penalty

    attempt = load_owned_attempt(session, attempt_id, student_id, exam_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise AlreadySubmitted("Attempt has already been submitted", status=attempt.status)

    exam = get_exam(session, attempt.exam_id)
    final_status = AttemptStatus.EXPIRED if now >= attempt_deadline(attempt, exam) else AttemptStatus.SUBMITTED

    elapsed = max(0, int((now - attempt.started_at).total_seconds()))
    if time_spent is None:
        spent = elapsed
    else:
        spent = min(max(0, int(time_spent)), elapsed)

    # The attempt row is the serialization point: only one writer can move it
    # out of IN_PROGRESS.
    claim = session.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
        .values(
            status=final_status,
            submitted_at=now,
            time_spent_seconds=spent,
            submit_trigger=trigger,
        )
    )
    if claim.rowcount != 1:
        session.rollback()
        raise AlreadySubmitted("Attempt has already been submitted")
    session.refresh(attempt)

    questions = list_questions(session, exam.id)
    answers = _answers_by_question(session, attempt.id)
    for question in questions:
        answer = answers.get(question.id)
        if answer is None:
            continue
        answer.is_correct, answer.points_awarded = score_response(
            question, answer.response, exam.negative_marking, penalty
        )
        session.add(answer)

    attempt.score = float(_score_total(questions, answers))
    attempt.percentage = percentage_of(attempt.score, exam.total_marks)
    session.add(attempt)
    session.commit()
    session.refresh(attempt)

    logger.info(
        "Attempt %s of exam %s finalized as %s (%s trigger)",
        attempt.id,
        exam.id,
        attempt.status,
        trigger,
    )

    result: Dict[str, Any] = {
        "attempt_id": attempt.id,
        "status": attempt.status,
        "submitted_at": attempt.submitted_at,
        "time_spent_seconds": attempt.time_spent_seconds,
    }
    if exam.show_results_immediately:
        result.update(_score_payload(exam, attempt, _pending_count(questions, answers)))
    return result


def recompute_attempt_score(session: Session, attempt: ExamAttempt, exam: Exam) -> ExamAttempt:
    questions = list_questions(session, exam.id)
    attempt.score = float(_score_total(questions, _answers_by_question(session, attempt.id)))
    attempt.percentage = percentage_of(attempt.score, exam.total_marks)
    session.add(attempt)
    return attempt


# --- Manual grading ---


def _require_reviewer(exam: Exam, actor: User) -> None:
    if not (is_owner(exam, actor) or is_admin_for(exam, actor)):
        raise Forbidden("Only the exam's teacher or a school administrator can view its results")


def grade_answer(
    session: Session,
    answer_id: int,
    points: float,
    actor: User,
    feedback: Optional[str] = None,
    exam_id: Optional[int] = None,
) -> Answer:
    """Teacher awards marks to a manually graded answer.

    Raises:
        Forbidden: the actor does not own the exam
        InvalidTransition: the attempt is still in progress
        ValidationError: the question is auto-scored or the marks are out of range
    """
    answer = session.get(Answer, answer_id)
    if not answer:
        raise NotFound(f"Answer with id={answer_id} does not exist")
    attempt = session.get(ExamAttempt, answer.attempt_id)
    exam = get_exam(session, attempt.exam_id)
    if exam_id is not None and exam.id != exam_id:
        raise NotFound(f"Answer {answer_id} does not belong to exam {exam_id}")
    if not is_owner(exam, actor):
        raise Forbidden("Only the teacher who owns this exam can grade it")
    if attempt.status not in AttemptStatus.FINAL:
        raise InvalidTransition(
            "Answers can only be graded after the attempt is submitted",
            current=attempt.status,
            attempted="GRADE",
        )

    question = session.get(ExamQuestion, answer.question_id)
    if question.question_type in QuestionType.AUTO_SCORED:
        raise ValidationError(f"{question.question_type} questions are scored automatically")
    try:
        validate_marks(points, question.points)
    except ValueError as e:
        raise ValidationError(f"Question {question.id}: {e}")

    answer.points_awarded = float(points)
    answer.is_correct = points > 0
    answer.graded_by = actor.id
    if feedback:
        answer.grader_feedback = sanitize_feedback(feedback)
    session.add(answer)
    session.flush()

    recompute_attempt_score(session, attempt, exam)
    session.commit()
    session.refresh(answer)
    logger.info("Answer %s of attempt %s graded by user %s", answer.id, attempt.id, actor.id)
    return answer


def pending_grading(session: Session, exam_id: int, actor: User) -> List[Dict[str, Any]]:
    """Answers of finalized attempts still waiting for manual marks."""
    exam = get_exam(session, exam_id)
    _require_reviewer(exam, actor)

    stmt = (
        select(Answer, ExamQuestion, ExamAttempt)
        .join(ExamQuestion, Answer.question_id == ExamQuestion.id)
        .join(ExamAttempt, Answer.attempt_id == ExamAttempt.id)
        .where(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.status.in_(AttemptStatus.FINAL),
            ExamQuestion.question_type.not_in(QuestionType.AUTO_SCORED),
            Answer.points_awarded.is_(None),
        )
        .order_by(ExamAttempt.id, ExamQuestion.order_index)
    )
    return [
        {
            "answer_id": answer.id,
            "attempt_id": attempt.id,
            "student_id": attempt.student_id,
            "question_id": question.id,
            "question_text": question.text,
            "question_type": question.question_type,
            "max_points": question.points,
            "response": answer.response,
            "sample_answer": question.correct_answer,
        }
        for answer, question, attempt in session.exec(stmt).all()
    ]


# --- Result views ---


def attempt_result(
    session: Session,
    attempt_id: int,
    student_id: int,
    exam_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Student view of a finalized attempt.

    Scores and the per-question breakdown are included only when the exam
    shows results immediately.
    """
    attempt = load_owned_attempt(session, attempt_id, student_id, exam_id)
    if attempt.status not in AttemptStatus.FINAL:
        raise NotFound("No result yet for this attempt")
    exam = get_exam(session, attempt.exam_id)

    result: Dict[str, Any] = {"attempt": attempt_summary(attempt)}
    if not exam.show_results_immediately:
        return result

    questions = list_questions(session, exam.id)
    answers = _answers_by_question(session, attempt.id)
    result.update(_score_payload(exam, attempt, _pending_count(questions, answers)))
    result["breakdown"] = [
        {
            "question_id": q.id,
            "question_text": q.text,
            "question_type": q.question_type,
            "max_points": q.points,
            "response": answers[q.id].response if q.id in answers else None,
            "is_correct": answers[q.id].is_correct if q.id in answers else None,
            "points_awarded": answers[q.id].points_awarded if q.id in answers else None,
            "grader_feedback": answers[q.id].grader_feedback if q.id in answers else None,
            "explanation": q.explanation,
        }
        for q in questions
    ]
    return result


def exam_results(session: Session, exam_id: int, actor: User) -> Dict[str, Any]:
    """Teacher/admin overview of every finalized attempt of an exam."""
    exam = get_exam(session, exam_id)
    _require_reviewer(exam, actor)

    stmt = (
        select(ExamAttempt, Student)
        .join(Student, ExamAttempt.student_id == Student.id)
        .where(ExamAttempt.exam_id == exam_id, ExamAttempt.status.in_(AttemptStatus.FINAL))
        .order_by(ExamAttempt.submitted_at)
    )
    rows = []
    for attempt, student in session.exec(stmt).all():
        row = attempt_summary(attempt)
        row.update(
            {
                "matric_no": student.matric_no,
                "score": attempt.score,
                "percentage": attempt.percentage,
                "passed": attempt.score is not None and attempt.score >= exam.passing_marks,
            }
        )
        rows.append(row)

    percentages = [r["percentage"] for r in rows if r["percentage"] is not None]
    return {
        "exam_id": exam.id,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "attempts": rows,
        "average_percentage": sum(percentages) / len(percentages) if percentages else 0.0,
        "passed_count": sum(1 for r in rows if r["passed"]),
    }
