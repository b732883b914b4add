"""SQLModel models for the school examination platform."""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from exam_portal.utils import utcnow


class Role:
    SUPER_ADMIN = "SUPER_ADMIN"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"

    ADMINS = (SUPER_ADMIN, SCHOOL_ADMIN)


class ExamStatus:
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    ALL = (
        DRAFT,
        PENDING_APPROVAL,
        APPROVED,
        REJECTED,
        PUBLISHED,
        SCHEDULED,
        ACTIVE,
        COMPLETED,
        CANCELLED,
    )


class QuestionType:
    MCQ = "MCQ"
    TRUE_FALSE = "TRUE_FALSE"
    ESSAY = "ESSAY"
    SHORT_ANSWER = "SHORT_ANSWER"
    FILL_IN_BLANK = "FILL_IN_BLANK"
    MATCHING = "MATCHING"

    ALL = (MCQ, TRUE_FALSE, ESSAY, SHORT_ANSWER, FILL_IN_BLANK, MATCHING)
    AUTO_SCORED = (MCQ, TRUE_FALSE)


class AttemptStatus:
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    EXPIRED = "EXPIRED"

    FINAL = (SUBMITTED, EXPIRED)


DIFFICULTIES = ("EASY", "MEDIUM", "HARD")


class School(SQLModel, table=True):
    """A tenant. Users, students and exams all belong to one school."""

    __table_args__ = (UniqueConstraint("code", name="uq_school_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str
    created_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    """Application user that can log in and own a role."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str  # must be unique
    password_hash: str
    role: str = Field(default=Role.STUDENT)
    # Null only for SUPER_ADMIN accounts
    school_id: Optional[int] = Field(default=None, foreign_key="school.id")
    is_active: bool = Field(default=True)
    status: str = Field(default="active")  # active, suspended
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Student(SQLModel, table=True):
    """Student profile linked to a STUDENT user account."""

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_student_user"),
        UniqueConstraint("matric_no", name="uq_student_matric_no"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id")
    school_id: int = Field(foreign_key="school.id")
    matric_no: str
    class_name: Optional[str] = None  # e.g. "JSS2A"
    created_at: datetime = Field(default_factory=utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    # None means the exam is open to every class of the school
    class_name: Optional[str] = None
    school_id: int = Field(foreign_key="school.id")
    teacher_id: int = Field(foreign_key="user.id")

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: int

    total_marks: float = Field(default=0.0)
    passing_marks: float = Field(default=0.0)
    negative_marking: bool = Field(default=False)
    shuffle: bool = Field(default=False)
    max_attempts: int = Field(default=1)
    show_results_immediately: bool = Field(default=False)
    allow_preview: bool = Field(default=False)

    status: str = Field(default=ExamStatus.DRAFT)
    rejection_reason: Optional[str] = None
    approver_id: Optional[int] = Field(default=None, foreign_key="user.id")
    reviewed_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExamQuestion(SQLModel, table=True):
    """A question belonging to an exam, with its answer key."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    text: str
    question_type: str = Field(default=QuestionType.MCQ)
    points: float = Field(default=1.0)
    difficulty: str = Field(default="MEDIUM")
    order_index: int = Field(default=0)
    options: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    # Never exposed to student-facing reads
    correct_answer: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    explanation: Optional[str] = None


class ExamAttempt(SQLModel, table=True):
    """Tracks one timed attempt by a student for an exam."""

    __table_args__ = (
        UniqueConstraint(
            "exam_id", "student_id", "attempt_number", name="uq_attempt_number"
        ),
        # At most one IN_PROGRESS attempt per (exam, student)
        Index(
            "uq_attempt_in_progress",
            "exam_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="student.id")
    attempt_number: int = Field(default=1)
    started_at: datetime = Field(default_factory=utcnow)
    status: str = Field(default=AttemptStatus.IN_PROGRESS)
    submitted_at: Optional[datetime] = None
    time_spent_seconds: Optional[int] = None
    submit_trigger: Optional[str] = None  # manual | auto
    score: Optional[float] = None
    percentage: Optional[float] = None


class Answer(SQLModel, table=True):
    """A student's response to one question within an attempt."""

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id")
    question_id: int = Field(foreign_key="examquestion.id")
    response: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    is_correct: Optional[bool] = None
    points_awarded: Optional[float] = None
    grader_feedback: Optional[str] = None
    graded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    saved_at: datetime = Field(default_factory=utcnow)
