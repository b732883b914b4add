import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from exam_portal.auth_utils import hash_password
from exam_portal.models import (
    Exam,
    ExamQuestion,
    ExamStatus,
    QuestionType,
    Role,
    School,
    Student,
    User,
)
from exam_portal.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool shares the same in-memory database across connections
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TEST_PASSWORD = "testpass123"
_password_hash = None


def _test_password_hash() -> str:
    # bcrypt is slow, hash the shared test password once
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield
    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM answer"))
        session.exec(text("DELETE FROM examattempt"))
        session.exec(text("DELETE FROM examquestion"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM student"))
        session.exec(text('DELETE FROM "user"'))
        session.exec(text("DELETE FROM school"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from exam_portal.database import get_session  # noqa: E402
from exam_portal.main import app  # noqa: E402


class SyncClientWrapper:
    """Run an httpx.AsyncClient from synchronous tests."""

    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def patch(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.patch(*args, **kwargs))

    def delete(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

    def login(self, email, password=TEST_PASSWORD):
        response = self.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response

    def logout(self):
        return self.post("/auth/logout")


@pytest.fixture
def client():
    """Create test client using httpx AsyncClient with sync wrapper."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    yield SyncClientWrapper(async_client, loop)

    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create(obj):
    with Session(test_engine) as session:
        session.add(obj)
        session.commit()
        session.refresh(obj)
        obj_id = obj.id
    # Fetch fresh from DB after session close
    with Session(test_engine) as session:
        return session.get(type(obj), obj_id)


def _create_user(name, email, role, school_id=None):
    return _create(
        User(
            name=name,
            email=email,
            password_hash=_test_password_hash(),
            role=role,
            school_id=school_id,
        )
    )


def _create_student(name, email, matric_no, school_id, class_name="JSS2A"):
    user = _create_user(name, email, Role.STUDENT, school_id)
    return _create(Student(user_id=user.id, school_id=school_id, matric_no=matric_no, class_name=class_name))


@pytest.fixture
def school():
    return _create(School(name="Greenfield Secondary School", code="GSS"))


@pytest.fixture
def other_school():
    return _create(School(name="Hillside College", code="HSC"))


@pytest.fixture
def super_admin():
    return _create_user("Super Admin", "super@example.com", Role.SUPER_ADMIN)


@pytest.fixture
def school_admin(school):
    return _create_user("School Admin", "schooladmin@example.com", Role.SCHOOL_ADMIN, school.id)


@pytest.fixture
def other_school_admin(other_school):
    return _create_user("Other Admin", "otheradmin@example.com", Role.SCHOOL_ADMIN, other_school.id)


@pytest.fixture
def teacher(school):
    return _create_user("Mrs. Ada Teacher", "teacher@example.com", Role.TEACHER, school.id)


@pytest.fixture
def other_teacher(school):
    return _create_user("Mr. Bayo Teacher", "teacher2@example.com", Role.TEACHER, school.id)


@pytest.fixture
def student(school):
    return _create_student("Alice Student", "alice@example.com", "GSS1001", school.id)


@pytest.fixture
def other_student(school):
    return _create_student("Bob Student", "bob@example.com", "GSS1002", school.id)


def sample_questions():
    return [
        dict(
            text="What is 2 + 2?",
            question_type=QuestionType.MCQ,
            points=2.0,
            options=["3", "4", "5", "22"],
            correct_answer=1,
        ),
        dict(
            text="The sun rises in the east.",
            question_type=QuestionType.TRUE_FALSE,
            points=1.0,
            options=["True", "False"],
            correct_answer=True,
        ),
        dict(
            text="Explain photosynthesis.",
            question_type=QuestionType.ESSAY,
            points=5.0,
            correct_answer="Plants convert light into chemical energy.",
        ),
    ]


@pytest.fixture
def make_exam(teacher):
    """Factory creating an exam straight in the database with its questions."""

    def _make_exam(
        status=ExamStatus.APPROVED,
        start_time=None,
        end_time=None,
        duration_minutes=10,
        questions=None,
        owner=None,
        **fields,
    ):
        owner = owner or teacher
        now = utcnow()
        questions = sample_questions() if questions is None else questions
        with Session(test_engine) as session:
            exam = Exam(
                title=fields.pop("title", "Mathematics Mid-Term"),
                subject=fields.pop("subject", "Mathematics"),
                school_id=owner.school_id,
                teacher_id=owner.id,
                start_time=start_time if start_time is not None else now - timedelta(hours=1),
                end_time=end_time if end_time is not None else now + timedelta(hours=2),
                duration_minutes=duration_minutes,
                total_marks=float(sum(q["points"] for q in questions)),
                status=status,
                **fields,
            )
            session.add(exam)
            session.commit()
            session.refresh(exam)
            for position, q in enumerate(questions):
                session.add(ExamQuestion(exam_id=exam.id, order_index=position, **q))
            session.commit()
            exam_id = exam.id
        with Session(test_engine) as session:
            return session.get(Exam, exam_id)

    return _make_exam


@pytest.fixture
def active_exam(make_exam):
    """An approved exam whose window contains the current time."""
    return make_exam()
