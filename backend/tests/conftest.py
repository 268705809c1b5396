"""
CBT Exam Engine - Test Configuration
Pytest fixtures and configuration for testing
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from cbt.api.deps import get_clock
from cbt.core.database import build_engine, get_db, init_db
from cbt.core.security import ROLE_ADMIN, ROLE_STUDENT, create_access_token, get_password_hash
from cbt.main import app
from cbt.models.catalog import Exam, Question
from cbt.models.student import Admin, Student
from cbt.services.exam_session import ExamSessionEngine


STUDENT_PASSWORD = "xK9mQ2"
ADMIN_PASSWORD = "Adm1n-pass"

# Question text -> correct letter, in stored order
SAMPLE_KEY = ["A", "B", "C", "D"]


class FakeClock:
    """Controllable UTC clock for deadline tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class SampleExam:
    exam_id: int
    subject: str
    class_level: str
    question_ids: list[int]
    key: list[str]

    def answers(self, *letters: str) -> dict[str, str]:
        """Answers for the first len(letters) questions."""
        return {str(qid): letter for qid, letter in zip(self.question_ids, letters)}

    def correct(self, count: int | None = None) -> dict[str, str]:
        return self.answers(*self.key[:count])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """A fresh SQLite file per test so concurrent connections share state."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def open_engine(session_maker, clock):
    """Session engine bound to its own database session, like one request."""

    @asynccontextmanager
    async def _open(**kwargs):
        kwargs.setdefault("shuffle_questions", False)
        async with session_maker() as session:
            yield ExamSessionEngine(session, clock=clock, **kwargs)

    return _open


async def create_student(
    session: AsyncSession,
    admission_number: str = "JSS1-001",
    class_level: str = "JSS1",
    first_name: str = "John",
    last_name: str = "Doe",
    password: str = STUDENT_PASSWORD,
) -> Student:
    student = Student(
        admission_number=admission_number,
        hashed_password=get_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        class_level=class_level,
    )
    session.add(student)
    await session.commit()
    return student


async def create_exam(
    session: AsyncSession,
    subject: str = "Mathematics",
    class_level: str = "JSS1",
    duration_minutes: int = 60,
    key: list[str] | None = None,
    is_active: bool = True,
) -> SampleExam:
    key = SAMPLE_KEY if key is None else key
    exam = Exam(
        subject=subject,
        class_level=class_level,
        duration_minutes=duration_minutes,
        is_active=is_active,
    )
    session.add(exam)
    await session.flush()

    questions = [
        Question(
            exam_id=exam.id,
            text=f"{subject} question {i + 1}",
            option_a="alpha",
            option_b="bravo",
            option_c="charlie",
            option_d="delta",
            correct_answer=letter,
        )
        for i, letter in enumerate(key)
    ]
    session.add_all(questions)
    await session.commit()
    return SampleExam(
        exam_id=exam.id,
        subject=subject,
        class_level=class_level,
        question_ids=[q.id for q in questions],
        key=list(key),
    )


@pytest_asyncio.fixture
async def student(db_session) -> Student:
    return await create_student(db_session)


@pytest_asyncio.fixture
async def sample_exam(db_session) -> SampleExam:
    """Four questions, 60 minutes, active for JSS1."""
    return await create_exam(db_session)


@pytest_asyncio.fixture
async def admin(db_session) -> Admin:
    admin = Admin(username="admin", hashed_password=get_password_hash(ADMIN_PASSWORD))
    db_session.add(admin)
    await db_session.commit()
    return admin


@pytest_asyncio.fixture(scope="function")
async def client(session_maker, clock) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and clock overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(subject: uuid.UUID, role: str) -> dict[str, str]:
    token = create_access_token(subject=str(subject), role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers(student) -> dict[str, str]:
    return auth_headers(student.id, ROLE_STUDENT)


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return auth_headers(admin.id, ROLE_ADMIN)
