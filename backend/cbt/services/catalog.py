"""
CBT Exam Engine - Catalog Service
Exam definitions and their question sets, keyed by (subject, class level)
"""
import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cbt.models.catalog import Exam, Question
from cbt.schemas.admin import ExamCreate, ExamUpdate, QuestionCreate
from cbt.services.system_settings import SystemSettingsService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """Snapshot of an exam definition as seen by the session engine."""
    exam_id: int
    subject: str
    class_level: str
    duration_minutes: int
    is_active: bool
    questions: tuple[Question, ...]


class CatalogService:
    """Read access for the session engine plus minimal admin mutations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, subject: str, class_level: str) -> CatalogEntry | None:
        """
        Find the exam for (subject, class_level), active or not.

        Questions are returned in stored order (by id).
        """
        result = await self.db.execute(
            select(Exam)
            .where(Exam.subject == subject, Exam.class_level == class_level)
            .options(selectinload(Exam.questions))
        )
        exam = result.scalar_one_or_none()
        if exam is None:
            return None
        return self._entry(exam)

    async def questions_for(self, exam_id: int) -> list[Question]:
        """Questions of an exam in stored order, regardless of whether it is active."""
        result = await self.db.execute(
            select(Question).where(Question.exam_id == exam_id).order_by(Question.id)
        )
        return list(result.scalars().all())

    def _entry(self, exam: Exam) -> CatalogEntry:
        return CatalogEntry(
            exam_id=exam.id,
            subject=exam.subject,
            class_level=exam.class_level,
            duration_minutes=exam.duration_minutes,
            is_active=exam.is_active,
            questions=tuple(sorted(exam.questions, key=lambda q: q.id)),
        )

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def create_exam(self, exam_data: ExamCreate) -> Exam:
        """
        Create an exam definition.

        Raises:
            ValueError: If an exam already exists for the subject and class
        """
        existing = await self.db.execute(
            select(Exam).where(
                Exam.subject == exam_data.subject,
                Exam.class_level == exam_data.class_level,
            )
        )
        if existing.scalar_one_or_none():
            raise ValueError(
                f"Exam for {exam_data.subject} ({exam_data.class_level}) already exists"
            )

        duration = exam_data.duration_minutes
        if duration is None:
            runtime = await SystemSettingsService(self.db).current()
            duration = runtime.default_exam_duration_minutes

        exam = Exam(
            subject=exam_data.subject,
            class_level=exam_data.class_level,
            duration_minutes=duration,
            is_active=exam_data.is_active,
        )
        self.db.add(exam)
        await self.db.flush()
        logger.info("Created exam %s (%s)", exam.subject, exam.class_level)
        return exam

    async def get_exam(self, exam_id: int) -> Exam | None:
        return await self.db.get(Exam, exam_id)

    async def update_exam(self, exam: Exam, changes: ExamUpdate) -> Exam:
        """
        Change duration or activity.

        Sessions already created keep their own deadline_at, so a new duration
        only affects sessions started afterwards.
        """
        if changes.duration_minutes is not None:
            exam.duration_minutes = changes.duration_minutes
        if changes.is_active is not None:
            exam.is_active = changes.is_active
        await self.db.flush()
        return exam

    async def add_questions(self, exam: Exam, questions: list[QuestionCreate]) -> list[Question]:
        created = [
            Question(exam_id=exam.id, **question.model_dump())
            for question in questions
        ]
        self.db.add_all(created)
        await self.db.flush()
        logger.info("Added %d questions to exam %s", len(created), exam.id)
        return created

    async def list_exams(self) -> list[tuple[Exam, int]]:
        """All exams with their question counts."""
        question_count = (
            select(Question.exam_id, func.count(Question.id).label("n"))
            .group_by(Question.exam_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Exam, func.coalesce(question_count.c.n, 0))
            .outerjoin(question_count, question_count.c.exam_id == Exam.id)
            .order_by(Exam.class_level, Exam.subject)
        )
        return [(exam, count) for exam, count in result.all()]

    async def question_count(self, exam_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Question.id)).where(Question.exam_id == exam_id)
        )
        return result.scalar_one()
