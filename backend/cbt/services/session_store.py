"""
CBT Exam Engine - Session Store
Persistence for exam sessions. Every mutation is a conditional statement so
that per-key ordering is decided by the database, not by in-process locks.
"""
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.models.exam_session import ExamSession, SessionStatus


class SessionStore:
    """Read, create-if-absent, and conditional update of exam session rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, student_id: uuid.UUID, subject: str) -> ExamSession | None:
        """Fresh read of the session for a key, bypassing the identity map."""
        result = await self.db.execute(
            select(ExamSession)
            .where(ExamSession.student_id == student_id, ExamSession.subject == subject)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(ExamSession)
        if dialect == "sqlite":
            return sqlite_insert(ExamSession)
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")

    async def create_if_absent(
        self,
        student_id: uuid.UUID,
        subject: str,
        exam_id: int,
        class_level: str,
        started_at: datetime,
        duration_minutes: int,
    ) -> tuple[ExamSession, bool]:
        """
        Insert a new in-progress session unless one already exists for the key.

        Returns the stored session and whether this call created it. When two
        callers race, the unique key lets exactly one insert through; the
        other reads back the winner's row.
        """
        new_id = uuid.uuid4()
        stmt = self._insert().values(
            id=new_id,
            student_id=student_id,
            subject=subject,
            exam_id=exam_id,
            class_level=class_level,
            started_at=started_at,
            duration_minutes=duration_minutes,
            deadline_at=started_at + timedelta(minutes=duration_minutes),
            answers={},
            status=SessionStatus.IN_PROGRESS.value,
            version=1,
        ).on_conflict_do_nothing(index_elements=["student_id", "subject"])
        await self.db.execute(stmt)

        session = await self.get(student_id, subject)
        if session is None:
            raise RuntimeError(f"Session for {student_id}/{subject} vanished after insert")
        return session, session.id == new_id

    async def update_answers(
        self,
        session: ExamSession,
        answers: dict[str, str],
        saved_at: datetime,
    ) -> bool:
        """
        Replace the stored answers if nobody wrote since ``session`` was read.

        Returns False when the version moved or the session left in_progress.
        """
        result = await self.db.execute(
            update(ExamSession)
            .where(
                ExamSession.id == session.id,
                ExamSession.version == session.version,
                ExamSession.status == SessionStatus.IN_PROGRESS.value,
            )
            .values(
                answers=answers,
                last_saved_at=saved_at,
                version=ExamSession.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_finalized(
        self,
        session: ExamSession,
        answers: dict[str, str],
        status: SessionStatus,
        score: int,
        total: int,
        finalized_at: datetime,
        reason: str,
    ) -> bool:
        """
        Move an in-progress session to a terminal state.

        This is the race arbiter for finalization: of two concurrent callers
        only one sees a row count of one.
        """
        result = await self.db.execute(
            update(ExamSession)
            .where(
                ExamSession.id == session.id,
                ExamSession.version == session.version,
                ExamSession.status == SessionStatus.IN_PROGRESS.value,
            )
            .values(
                answers=answers,
                last_saved_at=finalized_at,
                status=status.value,
                score=score,
                total_questions=total,
                finalized_at=finalized_at,
                finalize_reason=reason,
                version=ExamSession.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_overdue(self, now: datetime) -> list[ExamSession]:
        """In-progress sessions whose deadline has passed but were never finalized."""
        result = await self.db.execute(
            select(ExamSession)
            .where(
                ExamSession.status == SessionStatus.IN_PROGRESS.value,
                ExamSession.deadline_at <= now,
            )
            .order_by(ExamSession.deadline_at)
        )
        return list(result.scalars().all())
