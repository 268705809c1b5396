"""
CBT Exam Engine - Result Store
Persists final scores for reporting and export
"""
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from cbt.models.result import ExamResult
from cbt.models.student import Student


class ScoreOutOfRangeError(ValueError):
    """A score outside 0..total reached the result store."""
    pass


class ResultSink:
    """Write-once result records; scoring itself happens in the session engine."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        student_id: uuid.UUID,
        subject: str,
        score: int,
        total: int,
        timestamp: datetime,
        *,
        class_level: str,
        reason: str,
        session_id: uuid.UUID | None = None,
    ) -> ExamResult:
        """
        Add a result row to the current transaction.

        Raises:
            ScoreOutOfRangeError: If score is not within 0..total
        """
        if not 0 <= score <= total:
            raise ScoreOutOfRangeError(f"Score {score} outside 0..{total}")

        result = ExamResult(
            student_id=student_id,
            session_id=session_id,
            subject=subject,
            class_level=class_level,
            score=score,
            total_questions=total,
            percentage=round(score / total * 100, 1) if total else 0.0,
            reason=reason,
            auto_submitted=reason == "timeout",
            submitted_at=timestamp,
        )
        self.db.add(result)
        await self.db.flush()
        return result

    async def get_with_student(self, result_id: uuid.UUID) -> ExamResult | None:
        result = await self.db.execute(
            select(ExamResult)
            .where(ExamResult.id == result_id)
            .options(joinedload(ExamResult.student))
        )
        return result.scalar_one_or_none()

    async def export_rows(
        self,
        subject: str | None = None,
        class_level: str | None = None,
    ) -> list[tuple[str, ExamResult]]:
        """(admission_number, result) pairs ordered by admission number then subject."""
        query = (
            select(Student.admission_number, ExamResult)
            .join(Student, ExamResult.student_id == Student.id)
            .order_by(Student.admission_number, ExamResult.subject)
        )
        if subject:
            query = query.where(ExamResult.subject == subject)
        if class_level:
            query = query.where(ExamResult.class_level == class_level.strip().upper())
        result = await self.db.execute(query)
        return [(admission_number, row) for admission_number, row in result.all()]

    async def list_results(
        self,
        subject: str | None = None,
        class_level: str | None = None,
    ) -> list[ExamResult]:
        query = select(ExamResult).order_by(ExamResult.submitted_at.desc())
        if subject:
            query = query.where(ExamResult.subject == subject)
        if class_level:
            query = query.where(ExamResult.class_level == class_level.strip().upper())
        result = await self.db.execute(query)
        return list(result.scalars().all())
