"""
CBT Exam Engine - Monitoring Service
Live participation counts for active exams
"""
from collections import Counter

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import Clock, utc_now
from cbt.models.catalog import Exam
from cbt.models.exam_session import ExamSession, SessionStatus
from cbt.models.student import Student
from cbt.schemas.admin import MonitoringRow


class MonitoringService:
    """
    Participation per active exam.

    A session still marked in_progress after its deadline is counted as
    overdue, not in progress: the stored status is only updated at the next
    call for that session.
    """

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    async def active_exam_sessions(self) -> list[MonitoringRow]:
        now = self.clock()

        exams = (await self.db.execute(
            select(Exam).where(Exam.is_active.is_(True)).order_by(Exam.class_level, Exam.subject)
        )).scalars().all()

        registered = dict((await self.db.execute(
            select(Student.class_level, func.count(Student.id))
            .where(Student.is_active.is_(True))
            .group_by(Student.class_level)
        )).all())

        rows = []
        for exam in exams:
            sessions = (await self.db.execute(
                select(ExamSession).where(ExamSession.exam_id == exam.id)
            )).scalars().all()

            counts: Counter[str] = Counter()
            for session in sessions:
                if session.status == SessionStatus.IN_PROGRESS.value:
                    counts["overdue" if session.is_overdue(now) else "in_progress"] += 1
                else:
                    counts[session.status] += 1

            rows.append(MonitoringRow(
                exam_id=exam.id,
                subject=exam.subject,
                class_level=exam.class_level,
                duration_minutes=exam.duration_minutes,
                registered_students=registered.get(exam.class_level, 0),
                in_progress=counts["in_progress"],
                overdue=counts["overdue"],
                submitted=counts[SessionStatus.SUBMITTED.value],
                expired=counts[SessionStatus.EXPIRED.value],
            ))
        return rows
