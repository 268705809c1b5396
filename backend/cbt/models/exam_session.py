"""
CBT Exam Engine - Exam Session Model
One row per (student, subject) attempt; the unit of state for timed exams
"""
import math
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cbt.core.clock import as_utc
from cbt.core.database import Base

if TYPE_CHECKING:
    from cbt.models.student import Student


class SessionStatus(str, Enum):
    """Lifecycle states; SUBMITTED and EXPIRED are terminal."""
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


class FinalizeReason(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"


class ExamSession(Base):
    """A student's single attempt at the exam for one subject."""

    __tablename__ = "exam_sessions"
    __table_args__ = (
        UniqueConstraint("student_id", "subject", name="uq_exam_sessions_key"),
        CheckConstraint(
            "score IS NULL OR (score >= 0 AND score <= total_questions)",
            name="ck_exam_sessions_score_bound",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("students.id", ondelete="CASCADE"),
        index=True
    )
    subject: Mapped[str] = mapped_column(String(100))
    exam_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("exams.id", ondelete="CASCADE"),
        index=True
    )
    class_level: Mapped[str] = mapped_column(String(20))

    # Timing - fixed at creation
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[int] = mapped_column(Integer)
    deadline_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    # Answer buffer: { "question_id": "A" }
    answers: Mapped[dict] = mapped_column(JSON, default=dict)
    last_saved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=SessionStatus.IN_PROGRESS.value,
        index=True
    )
    # Bumped on every write; conditional updates compare against it
    version: Mapped[int] = mapped_column(Integer, default=1)

    # Populated only at finalization
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_questions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalize_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    student: Mapped["Student"] = relationship("Student", back_populates="sessions")

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.IN_PROGRESS.value

    @property
    def deadline_utc(self) -> datetime:
        return as_utc(self.deadline_at)

    def is_overdue(self, now: datetime) -> bool:
        """True once the server-side deadline has been reached."""
        return now >= self.deadline_utc

    def seconds_remaining(self, now: datetime) -> int:
        """Whole seconds left, rounded up so a live session never reports 0."""
        remaining = (self.deadline_utc - now).total_seconds()
        return max(0, math.ceil(remaining))
