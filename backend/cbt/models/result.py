"""
CBT Exam Engine - Result Models
Final score records written once per finalized exam session
"""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cbt.core.database import Base

if TYPE_CHECKING:
    from cbt.models.student import Student


class ExamResult(Base):
    """Scored outcome of one student's exam for one subject."""

    __tablename__ = "exam_results"
    __table_args__ = (
        UniqueConstraint("student_id", "subject", name="uq_exam_results_student_subject"),
        CheckConstraint(
            "score >= 0 AND score <= total_questions",
            name="ck_exam_results_score_bound",
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
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("exam_sessions.id", ondelete="SET NULL"),
        nullable=True
    )
    subject: Mapped[str] = mapped_column(String(100), index=True)
    class_level: Mapped[str] = mapped_column(String(20), index=True)

    # Score details
    score: Mapped[int] = mapped_column(Integer)
    total_questions: Mapped[int] = mapped_column(Integer)
    percentage: Mapped[float] = mapped_column(Float)  # 0.0 to 100.0

    # "manual" or "timeout"
    reason: Mapped[str] = mapped_column(String(20))
    auto_submitted: Mapped[bool] = mapped_column(default=False)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Relationships
    student: Mapped["Student"] = relationship("Student", back_populates="results")
