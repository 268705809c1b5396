"""
CBT Exam Engine - System Settings Model
Single-row table of school-wide settings editable at runtime
"""
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cbt.core.clock import utc_now
from cbt.core.database import Base

SETTINGS_ROW_ID = 1


class SystemSettings(Base):
    """School-wide settings; there is at most one row, with id 1."""

    __tablename__ = "system_settings"
    __table_args__ = (
        CheckConstraint("id = 1", name="ck_system_settings_single_row"),
        CheckConstraint(
            "default_exam_duration_minutes > 0",
            name="ck_system_settings_duration_positive",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    school_name: Mapped[str] = mapped_column(String(200))
    academic_session: Mapped[str] = mapped_column(String(20))
    current_term: Mapped[str] = mapped_column(String(50))
    default_exam_duration_minutes: Mapped[int] = mapped_column(Integer)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now
    )
