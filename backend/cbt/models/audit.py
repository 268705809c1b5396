"""
CBT Exam Engine - Audit Log Model
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from cbt.core.clock import utc_now
from cbt.core.database import Base


class AuditLog(Base):
    """Append-only record of authentication and exam lifecycle events."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(50), index=True)
    user_type: Mapped[str] = mapped_column(String(20))  # "student" | "admin"
    user_identifier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")  # success | failure | warning
    event_data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        index=True
    )
