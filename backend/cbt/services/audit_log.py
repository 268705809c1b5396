"""
CBT Exam Engine - Audit Logger
Records authentication and exam lifecycle events.
Never stores passwords or raw answer payloads.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import utc_now
from cbt.models.audit import AuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Audit log actions."""
    # Student actions
    STUDENT_LOGIN = "STUDENT_LOGIN"
    STUDENT_LOGIN_FAILED = "STUDENT_LOGIN_FAILED"
    EXAM_STARTED = "EXAM_STARTED"
    EXAM_RESUMED = "EXAM_RESUMED"
    EXAM_SUBMITTED = "EXAM_SUBMITTED"
    EXAM_AUTO_SUBMITTED = "EXAM_AUTO_SUBMITTED"
    EXAM_SUBMISSION_FAILED = "EXAM_SUBMISSION_FAILED"

    # Admin actions
    ADMIN_LOGIN = "ADMIN_LOGIN"
    ADMIN_LOGIN_FAILED = "ADMIN_LOGIN_FAILED"
    STUDENT_CREATED = "STUDENT_CREATED"
    EXAM_CREATED = "EXAM_CREATED"
    EXAM_UPDATED = "EXAM_UPDATED"
    QUESTIONS_UPLOADED = "QUESTIONS_UPLOADED"
    EXAM_SCORED_FROM_PROGRESS = "EXAM_SCORED_FROM_PROGRESS"
    RESULTS_EXPORTED = "RESULTS_EXPORTED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    TERM_ARCHIVED = "TERM_ARCHIVED"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"


@dataclass
class AuditEvent:
    """Audit event data structure."""
    action: AuditAction
    user_type: str
    user_identifier: Optional[str]
    details: str = ""
    status: AuditStatus = AuditStatus.SUCCESS
    event_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utc_now()


class AuditLogger:
    """
    Append-only audit logger.

    Entries are added to the caller's session and committed with the
    caller's transaction, so an audit row exists exactly when the change it
    describes was committed.
    """

    # Keys that must never reach the audit table
    REDACTED_FIELDS = {"password", "hashed_password", "answers", "token", "access_token"}

    def __init__(self, db: AsyncSession):
        self.db = db

    def _sanitize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if key in self.REDACTED_FIELDS:
                continue
            if key == "error":
                sanitized["error"] = str(value)[:200] if value else None
            elif value is None or isinstance(value, (str, int, float, bool)):
                sanitized[key] = value
            elif isinstance(value, list) and all(isinstance(x, (str, int)) for x in value):
                sanitized[key] = value
            else:
                sanitized[key] = str(value)
        return sanitized

    async def log(self, event: AuditEvent) -> AuditLog:
        """Add an audit entry to the current transaction."""
        entry = AuditLog(
            action=event.action.value,
            user_type=event.user_type,
            user_identifier=event.user_identifier,
            details=event.details,
            status=event.status.value,
            event_data=self._sanitize(event.event_data),
            created_at=event.timestamp,
        )
        self.db.add(entry)
        logger.info(
            "audit %s %s=%s status=%s",
            event.action.value, event.user_type, event.user_identifier, event.status.value,
        )
        return entry

    # Convenience methods for common events

    async def log_student(
        self,
        action: AuditAction,
        admission_number: str,
        details: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        **event_data: Any,
    ) -> AuditLog:
        return await self.log(AuditEvent(
            action=action,
            user_type="student",
            user_identifier=admission_number,
            details=details,
            status=status,
            event_data=event_data,
        ))

    async def log_admin(
        self,
        action: AuditAction,
        username: str,
        details: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        **event_data: Any,
    ) -> AuditLog:
        return await self.log(AuditEvent(
            action=action,
            user_type="admin",
            user_identifier=username,
            details=details,
            status=status,
            event_data=event_data,
        ))
