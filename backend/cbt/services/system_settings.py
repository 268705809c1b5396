"""
CBT Exam Engine - System Settings Service
Runtime school settings; environment values apply until an admin saves a change
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.config import settings
from cbt.models.system_settings import SETTINGS_ROW_ID, SystemSettings
from cbt.schemas.admin import SystemSettingsUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSettings:
    school_name: str
    academic_session: str
    current_term: str
    default_exam_duration_minutes: int
    shuffle_questions: bool
    updated_at: datetime | None = None


def _defaults() -> dict:
    return {
        "school_name": settings.SCHOOL_NAME,
        "academic_session": settings.ACADEMIC_SESSION,
        "current_term": settings.CURRENT_TERM,
        "default_exam_duration_minutes": settings.DEFAULT_EXAM_DURATION_MINUTES,
        "shuffle_questions": settings.SHUFFLE_QUESTIONS,
    }


class SystemSettingsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def current(self) -> RuntimeSettings:
        """Stored settings, or the environment defaults when none were saved yet."""
        row = await self.db.get(SystemSettings, SETTINGS_ROW_ID)
        if row is None:
            return RuntimeSettings(**_defaults())
        return self._snapshot(row)

    async def update(self, changes: SystemSettingsUpdate) -> RuntimeSettings:
        """
        Apply the given fields and keep the rest.

        The row is created from the environment defaults on first save.
        """
        row = await self.db.get(SystemSettings, SETTINGS_ROW_ID)
        if row is None:
            row = SystemSettings(id=SETTINGS_ROW_ID, **_defaults())
            self.db.add(row)

        updates = changes.model_dump(exclude_unset=True, exclude_none=True)
        for key, value in updates.items():
            setattr(row, key, value)
        await self.db.flush()
        await self.db.refresh(row)

        logger.info("System settings updated: %s", ", ".join(sorted(updates)) or "none")
        return self._snapshot(row)

    @staticmethod
    def _snapshot(row: SystemSettings) -> RuntimeSettings:
        return RuntimeSettings(
            school_name=row.school_name,
            academic_session=row.academic_session,
            current_term=row.current_term,
            default_exam_duration_minutes=row.default_exam_duration_minutes,
            shuffle_questions=row.shuffle_questions,
            updated_at=row.updated_at,
        )
