"""CBT Exam Engine - Models initialization."""
from cbt.models.student import Student, Admin
from cbt.models.catalog import Exam, Question, OPTION_LETTERS
from cbt.models.exam_session import ExamSession, SessionStatus, FinalizeReason
from cbt.models.result import ExamResult
from cbt.models.audit import AuditLog
from cbt.models.system_settings import SystemSettings


__all__ = [
    # Identity models
    "Student",
    "Admin",
    # Catalog models
    "Exam",
    "Question",
    "OPTION_LETTERS",
    # Session & result models
    "ExamSession",
    "SessionStatus",
    "FinalizeReason",
    "ExamResult",
    # Audit & settings
    "AuditLog",
    "SystemSettings",
]
