"""CBT Exam Engine - Services initialization."""
from cbt.services.auth import (
    AuthService,
    AuthenticationError,
    StudentNotRegisteredError,
    InvalidCredentialsError,
    AccountDisabledError,
)
from cbt.services.exam_session import (
    ExamSessionEngine,
    ExamSessionError,
    StudentNotFound,
    ExamNotAvailable,
    NoQuestions,
    SessionNotFound,
    SessionAlreadyClosed,
    ExpiredSession,
    ExamTimeExpired,
    AlreadySubmitted,
    InvalidAnswers,
    ScoringInvariantViolation,
    SessionConflict,
)

__all__ = [
    "AuthService",
    "AuthenticationError",
    "StudentNotRegisteredError",
    "InvalidCredentialsError",
    "AccountDisabledError",
    "ExamSessionEngine",
    "ExamSessionError",
    "StudentNotFound",
    "ExamNotAvailable",
    "NoQuestions",
    "SessionNotFound",
    "SessionAlreadyClosed",
    "ExpiredSession",
    "ExamTimeExpired",
    "AlreadySubmitted",
    "InvalidAnswers",
    "ScoringInvariantViolation",
    "SessionConflict",
]
