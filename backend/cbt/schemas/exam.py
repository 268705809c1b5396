"""
CBT Exam Engine - Exam Session Schemas
Pydantic schemas for entering, autosaving and submitting a timed exam
"""
import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from cbt.models.catalog import OPTION_LETTERS

Subject = Annotated[str, Field(min_length=1, max_length=100)]


def normalize_answer_map(answers: dict[str, str] | None) -> dict[str, str] | None:
    """Trim and upper-case option letters; reject anything outside A-D."""
    if answers is None:
        return None
    normalized = {}
    for question_id, letter in answers.items():
        key = str(question_id).strip()
        value = str(letter).strip().upper()
        if value not in OPTION_LETTERS:
            raise ValueError(f"Answer for question {key} must be one of {', '.join(OPTION_LETTERS)}")
        normalized[key] = value
    return normalized


class ExamSessionRequest(BaseModel):
    """Identifies a session by its key (student, subject)."""
    student_id: uuid.UUID
    subject: Subject

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v: str) -> str:
        return v.strip()


class EnterExamRequest(ExamSessionRequest):
    """Request to start or resume an exam."""
    pass


class ExamQuestion(BaseModel):
    """A question as shown to the student (no answer key)."""
    id: int
    text: str
    options: dict[str, str]
    image_url: str | None = None


class EnterExamResponse(BaseModel):
    """Questions plus timing and any previously autosaved answers."""
    session_id: uuid.UUID
    subject: str
    duration_minutes: int
    total_questions: int
    questions: list[ExamQuestion]
    time_remaining_seconds: int
    saved_answers: dict[str, str]
    started_at: datetime
    deadline_at: datetime
    resumed: bool


class AutosaveRequest(ExamSessionRequest):
    """Partial answers snapshot; merged into the stored answers."""
    answers: dict[str, str] = Field(default_factory=dict)

    @field_validator("answers")
    @classmethod
    def validate_answers(cls, v: dict[str, str]) -> dict[str, str]:
        return normalize_answer_map(v)


class AutosaveResponse(BaseModel):
    saved_at: datetime
    answers_count: int
    time_remaining_seconds: int


class SubmitRequest(ExamSessionRequest):
    """Final submission; ``reason=timeout`` is sent when the client timer hits zero."""
    answers: dict[str, str] | None = None
    reason: Literal["manual", "timeout"] = "manual"

    @field_validator("answers")
    @classmethod
    def validate_answers(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        return normalize_answer_map(v)


class SubmitResponse(BaseModel):
    """Score recorded for the session."""
    score: int
    total: int
    percentage: float
    status: Literal["submitted", "expired"]
    reason: Literal["manual", "timeout"]
    finalized_at: datetime
