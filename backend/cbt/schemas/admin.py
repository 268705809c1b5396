"""
CBT Exam Engine - Admin Schemas
Pydantic schemas for catalog management, monitoring and results
"""
import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cbt.models.catalog import OPTION_LETTERS


# ============================================================================
# Students
# ============================================================================

class StudentCreate(BaseModel):
    admission_number: Annotated[str, Field(min_length=1, max_length=50)]
    password: Annotated[str, Field(min_length=4, max_length=128)]
    first_name: Annotated[str, Field(min_length=1, max_length=100)]
    middle_name: str | None = None
    last_name: Annotated[str, Field(min_length=1, max_length=100)]
    class_level: Annotated[str, Field(min_length=1, max_length=20)]

    @field_validator("admission_number", "class_level")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class StudentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    admission_number: str
    full_name: str
    class_level: str
    is_active: bool


# ============================================================================
# Exams & questions
# ============================================================================

class QuestionCreate(BaseModel):
    text: Annotated[str, Field(min_length=1)]
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    image_url: str | None = None

    @field_validator("correct_answer")
    @classmethod
    def validate_correct_answer(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in OPTION_LETTERS:
            raise ValueError("correct_answer must be one of A, B, C, D")
        return v


class QuestionsUpload(BaseModel):
    questions: list[QuestionCreate] = Field(..., min_length=1)


class ExamCreate(BaseModel):
    subject: Annotated[str, Field(min_length=1, max_length=100)]
    class_level: Annotated[str, Field(min_length=1, max_length=20)]
    duration_minutes: Annotated[int, Field(ge=1, le=600)] | None = None
    is_active: bool = False

    @field_validator("class_level")
    @classmethod
    def normalize_class(cls, v: str) -> str:
        return v.strip().upper()


class ExamUpdate(BaseModel):
    """Duration changes never touch sessions already in flight."""
    duration_minutes: Annotated[int, Field(ge=1, le=600)] | None = None
    is_active: bool | None = None


class ExamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: str
    class_level: str
    duration_minutes: int
    is_active: bool
    question_count: int


# ============================================================================
# Monitoring & results
# ============================================================================

class MonitoringRow(BaseModel):
    """Live participation for one active exam."""
    exam_id: int
    subject: str
    class_level: str
    duration_minutes: int
    registered_students: int
    in_progress: int
    overdue: int
    submitted: int
    expired: int


class SessionKeyRequest(BaseModel):
    student_id: uuid.UUID
    subject: Annotated[str, Field(min_length=1, max_length=100)]


class ExpireOverdueResponse(BaseModel):
    finalized: int
    failed: int = 0


class ResultResponse(BaseModel):

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    subject: str
    class_level: str
    score: int
    total_questions: int
    percentage: float
    reason: Literal["manual", "timeout"]
    auto_submitted: bool
    submitted_at: datetime


class ResultDetail(ResultResponse):
    """One result with the student's identity and report grade."""
    admission_number: str
    full_name: str
    whole_percentage: int
    obj_score: int
    obj_score_max: int
    grade: str
    remark: str


# ============================================================================
# System settings & archive
# ============================================================================

class SystemSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    school_name: str
    academic_session: str
    current_term: str
    default_exam_duration_minutes: int
    shuffle_questions: bool
    updated_at: datetime | None = None


class SystemSettingsUpdate(BaseModel):
    """Omitted fields keep their current value."""
    school_name: Annotated[str, Field(min_length=1, max_length=200)] | None = None
    academic_session: Annotated[str, Field(min_length=1, max_length=20)] | None = None
    current_term: Annotated[str, Field(min_length=1, max_length=50)] | None = None
    default_exam_duration_minutes: Annotated[int, Field(ge=1, le=600)] | None = None
    shuffle_questions: bool | None = None


class ArchiveRequest(BaseModel):
    term_name: Annotated[str, Field(min_length=1, max_length=100)]


class ArchiveResponse(BaseModel):
    term_name: str
    path: str
    students: int
    exams: int
    questions: int
    results: int
    files: list[str]
