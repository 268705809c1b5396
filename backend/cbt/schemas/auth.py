"""
CBT Exam Engine - Authentication Schemas
Pydantic schemas for student and admin login
"""
import uuid
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StudentLogin(BaseModel):
    """Student login with admission number (exam code) and password."""
    admission_number: Annotated[str, Field(min_length=1, max_length=50)]
    password: Annotated[str, Field(min_length=1, max_length=128)]

    @field_validator("admission_number")
    @classmethod
    def normalize_admission_number(cls, v: str) -> str:
        return v.strip().upper()


class AdminLogin(BaseModel):
    username: Annotated[str, Field(min_length=1, max_length=100)]
    password: Annotated[str, Field(min_length=1, max_length=128)]


class TokenResponse(BaseModel):
    """Access token issued after login."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until access token expires


class StudentProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    admission_number: str
    full_name: str
    class_level: str


class ActiveExam(BaseModel):
    """An exam the student may enter right now."""
    model_config = ConfigDict(from_attributes=True)

    subject: str
    duration_minutes: int


class StudentLoginResponse(TokenResponse):
    student: StudentProfile
    active_exams: list[ActiveExam]
