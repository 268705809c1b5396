"""
CBT Exam Engine - API Dependencies
FastAPI dependencies for authentication, clock and the session engine
"""
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import Clock, utc_now
from cbt.core.database import get_db
from cbt.core.security import ROLE_ADMIN, ROLE_STUDENT, verify_token
from cbt.models.student import Admin, Student
from cbt.services.auth import AuthService
from cbt.services.exam_session import ExamSessionEngine

# Security scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_clock() -> Clock:
    """Time source for deadline checks; overridden in tests."""
    return utc_now


async def get_current_student(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Student:
    """
    Get the logged-in student from the bearer token.

    Raises:
        HTTPException: If token is invalid or student not found
    """
    student_id = verify_token(credentials.credentials, role=ROLE_STUDENT)
    if not student_id:
        raise _unauthorized("Invalid or expired token")

    student = await AuthService(db).get_student_by_id(student_id)
    if not student:
        raise _unauthorized("Student not found")

    if not student.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return student


async def get_current_admin(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Admin:
    admin_id = verify_token(credentials.credentials, role=ROLE_ADMIN)
    if not admin_id:
        raise _unauthorized("Invalid or expired token")

    admin = await AuthService(db).get_admin_by_id(admin_id)
    if not admin or not admin.is_active:
        raise _unauthorized("Admin not found")

    return admin


async def get_exam_engine(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> ExamSessionEngine:
    return ExamSessionEngine(db, clock=clock)


# Type aliases for common dependencies
CurrentStudent = Annotated[Student, Depends(get_current_student)]
CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
ClockDep = Annotated[Clock, Depends(get_clock)]
ExamEngine = Annotated[ExamSessionEngine, Depends(get_exam_engine)]
