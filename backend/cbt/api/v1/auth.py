"""
CBT Exam Engine - Authentication API Routes
Login endpoints for students and administrators
"""
from fastapi import APIRouter, HTTPException, status

from cbt.api.deps import CurrentStudent, DbSession
from cbt.schemas.auth import (
    ActiveExam,
    AdminLogin,
    StudentLogin,
    StudentLoginResponse,
    StudentProfile,
    TokenResponse,
)
from cbt.services.auth import (
    AccountDisabledError,
    AuthService,
    InvalidCredentialsError,
    StudentNotRegisteredError,
)

router = APIRouter(tags=["Authentication"])


@router.post(
    "/students/login",
    response_model=StudentLoginResponse,
    summary="Student login",
    description="Login with admission number and password. Returns a token and the exams open to the student's class.",
)
async def student_login(
    credentials: StudentLogin,
    db: DbSession,
) -> StudentLoginResponse:
    """Authenticate a student and list their active exams."""
    auth_service = AuthService(db)

    try:
        student = await auth_service.authenticate_student(
            admission_number=credentials.admission_number,
            password=credentials.password,
        )
    except StudentNotRegisteredError as e:
        # Keep the failed-login audit entry
        await db.commit()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidCredentialsError as e:
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except AccountDisabledError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    exams = await auth_service.active_exams_for(student)
    token = auth_service.create_student_token(student)
    return StudentLoginResponse(
        **token.model_dump(),
        student=StudentProfile.model_validate(student),
        active_exams=[ActiveExam.model_validate(exam) for exam in exams],
    )


@router.get(
    "/students/me",
    response_model=StudentProfile,
    summary="Get current student",
)
async def get_current_student_profile(
    current_student: CurrentStudent,
) -> StudentProfile:
    """Get current student profile."""
    return StudentProfile.model_validate(current_student)


@router.post(
    "/admin/login",
    response_model=TokenResponse,
    summary="Admin login",
)
async def admin_login(
    credentials: AdminLogin,
    db: DbSession,
) -> TokenResponse:
    """Authenticate an administrator."""
    auth_service = AuthService(db)

    try:
        admin = await auth_service.authenticate_admin(credentials.username, credentials.password)
    except InvalidCredentialsError as e:
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    return auth_service.create_admin_token(admin)
