"""
CBT Exam Engine - Authentication Service
Login for students (admission number + password) and administrators
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import utc_now
from cbt.core.config import settings
from cbt.core.security import (
    ROLE_ADMIN,
    ROLE_STUDENT,
    create_access_token,
    get_password_hash,
    verify_password,
)
from cbt.models.catalog import Exam
from cbt.models.student import Admin, Student
from cbt.schemas.admin import StudentCreate
from cbt.schemas.auth import TokenResponse
from cbt.services.audit_log import AuditAction, AuditLogger, AuditStatus

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Base authentication error."""
    pass


class StudentNotRegisteredError(AuthenticationError):
    """No student with that admission number."""
    pass


class InvalidCredentialsError(AuthenticationError):
    """Wrong password or unknown admin."""
    pass


class AccountDisabledError(AuthenticationError):
    pass


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditLogger(db)

    def _token(self, subject: uuid.UUID, role: str) -> TokenResponse:
        return TokenResponse(
            access_token=create_access_token(subject=str(subject), role=role),
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    async def register_student(self, student_data: StudentCreate) -> Student:
        """
        Register a new student.

        Raises:
            ValueError: If the admission number already exists
        """
        existing = await self.get_student_by_admission_number(student_data.admission_number)
        if existing:
            raise ValueError("Admission number already registered")

        student = Student(
            admission_number=student_data.admission_number,
            hashed_password=get_password_hash(student_data.password),
            first_name=student_data.first_name,
            middle_name=student_data.middle_name,
            last_name=student_data.last_name,
            class_level=student_data.class_level,
        )
        self.db.add(student)
        await self.db.flush()
        return student

    async def list_students(self, class_level: str | None = None) -> list[Student]:
        query = select(Student).order_by(Student.class_level, Student.admission_number)
        if class_level:
            query = query.where(Student.class_level == class_level.strip().upper())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def authenticate_student(self, admission_number: str, password: str) -> Student:
        """
        Authenticate a student.

        Raises:
            StudentNotRegisteredError: If the admission number is unknown
            InvalidCredentialsError: If the password is wrong
            AccountDisabledError: If the student was deactivated
        """
        admission_number = admission_number.strip().upper()
        student = await self.get_student_by_admission_number(admission_number)

        if not student:
            logger.info("Login failed, unknown student %s", admission_number)
            await self.audit.log_student(
                AuditAction.STUDENT_LOGIN_FAILED, admission_number,
                "Invalid admission number", AuditStatus.FAILURE,
            )
            raise StudentNotRegisteredError("Student not found")

        if not verify_password(password, student.hashed_password):
            logger.info("Login failed, bad password for %s", admission_number)
            await self.audit.log_student(
                AuditAction.STUDENT_LOGIN_FAILED, admission_number,
                "Invalid password", AuditStatus.FAILURE,
            )
            raise InvalidCredentialsError("Invalid password")

        if not student.is_active:
            raise AccountDisabledError("Account is deactivated")

        student.last_login = utc_now()
        await self.audit.log_student(
            AuditAction.STUDENT_LOGIN, admission_number,
            f"Login successful: {student.full_name}",
            class_level=student.class_level,
        )
        await self.db.flush()
        return student

    async def active_exams_for(self, student: Student) -> list[Exam]:
        """Exams currently open to the student's class."""
        result = await self.db.execute(
            select(Exam)
            .where(Exam.class_level == student.class_level, Exam.is_active.is_(True))
            .order_by(Exam.subject)
        )
        return list(result.scalars().all())

    def create_student_token(self, student: Student) -> TokenResponse:
        return self._token(student.id, ROLE_STUDENT)

    async def authenticate_admin(self, username: str, password: str) -> Admin:
        """
        Authenticate an administrator.

        Raises:
            InvalidCredentialsError: If credentials are invalid
        """
        result = await self.db.execute(select(Admin).where(Admin.username == username))
        admin = result.scalar_one_or_none()

        if not admin or not admin.is_active or not verify_password(password, admin.hashed_password):
            await self.audit.log_admin(
                AuditAction.ADMIN_LOGIN_FAILED, username,
                "Invalid admin credentials", AuditStatus.FAILURE,
            )
            raise InvalidCredentialsError("Invalid username or password")

        admin.last_login = utc_now()
        await self.audit.log_admin(AuditAction.ADMIN_LOGIN, username, "Admin login")
        await self.db.flush()
        return admin

    def create_admin_token(self, admin: Admin) -> TokenResponse:
        return self._token(admin.id, ROLE_ADMIN)

    async def create_admin(self, username: str, password: str) -> Admin:
        """
        Create an administrator account.

        Raises:
            ValueError: If the username is taken
        """
        existing = await self.db.execute(select(Admin).where(Admin.username == username))
        if existing.scalar_one_or_none():
            raise ValueError("Username already registered")

        admin = Admin(username=username, hashed_password=get_password_hash(password))
        self.db.add(admin)
        await self.db.flush()
        return admin

    async def get_student_by_admission_number(self, admission_number: str) -> Student | None:
        result = await self.db.execute(
            select(Student).where(Student.admission_number == admission_number)
        )
        return result.scalar_one_or_none()

    async def get_student_by_id(self, student_id: str | uuid.UUID) -> Student | None:
        """Get student by ID."""
        if isinstance(student_id, str):
            student_id = uuid.UUID(student_id)
        return await self.db.get(Student, student_id)

    async def get_admin_by_id(self, admin_id: str | uuid.UUID) -> Admin | None:
        if isinstance(admin_id, str):
            admin_id = uuid.UUID(admin_id)
        return await self.db.get(Admin, admin_id)
