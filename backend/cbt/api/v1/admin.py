"""
CBT Exam Engine - Admin API
Catalog management, live monitoring, results, system settings and term archives
"""
import csv
import io
import re
import uuid

from fastapi import APIRouter, HTTPException, Response, status

from cbt.api.deps import ClockDep, CurrentAdmin, DbSession, ExamEngine
from cbt.api.v1.exam import exam_http_error
from cbt.core.config import settings
from cbt.schemas.admin import (
    ArchiveRequest,
    ArchiveResponse,
    ExamCreate,
    ExamResponse,
    ExamUpdate,
    ExpireOverdueResponse,
    MonitoringRow,
    QuestionsUpload,
    ResultDetail,
    ResultResponse,
    SessionKeyRequest,
    StudentCreate,
    StudentResponse,
    SystemSettingsResponse,
    SystemSettingsUpdate,
)
from cbt.schemas.exam import SubmitResponse
from cbt.services.archive import ArchiveService
from cbt.services.audit_log import AuditAction, AuditLogger
from cbt.services.auth import AuthService
from cbt.services.catalog import CatalogService
from cbt.services.exam_session import ExamSessionError
from cbt.services.grading import letter_grade, obj_score, whole_percentage
from cbt.services.monitoring import MonitoringService
from cbt.services.results import ResultSink
from cbt.services.system_settings import SystemSettingsService

router = APIRouter(prefix="/admin", tags=["Admin"])


# ============================================================================
# Students
# ============================================================================

@router.post("/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    student_data: StudentCreate,
    admin: CurrentAdmin,
    db: DbSession,
):
    """Register a student for exams."""
    try:
        student = await AuthService(db).register_student(student_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditLogger(db).log_admin(
        AuditAction.STUDENT_CREATED, admin.username,
        f"Created student {student.admission_number}",
        class_level=student.class_level,
    )
    return StudentResponse.model_validate(student)


@router.get("/students", response_model=list[StudentResponse])
async def list_students(
    admin: CurrentAdmin,
    db: DbSession,
    class_level: str | None = None,
):
    students = await AuthService(db).list_students(class_level)
    return [StudentResponse.model_validate(s) for s in students]


# ============================================================================
# Exams
# ============================================================================

@router.post("/exams", response_model=ExamResponse, status_code=status.HTTP_201_CREATED)
async def create_exam(
    exam_data: ExamCreate,
    admin: CurrentAdmin,
    db: DbSession,
):
    try:
        exam = await CatalogService(db).create_exam(exam_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditLogger(db).log_admin(
        AuditAction.EXAM_CREATED, admin.username,
        f"Created exam {exam.subject} ({exam.class_level})",
        exam_id=exam.id,
    )
    return ExamResponse(
        id=exam.id,
        subject=exam.subject,
        class_level=exam.class_level,
        duration_minutes=exam.duration_minutes,
        is_active=exam.is_active,
        question_count=0,
    )


@router.get("/exams", response_model=list[ExamResponse])
async def list_exams(admin: CurrentAdmin, db: DbSession):
    exams = await CatalogService(db).list_exams()
    return [
        ExamResponse(
            id=exam.id,
            subject=exam.subject,
            class_level=exam.class_level,
            duration_minutes=exam.duration_minutes,
            is_active=exam.is_active,
            question_count=count,
        )
        for exam, count in exams
    ]


@router.patch("/exams/{exam_id}", response_model=ExamResponse)
async def update_exam(
    exam_id: int,
    changes: ExamUpdate,
    admin: CurrentAdmin,
    db: DbSession,
):
    """
    Change an exam's duration or activity.
    Running sessions keep the deadline computed when they started.
    """
    catalog = CatalogService(db)
    exam = await catalog.get_exam(exam_id)
    if not exam:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")

    exam = await catalog.update_exam(exam, changes)
    await AuditLogger(db).log_admin(
        AuditAction.EXAM_UPDATED, admin.username,
        f"Updated exam {exam.subject} ({exam.class_level})",
        exam_id=exam.id,
        duration_minutes=exam.duration_minutes,
        is_active=exam.is_active,
    )
    return ExamResponse(
        id=exam.id,
        subject=exam.subject,
        class_level=exam.class_level,
        duration_minutes=exam.duration_minutes,
        is_active=exam.is_active,
        question_count=await catalog.question_count(exam.id),
    )


@router.post("/exams/{exam_id}/questions", response_model=ExamResponse)
async def add_questions(
    exam_id: int,
    upload: QuestionsUpload,
    admin: CurrentAdmin,
    db: DbSession,
):
    catalog = CatalogService(db)
    exam = await catalog.get_exam(exam_id)
    if not exam:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")

    created = await catalog.add_questions(exam, upload.questions)
    await AuditLogger(db).log_admin(
        AuditAction.QUESTIONS_UPLOADED, admin.username,
        f"Uploaded {len(created)} questions to {exam.subject} ({exam.class_level})",
        exam_id=exam.id,
        count=len(created),
    )
    return ExamResponse(
        id=exam.id,
        subject=exam.subject,
        class_level=exam.class_level,
        duration_minutes=exam.duration_minutes,
        is_active=exam.is_active,
        question_count=await catalog.question_count(exam.id),
    )


# ============================================================================
# Monitoring & sessions
# ============================================================================

@router.get("/monitoring/sessions", response_model=list[MonitoringRow])
async def active_exam_sessions(admin: CurrentAdmin, db: DbSession, clock: ClockDep):
    """Registered vs. in-progress vs. finished students for every active exam."""
    return await MonitoringService(db, clock=clock).active_exam_sessions()


@router.post("/sessions/score-from-progress", response_model=SubmitResponse)
async def score_from_progress(
    request: SessionKeyRequest,
    admin: CurrentAdmin,
    engine: ExamEngine,
):
    """Score a student from their autosaved answers when the client never submitted."""
    username = admin.username
    try:
        result = await engine.score_from_progress(request.student_id, request.subject.strip(), username)
    except ExamSessionError as e:
        raise exam_http_error(e)

    return SubmitResponse(
        score=result.score,
        total=result.total,
        percentage=result.percentage,
        status=result.status.value,
        reason=result.reason.value,
        finalized_at=result.finalized_at,
    )


@router.post("/sessions/expire-overdue", response_model=ExpireOverdueResponse)
async def expire_overdue_sessions(admin: CurrentAdmin, engine: ExamEngine):
    """Close every session whose deadline passed without a submission."""
    try:
        sweep = await engine.expire_overdue()
    except ExamSessionError as e:
        raise exam_http_error(e)
    return ExpireOverdueResponse(finalized=sweep.finalized, failed=sweep.failed)


# ============================================================================
# Results
# ============================================================================

@router.get("/results", response_model=list[ResultResponse])
async def list_results(
    admin: CurrentAdmin,
    db: DbSession,
    subject: str | None = None,
    class_level: str | None = None,
):
    results = await ResultSink(db).list_results(subject=subject, class_level=class_level)
    return [ResultResponse.model_validate(r) for r in results]


@router.get("/results/export")
async def export_results(
    admin: CurrentAdmin,
    db: DbSession,
    subject: str | None = None,
    class_level: str | None = None,
):
    """
    CSV of objective scores for import into the school's records system.

    Columns: admission_number, subject, obj_score, total_questions.
    obj_score is the raw score scaled to OBJ_SCORE_MAX.
    """
    rows = await ResultSink(db).export_rows(subject=subject, class_level=class_level)
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No results found")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["admission_number", "subject", "obj_score", "total_questions"])
    for admission_number, result in rows:
        writer.writerow([
            admission_number,
            result.subject,
            obj_score(result.score, result.total_questions, settings.OBJ_SCORE_MAX),
            result.total_questions,
        ])

    parts = [(class_level or "").strip().upper(), (subject or "").strip()]
    filename = "_".join(re.sub(r"\s+", "_", p) for p in parts if p) or "all"
    await AuditLogger(db).log_admin(
        AuditAction.RESULTS_EXPORTED, admin.username,
        f"Exported {len(rows)} objective scores",
        subject=subject,
        class_level=class_level,
        count=len(rows),
    )
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}_obj_scores.csv"'},
    )


@router.get("/results/{result_id}", response_model=ResultDetail)
async def get_result(result_id: uuid.UUID, admin: CurrentAdmin, db: DbSession):
    result = await ResultSink(db).get_with_student(result_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Result not found")

    percentage = whole_percentage(result.score, result.total_questions)
    grade, remark = letter_grade(percentage)
    return ResultDetail(
        **ResultResponse.model_validate(result).model_dump(),
        admission_number=result.student.admission_number,
        full_name=result.student.full_name,
        whole_percentage=percentage,
        obj_score=obj_score(result.score, result.total_questions, settings.OBJ_SCORE_MAX),
        obj_score_max=settings.OBJ_SCORE_MAX,
        grade=grade,
        remark=remark,
    )


# ============================================================================
# System settings & archive
# ============================================================================

@router.get("/settings", response_model=SystemSettingsResponse)
async def get_system_settings(admin: CurrentAdmin, db: DbSession):
    runtime = await SystemSettingsService(db).current()
    return SystemSettingsResponse.model_validate(runtime)


@router.put("/settings", response_model=SystemSettingsResponse)
async def update_system_settings(
    changes: SystemSettingsUpdate,
    admin: CurrentAdmin,
    db: DbSession,
):
    """Change school settings. New exam durations only apply to exams created afterwards."""
    runtime = await SystemSettingsService(db).update(changes)
    await AuditLogger(db).log_admin(
        AuditAction.SETTINGS_UPDATED, admin.username,
        "Updated system settings",
        **changes.model_dump(exclude_unset=True, exclude_none=True),
    )
    return SystemSettingsResponse.model_validate(runtime)


@router.post("/archive", response_model=ArchiveResponse, status_code=status.HTTP_201_CREATED)
async def archive_term(
    request: ArchiveRequest,
    admin: CurrentAdmin,
    db: DbSession,
    clock: ClockDep,
):
    """Write the term's students, exams, questions and results to the archive directory."""
    try:
        summary = await ArchiveService(db, clock=clock).archive_term(request.term_name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditLogger(db).log_admin(
        AuditAction.TERM_ARCHIVED, admin.username,
        f"Archived term {summary.term_name}",
        path=str(summary.path),
        students=summary.students,
        results=summary.results,
    )
    return ArchiveResponse(
        term_name=summary.term_name,
        path=str(summary.path),
        students=summary.students,
        exams=summary.exams,
        questions=summary.questions,
        results=summary.results,
        files=summary.files,
    )
