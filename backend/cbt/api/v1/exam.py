"""
CBT Exam Engine - Exam API
Endpoints for entering, autosaving and submitting a timed exam
"""
import logging
import uuid

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.api.deps import CurrentStudent, DbSession, ExamEngine
from cbt.core.clock import as_utc
from cbt.models.exam_session import FinalizeReason
from cbt.models.student import Student
from cbt.schemas.exam import (
    AutosaveRequest,
    AutosaveResponse,
    EnterExamRequest,
    EnterExamResponse,
    ExamQuestion,
    SubmitRequest,
    SubmitResponse,
)
from cbt.services.audit_log import AuditAction, AuditLogger, AuditStatus
from cbt.services.exam_session import (
    AlreadySubmitted,
    ExamNotAvailable,
    ExamSessionError,
    ExamTimeExpired,
    ExpiredSession,
    InvalidAnswers,
    NoQuestions,
    ScoringInvariantViolation,
    SessionAlreadyClosed,
    SessionConflict,
    SessionNotFound,
    StudentNotFound,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exam", tags=["Exam"])

STATUS_BY_ERROR: dict[type[ExamSessionError], int] = {
    StudentNotFound: status.HTTP_404_NOT_FOUND,
    ExamNotAvailable: status.HTTP_404_NOT_FOUND,
    NoQuestions: status.HTTP_404_NOT_FOUND,
    SessionNotFound: status.HTTP_404_NOT_FOUND,
    SessionAlreadyClosed: status.HTTP_409_CONFLICT,
    AlreadySubmitted: status.HTTP_409_CONFLICT,
    ExamTimeExpired: status.HTTP_410_GONE,
    ExpiredSession: status.HTTP_410_GONE,
    InvalidAnswers: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ScoringInvariantViolation: status.HTTP_500_INTERNAL_SERVER_ERROR,
    SessionConflict: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def exam_http_error(exc: ExamSessionError) -> HTTPException:
    """Translate an engine error into an HTTP error with a stable ``code``."""
    return HTTPException(
        status_code=STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code, "message": exc.message, **exc.context},
    )


def store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "store_failure", "message": "Exam store unavailable, please retry"},
    )


def _ensure_own_session(student: Student, student_id: uuid.UUID) -> None:
    if student.id != student_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not belong to this student",
        )


@router.post("/enter", response_model=EnterExamResponse)
async def enter_exam(
    request: EnterExamRequest,
    current_student: CurrentStudent,
    engine: ExamEngine,
):
    """
    Start or resume the exam for a subject.
    Returns the questions, the server-computed time remaining and any
    autosaved answers so the client can rebuild its state.
    """
    _ensure_own_session(current_student, request.student_id)

    try:
        entered = await engine.enter_exam(request.student_id, request.subject)
    except ExamSessionError as e:
        raise exam_http_error(e)
    except SQLAlchemyError:
        logger.exception("Store failure entering %s for %s", request.subject, request.student_id)
        raise store_unavailable()

    session = entered.session
    return EnterExamResponse(
        session_id=session.id,
        subject=session.subject,
        duration_minutes=session.duration_minutes,
        total_questions=len(entered.questions),
        questions=[
            ExamQuestion(
                id=q.id,
                text=q.text,
                options=q.options,
                image_url=q.image_url,
            )
            for q in entered.questions
        ],
        time_remaining_seconds=entered.time_remaining_seconds,
        saved_answers=entered.saved_answers,
        started_at=as_utc(session.started_at),
        deadline_at=as_utc(session.deadline_at),
        resumed=entered.resumed,
    )


@router.post("/autosave", response_model=AutosaveResponse)
async def autosave(
    request: AutosaveRequest,
    current_student: CurrentStudent,
    engine: ExamEngine,
):
    """
    Merge a snapshot of answers into the session.
    After the deadline this fails with 410 and nothing is stored.
    """
    _ensure_own_session(current_student, request.student_id)

    try:
        saved = await engine.save_progress(request.student_id, request.subject, request.answers)
    except ExamSessionError as e:
        raise exam_http_error(e)
    except SQLAlchemyError:
        logger.exception("Store failure autosaving %s for %s", request.subject, request.student_id)
        raise store_unavailable()

    return AutosaveResponse(
        saved_at=saved.saved_at,
        answers_count=saved.answers_count,
        time_remaining_seconds=saved.time_remaining_seconds,
    )


@router.post("/submit", response_model=SubmitResponse)
async def submit_exam(
    request: SubmitRequest,
    current_student: CurrentStudent,
    engine: ExamEngine,
    db: DbSession,
):
    """
    Finalize the exam once and return the score.
    ``reason=timeout`` scores the autosaved answers only.
    """
    _ensure_own_session(current_student, request.student_id)
    admission_number = current_student.admission_number

    try:
        result = await engine.finalize(
            request.student_id,
            request.subject,
            request.answers,
            FinalizeReason(request.reason),
        )
    except ExamSessionError as e:
        if isinstance(e, (ScoringInvariantViolation, SessionConflict)):
            await _audit_failed_submission(db, admission_number, request.subject, e.message)
        raise exam_http_error(e)
    except SQLAlchemyError as e:
        logger.exception("Store failure submitting %s for %s", request.subject, admission_number)
        await _audit_failed_submission(db, admission_number, request.subject, str(e))
        raise store_unavailable()

    return SubmitResponse(
        score=result.score,
        total=result.total,
        percentage=result.percentage,
        status=result.status.value,
        reason=result.reason.value,
        finalized_at=result.finalized_at,
    )


async def _audit_failed_submission(db: AsyncSession, admission_number: str, subject: str, error: str) -> None:
    await db.rollback()
    await AuditLogger(db).log_student(
        AuditAction.EXAM_SUBMISSION_FAILED, admission_number,
        f"Submission failed: {subject}",
        AuditStatus.FAILURE,
        subject=subject, error=error,
    )
    await db.commit()
