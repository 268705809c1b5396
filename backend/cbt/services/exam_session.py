"""
CBT Exam Engine - Exam Session Engine
State machine for one student's timed attempt at one subject:
enter (create or resume), autosave, and a single scored finalization.

Expiry is evaluated lazily on every call against the stored deadline_at;
there is no background timer. Per-key ordering comes from conditional
updates in the SessionStore, so the engine keeps no state between calls.
"""
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import Clock, as_utc, utc_now
from cbt.core.config import settings
from cbt.models.catalog import Question
from cbt.models.exam_session import ExamSession, FinalizeReason, SessionStatus
from cbt.models.student import Student
from cbt.services.audit_log import AuditAction, AuditLogger, AuditStatus
from cbt.services.catalog import CatalogService
from cbt.services.grading import grade_answers, shuffled_for_session
from cbt.services.results import ResultSink
from cbt.services.session_store import SessionStore
from cbt.services.system_settings import SystemSettingsService

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class ExamSessionError(Exception):
    """Base error for exam session operations; ``code`` is stable for clients."""
    code = "exam_session_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class StudentNotFound(ExamSessionError):
    code = "student_not_found"


class ExamNotAvailable(ExamSessionError):
    """No exam for the subject and class, or it is not active."""
    code = "exam_not_available"


class NoQuestions(ExamSessionError):
    code = "no_questions"


class SessionNotFound(ExamSessionError):
    code = "session_not_found"


class SessionAlreadyClosed(ExamSessionError):
    """The session for this key already reached a terminal state."""
    code = "session_already_closed"


class ExpiredSession(ExamSessionError):
    """Write refused because the deadline has passed."""
    code = "session_expired"


class ExamTimeExpired(ExamSessionError):
    """Resume found the deadline passed; the session was finalized as expired."""
    code = "time_expired"

    def __init__(self, message: str, result: "FinalizeResult"):
        super().__init__(message, **result.as_dict())
        self.result = result


class AlreadySubmitted(ExamSessionError):
    """Finalize on a terminal session. Carries the originally recorded score."""
    code = "already_submitted"


class InvalidAnswers(ExamSessionError):
    code = "invalid_answers"


class ScoringInvariantViolation(ExamSessionError):
    """A computed score fell outside 0..total; nothing was persisted."""
    code = "scoring_invariant_violation"


class SessionConflict(ExamSessionError):
    """Concurrent writers kept winning; safe for the caller to retry."""
    code = "session_conflict"


# ============================================================================
# Results
# ============================================================================

@dataclass
class EnterExamResult:
    session: ExamSession
    questions: list[Question]
    time_remaining_seconds: int
    saved_answers: dict[str, str]
    resumed: bool


@dataclass
class AutosaveResult:
    saved_at: datetime
    answers_count: int
    time_remaining_seconds: int


@dataclass
class FinalizeResult:
    score: int
    total: int
    percentage: float
    status: SessionStatus
    reason: FinalizeReason
    finalized_at: datetime
    answers: dict[str, str] = field(default_factory=dict, repr=False)

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "total": self.total,
            "percentage": self.percentage,
            "status": self.status.value,
            "reason": self.reason.value,
            "finalized_at": self.finalized_at.isoformat(),
        }


@dataclass
class SweepResult:
    finalized: int = 0
    failed: int = 0


@dataclass(frozen=True)
class _StudentRef:
    """Plain copy of the fields we need, safe to use after a rollback."""
    id: uuid.UUID
    admission_number: str
    class_level: str


# ============================================================================
# Engine
# ============================================================================

class ExamSessionEngine:
    """
    Exam session lifecycle for a single request.

    Each public operation commits its own transaction once the state change
    is complete, so a concurrent call for the same key sees either the whole
    change or none of it.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        shuffle_questions: bool | None = None,
        write_retries: int | None = None,
    ):
        self.db = db
        self.clock = clock
        # None defers to the runtime system settings
        self.shuffle_questions = shuffle_questions
        self.write_retries = (
            settings.SESSION_WRITE_RETRIES if write_retries is None else write_retries
        )
        self.store = SessionStore(db)
        self.catalog = CatalogService(db)
        self.results = ResultSink(db)
        self.audit = AuditLogger(db)

    async def _student(self, student_id: uuid.UUID) -> _StudentRef:
        student = await self.db.get(Student, student_id)
        if student is None:
            raise StudentNotFound("Student not found", student_id=str(student_id))
        return _StudentRef(student.id, student.admission_number, student.class_level)

    # ------------------------------------------------------------------
    # Enter (create or resume)
    # ------------------------------------------------------------------

    async def enter_exam(self, student_id: uuid.UUID, subject: str) -> EnterExamResult:
        """
        Start the exam for (student, subject), or resume the running attempt.

        Raises:
            StudentNotFound, SessionAlreadyClosed, ExamNotAvailable, NoQuestions
            ExamTimeExpired: resume after the deadline; the session has been
                finalized as expired and the result is attached
        """
        student = await self._student(student_id)
        now = self.clock()

        session = await self.store.get(student.id, subject)
        resumed = session is not None
        if session is not None:
            # A running session stays bound to its exam even if it was deactivated
            await self._check_resumable(student, session, now)
        else:
            entry = await self.catalog.lookup(subject, student.class_level)
            if entry is None or not entry.is_active:
                raise ExamNotAvailable(
                    f"No active exam found for {subject}",
                    subject=subject,
                    class_level=student.class_level,
                )
            if not entry.questions:
                raise NoQuestions(f"No questions found for {subject}", subject=subject)

            session, created = await self.store.create_if_absent(
                student_id=student.id,
                subject=subject,
                exam_id=entry.exam_id,
                class_level=student.class_level,
                started_at=now,
                duration_minutes=entry.duration_minutes,
            )
            if created:
                logger.info(
                    "Started exam session %s for %s - %s (%d min)",
                    session.id, student.admission_number, subject, entry.duration_minutes,
                )
                await self.audit.log_student(
                    AuditAction.EXAM_STARTED, student.admission_number,
                    f"Started exam: {subject}",
                    subject=subject, exam_id=entry.exam_id,
                )
            else:
                # Lost the creation race; continue with the winner's row
                resumed = True
                await self._check_resumable(student, session, now)

        if resumed:
            logger.info("Resumed exam session %s for %s - %s", session.id, student.admission_number, subject)
            await self.audit.log_student(
                AuditAction.EXAM_RESUMED, student.admission_number,
                f"Resumed exam: {subject}",
                subject=subject, session_id=str(session.id),
            )

        questions = await self.catalog.questions_for(session.exam_id)
        shuffle = await self._shuffle_enabled()
        await self.db.commit()

        if shuffle:
            questions = shuffled_for_session(
                questions, student.id, subject, as_utc(session.started_at)
            )

        return EnterExamResult(
            session=session,
            questions=questions,
            time_remaining_seconds=session.seconds_remaining(now),
            saved_answers=dict(session.answers or {}),
            resumed=resumed,
        )

    async def _check_resumable(self, student: _StudentRef, session: ExamSession, now: datetime) -> None:
        subject = session.subject
        if session.is_terminal:
            raise SessionAlreadyClosed(
                "You have already submitted this exam",
                status=session.status,
                subject=subject,
            )
        if session.is_overdue(now):
            try:
                result = await self._finalize_with_retries(
                    student, subject, None, FinalizeReason.TIMEOUT,
                )
            except AlreadySubmitted as e:
                # Another caller expired it first
                raise SessionAlreadyClosed(
                    "You have already submitted this exam",
                    status=e.context.get("status"),
                    subject=subject,
                ) from e
            raise ExamTimeExpired("Exam time has expired", result)

    async def _shuffle_enabled(self) -> bool:
        if self.shuffle_questions is not None:
            return self.shuffle_questions
        runtime = await SystemSettingsService(self.db).current()
        return runtime.shuffle_questions

    # ------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------

    async def save_progress(
        self,
        student_id: uuid.UUID,
        subject: str,
        answers: Mapping[str, str],
    ) -> AutosaveResult:
        """
        Merge a partial answers snapshot into the stored answers.

        Keys absent from ``answers`` keep their stored value. Sending the same
        snapshot twice leaves the same state.

        Raises:
            SessionNotFound, SessionAlreadyClosed, InvalidAnswers
            ExpiredSession: the deadline passed; nothing is written
            SessionConflict: concurrent writers exhausted the retries
        """
        student = await self._student(student_id)
        incoming = dict(answers)

        for attempt in range(self.write_retries + 1):
            now = self.clock()
            session = await self._require_session(student, subject)

            if session.is_terminal:
                raise SessionAlreadyClosed(
                    "Exam already submitted", status=session.status, subject=subject,
                )
            if session.is_overdue(now):
                logger.warning(
                    "Autosave refused for %s - %s: deadline passed at %s",
                    student.admission_number, subject, session.deadline_utc.isoformat(),
                )
                raise ExpiredSession(
                    "Exam time has expired",
                    deadline_at=session.deadline_utc.isoformat(),
                )

            if attempt == 0 and incoming:
                questions = await self.catalog.questions_for(session.exam_id)
                self._validate_answers(questions, incoming)

            merged = {**(session.answers or {}), **incoming}
            if await self.store.update_answers(session, merged, now):
                await self.db.commit()
                logger.debug(
                    "Saved %d answers for %s - %s", len(merged), student.admission_number, subject,
                )
                return AutosaveResult(
                    saved_at=now,
                    answers_count=len(merged),
                    time_remaining_seconds=session.seconds_remaining(now),
                )

            logger.info(
                "Autosave for %s - %s lost a concurrent write, retrying (%d)",
                student.admission_number, subject, attempt + 1,
            )
            await self.db.rollback()

        raise SessionConflict("Session is busy, please retry", subject=subject)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def finalize(
        self,
        student_id: uuid.UUID,
        subject: str,
        answers: Mapping[str, str] | None = None,
        reason: FinalizeReason = FinalizeReason.MANUAL,
    ) -> FinalizeResult:
        """
        Score the session once and close it.

        ``manual`` before the deadline merges the final snapshot and closes as
        submitted. ``timeout``, or anything at or after the deadline, scores
        only what was already persisted; past the deadline the session closes
        as expired.

        Raises:
            SessionNotFound, InvalidAnswers, ScoringInvariantViolation
            AlreadySubmitted: the session is terminal; carries the recorded score
            SessionConflict: concurrent writers exhausted the retries
        """
        student = await self._student(student_id)
        return await self._finalize_with_retries(
            student, subject, dict(answers) if answers else None, FinalizeReason(reason),
        )

    async def _finalize_with_retries(
        self,
        student: _StudentRef,
        subject: str,
        answers: dict[str, str] | None,
        reason: FinalizeReason,
        scored_by: str | None = None,
    ) -> FinalizeResult:
        for attempt in range(self.write_retries + 1):
            now = self.clock()
            session = await self._require_session(student, subject)
            if session.is_terminal:
                raise AlreadySubmitted(
                    "Exam already submitted",
                    score=session.score,
                    total=session.total_questions,
                    status=session.status,
                )

            result = await self._finalize_session(student, session, answers, reason, now, scored_by)
            if result is not None:
                await self.db.commit()
                return result

            logger.info(
                "Finalize for %s - %s lost a concurrent write, re-reading (%d)",
                student.admission_number, subject, attempt + 1,
            )
            await self.db.rollback()

        raise SessionConflict("Session is busy, please retry", subject=subject)

    async def _finalize_session(
        self,
        student: _StudentRef,
        session: ExamSession,
        answers: dict[str, str] | None,
        requested: FinalizeReason,
        now: datetime,
        scored_by: str | None = None,
    ) -> FinalizeResult | None:
        """
        One attempt at the terminal transition; None means the row moved under us.

        ``scored_by`` names the admin who triggered the scoring. Their audit
        entry joins the same transaction as the result.
        """
        questions = await self.catalog.questions_for(session.exam_id)
        stored = dict(session.answers or {})

        if session.is_overdue(now):
            # Past the deadline client data is never trusted
            status, reason, merged = SessionStatus.EXPIRED, FinalizeReason.TIMEOUT, stored
        elif requested == FinalizeReason.MANUAL:
            status, reason = SessionStatus.SUBMITTED, FinalizeReason.MANUAL
            if answers:
                self._validate_answers(questions, answers)
            merged = {**stored, **(answers or {})}
        else:
            # Client timer ran out before ours did
            status, reason, merged = SessionStatus.SUBMITTED, FinalizeReason.TIMEOUT, stored

        grading = grade_answers(questions, merged)
        if not grading.within_bounds:
            logger.error(
                "Refusing to persist score %d/%d for session %s",
                grading.score, grading.total, session.id,
            )
            raise ScoringInvariantViolation(
                "Computed score is out of range",
                score=grading.score,
                total=grading.total,
            )

        won = await self.store.mark_finalized(
            session,
            answers=merged,
            status=status,
            score=grading.score,
            total=grading.total,
            finalized_at=now,
            reason=reason.value,
        )
        if not won:
            return None

        await self.results.record(
            student.id,
            session.subject,
            grading.score,
            grading.total,
            now,
            class_level=session.class_level,
            reason=reason.value,
            session_id=session.id,
        )
        action = (
            AuditAction.EXAM_AUTO_SUBMITTED if reason == FinalizeReason.TIMEOUT
            else AuditAction.EXAM_SUBMITTED
        )
        await self.audit.log_student(
            action, student.admission_number,
            f"Submitted exam: {session.subject} - Score: {grading.score}/{grading.total}",
            subject=session.subject,
            score=grading.score,
            total=grading.total,
            session_status=status.value,
        )
        if scored_by:
            await self.audit.log_admin(
                AuditAction.EXAM_SCORED_FROM_PROGRESS, scored_by,
                f"Scored from saved progress: {session.subject}",
                student_id=str(student.id),
                subject=session.subject,
                score=grading.score,
                total=grading.total,
            )
        logger.info(
            "Finalized session %s for %s - %s: %d/%d (%s, %s)",
            session.id, student.admission_number, session.subject,
            grading.score, grading.total, status.value, reason.value,
        )

        return FinalizeResult(
            score=grading.score,
            total=grading.total,
            percentage=grading.percentage,
            status=status,
            reason=reason,
            finalized_at=now,
            answers=merged,
        )

    # ------------------------------------------------------------------
    # Admin paths
    # ------------------------------------------------------------------

    async def score_from_progress(
        self,
        student_id: uuid.UUID,
        subject: str,
        admin_username: str,
    ) -> FinalizeResult:
        """Score a session from its autosaved answers when the client never submitted."""
        student = await self._student(student_id)
        return await self._finalize_with_retries(
            student, subject, None, FinalizeReason.TIMEOUT, scored_by=admin_username,
        )

    async def expire_overdue(self) -> SweepResult:
        """
        Timeout-finalize every in-progress session whose deadline has passed.

        Each session commits on its own. A session that fails is logged and
        counted, and the sweep moves on to the next one.
        """
        overdue = await self.store.list_overdue(self.clock())
        keys = [(s.student_id, s.subject) for s in overdue]

        sweep = SweepResult()
        for student_id, subject in keys:
            try:
                await self.finalize(student_id, subject, None, FinalizeReason.TIMEOUT)
            except AlreadySubmitted:
                # Closed by its own client since we listed it
                continue
            except ExamSessionError as e:
                await self.db.rollback()
                logger.error(
                    "Could not expire session %s - %s: %s (%s)",
                    student_id, subject, e.message, e.code,
                )
                sweep.failed += 1
                continue
            sweep.finalized += 1

        if sweep.finalized or sweep.failed:
            logger.info(
                "Expired %d overdue exam sessions, %d failed", sweep.finalized, sweep.failed,
            )
        return sweep

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_session(self, student: _StudentRef, subject: str) -> ExamSession:
        session = await self.store.get(student.id, subject)
        if session is None:
            raise SessionNotFound(
                "No exam session found; enter the exam first",
                subject=subject,
            )
        return session

    @staticmethod
    def _validate_answers(questions: list[Question], answers: Mapping[str, str]) -> None:
        known = {str(q.id) for q in questions}
        unknown = sorted(set(answers) - known)
        if unknown:
            raise InvalidAnswers(
                "Answers reference questions that are not part of this exam",
                question_ids=unknown,
            )
