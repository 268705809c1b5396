"""
CBT Exam Engine - Exam Session Engine Tests
Lifecycle of a single (student, subject) attempt against a controllable clock
"""
import uuid

import pytest
from sqlalchemy import func, select

from cbt.models.audit import AuditLog
from cbt.models.exam_session import FinalizeReason, SessionStatus
from cbt.models.result import ExamResult
from cbt.schemas.admin import ExamUpdate
from cbt.services import exam_session as exam_session_module
from cbt.services.audit_log import AuditAction, AuditLogger
from cbt.services.catalog import CatalogService
from cbt.services.exam_session import (
    AlreadySubmitted,
    ExamNotAvailable,
    ExamTimeExpired,
    ExpiredSession,
    InvalidAnswers,
    NoQuestions,
    ScoringInvariantViolation,
    SessionAlreadyClosed,
    SessionNotFound,
    StudentNotFound,
)
from cbt.services.grading import GradingResult, grade_answers
from cbt.services.session_store import SessionStore
from tests.conftest import create_exam


async def stored_session(session_maker, student_id, subject="Mathematics"):
    async with session_maker() as db:
        return await SessionStore(db).get(student_id, subject)


async def result_count(session_maker, student_id) -> int:
    async with session_maker() as db:
        return (await db.execute(
            select(func.count(ExamResult.id)).where(ExamResult.student_id == student_id)
        )).scalar_one()


# ============================================================================
# Enter / resume
# ============================================================================

@pytest.mark.asyncio
async def test_enter_creates_session_with_full_time(open_engine, student, sample_exam, clock):
    async with open_engine() as engine:
        entered = await engine.enter_exam(student.id, "Mathematics")

    assert entered.resumed is False
    assert entered.time_remaining_seconds == 3600
    assert entered.saved_answers == {}
    assert [q.id for q in entered.questions] == sample_exam.question_ids
    assert entered.session.status == SessionStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_resume_keeps_start_time_and_answers(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        first = await engine.enter_exam(student.id, "Mathematics")

    clock.advance(minutes=10)
    async with open_engine() as engine:
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))

    clock.advance(minutes=5)
    async with open_engine() as engine:
        resumed = await engine.enter_exam(student.id, "Mathematics")

    assert resumed.resumed is True
    assert resumed.session.id == first.session.id
    assert resumed.time_remaining_seconds == 45 * 60
    assert resumed.saved_answers == sample_exam.answers("A")

    session = await stored_session(session_maker, student.id)
    assert session.started_at == first.session.started_at


@pytest.mark.asyncio
async def test_deadline_fixed_when_exam_duration_changes(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        first = await engine.enter_exam(student.id, "Mathematics")

    async with session_maker() as db:
        catalog = CatalogService(db)
        exam = await catalog.get_exam(sample_exam.exam_id)
        await catalog.update_exam(exam, ExamUpdate(duration_minutes=120))
        await db.commit()

    clock.advance(minutes=30)
    async with open_engine() as engine:
        resumed = await engine.enter_exam(student.id, "Mathematics")

    assert resumed.time_remaining_seconds == 30 * 60
    assert resumed.session.deadline_utc == first.session.deadline_utc
    assert resumed.session.duration_minutes == 60


@pytest.mark.asyncio
async def test_resume_after_deadline_finalizes_as_expired(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A", "B", "A"))

    clock.advance(minutes=61)
    async with open_engine() as engine:
        with pytest.raises(ExamTimeExpired) as exc_info:
            await engine.enter_exam(student.id, "Mathematics")

    result = exc_info.value.result
    assert result.status == SessionStatus.EXPIRED
    assert result.reason == FinalizeReason.TIMEOUT
    assert (result.score, result.total) == (2, 4)
    assert exc_info.value.context["score"] == 2

    session = await stored_session(session_maker, student.id)
    assert session.status == SessionStatus.EXPIRED.value
    assert await result_count(session_maker, student.id) == 1

    async with open_engine() as engine:
        with pytest.raises(SessionAlreadyClosed):
            await engine.enter_exam(student.id, "Mathematics")


@pytest.mark.asyncio
async def test_enter_after_submission_is_refused(open_engine, student, sample_exam):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.finalize(student.id, "Mathematics", sample_exam.correct())

    async with open_engine() as engine:
        with pytest.raises(SessionAlreadyClosed):
            await engine.enter_exam(student.id, "Mathematics")


@pytest.mark.asyncio
async def test_enter_unknown_student(open_engine, sample_exam):
    async with open_engine() as engine:
        with pytest.raises(StudentNotFound):
            await engine.enter_exam(uuid.uuid4(), "Mathematics")


@pytest.mark.asyncio
async def test_enter_missing_or_inactive_exam(open_engine, db_session, student):
    await create_exam(db_session, subject="English", is_active=False)

    async with open_engine() as engine:
        with pytest.raises(ExamNotAvailable):
            await engine.enter_exam(student.id, "Chemistry")
        with pytest.raises(ExamNotAvailable):
            await engine.enter_exam(student.id, "English")


@pytest.mark.asyncio
async def test_enter_exam_for_other_class_is_not_available(open_engine, db_session, student):
    await create_exam(db_session, subject="Physics", class_level="SS2")

    async with open_engine() as engine:
        with pytest.raises(ExamNotAvailable):
            await engine.enter_exam(student.id, "Physics")


@pytest.mark.asyncio
async def test_enter_exam_without_questions(open_engine, db_session, student):
    await create_exam(db_session, subject="Civic Education", key=[])

    async with open_engine() as engine:
        with pytest.raises(NoQuestions):
            await engine.enter_exam(student.id, "Civic Education")


@pytest.mark.asyncio
async def test_running_session_survives_exam_deactivation(open_engine, session_maker, student, sample_exam):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")

    async with session_maker() as db:
        catalog = CatalogService(db)
        exam = await catalog.get_exam(sample_exam.exam_id)
        await catalog.update_exam(exam, ExamUpdate(is_active=False))
        await db.commit()

    async with open_engine() as engine:
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))
        result = await engine.finalize(student.id, "Mathematics")

    assert result.score == 1


@pytest.mark.asyncio
async def test_resume_after_exam_deactivation(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        first = await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("C"))

    async with session_maker() as db:
        catalog = CatalogService(db)
        exam = await catalog.get_exam(sample_exam.exam_id)
        await catalog.update_exam(exam, ExamUpdate(is_active=False))
        await db.commit()

    clock.advance(minutes=20)
    async with open_engine() as engine:
        resumed = await engine.enter_exam(student.id, "Mathematics")

    assert resumed.resumed is True
    assert resumed.session.id == first.session.id
    assert [q.id for q in resumed.questions] == sample_exam.question_ids
    assert resumed.saved_answers == sample_exam.answers("C")
    assert resumed.time_remaining_seconds == 40 * 60


@pytest.mark.asyncio
async def test_remaining_time_rounds_up_until_deadline(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")

    clock.advance(minutes=59, seconds=59, milliseconds=500)
    async with open_engine() as engine:
        resumed = await engine.enter_exam(student.id, "Mathematics")

    assert resumed.time_remaining_seconds == 1
    assert resumed.session.status == SessionStatus.IN_PROGRESS.value

    clock.advance(milliseconds=500)
    async with open_engine() as engine:
        with pytest.raises(ExamTimeExpired):
            await engine.enter_exam(student.id, "Mathematics")

    session = await stored_session(session_maker, student.id)
    assert session.status == SessionStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_shuffled_order_is_stable_across_resume(open_engine, db_session, student, clock):
    exam = await create_exam(db_session, subject="Biology", key=list("ABCDABCDABCD"))

    async with open_engine(shuffle_questions=True) as engine:
        first = await engine.enter_exam(student.id, "Biology")

    clock.advance(minutes=3)
    async with open_engine(shuffle_questions=True) as engine:
        again = await engine.enter_exam(student.id, "Biology")

    first_order = [q.id for q in first.questions]
    assert first_order == [q.id for q in again.questions]
    assert sorted(first_order) == exam.question_ids


# ============================================================================
# Autosave
# ============================================================================

@pytest.mark.asyncio
async def test_autosave_merges_partial_snapshots(open_engine, session_maker, student, sample_exam):
    q1, q2, q3, _ = (str(qid) for qid in sample_exam.question_ids)

    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", {q1: "A", q2: "C"})
        saved = await engine.save_progress(student.id, "Mathematics", {q2: "B", q3: "C"})

    assert saved.answers_count == 3
    session = await stored_session(session_maker, student.id)
    assert session.answers == {q1: "A", q2: "B", q3: "C"}


@pytest.mark.asyncio
async def test_autosave_is_idempotent(open_engine, session_maker, student, sample_exam):
    snapshot = sample_exam.answers("A", "D")

    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", snapshot)
    first = await stored_session(session_maker, student.id)

    async with open_engine() as engine:
        await engine.save_progress(student.id, "Mathematics", snapshot)
    second = await stored_session(session_maker, student.id)

    assert first.answers == second.answers == snapshot


@pytest.mark.asyncio
async def test_autosave_after_deadline_is_refused(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))

    clock.advance(minutes=60, seconds=50)
    async with open_engine() as engine:
        with pytest.raises(ExpiredSession):
            await engine.save_progress(student.id, "Mathematics", sample_exam.answers("B", "B"))

    session = await stored_session(session_maker, student.id)
    assert session.answers == sample_exam.answers("A")
    assert session.status == SessionStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_autosave_exactly_at_deadline_is_refused(open_engine, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")

    clock.advance(minutes=60)
    async with open_engine() as engine:
        with pytest.raises(ExpiredSession):
            await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))


@pytest.mark.asyncio
async def test_autosave_without_session(open_engine, student, sample_exam):
    async with open_engine() as engine:
        with pytest.raises(SessionNotFound):
            await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))


@pytest.mark.asyncio
async def test_autosave_after_submit_is_refused(open_engine, student, sample_exam):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.finalize(student.id, "Mathematics")
        with pytest.raises(SessionAlreadyClosed):
            await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))


@pytest.mark.asyncio
async def test_autosave_rejects_foreign_question_ids(open_engine, session_maker, student, sample_exam):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        with pytest.raises(InvalidAnswers) as exc_info:
            await engine.save_progress(student.id, "Mathematics", {"999999": "A"})

    assert exc_info.value.context["question_ids"] == ["999999"]
    session = await stored_session(session_maker, student.id)
    assert session.answers == {}


# ============================================================================
# Finalization
# ============================================================================

@pytest.mark.asyncio
async def test_manual_submit_scores_once(open_engine, session_maker, student, sample_exam):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A", "B"))
        result = await engine.finalize(student.id, "Mathematics", sample_exam.correct())

    assert (result.score, result.total, result.percentage) == (4, 4, 100.0)
    assert result.status == SessionStatus.SUBMITTED
    assert result.reason == FinalizeReason.MANUAL

    async with open_engine() as engine:
        with pytest.raises(AlreadySubmitted) as exc_info:
            await engine.finalize(student.id, "Mathematics", sample_exam.answers("D", "D", "D", "D"))

    assert exc_info.value.context["score"] == 4
    assert exc_info.value.context["total"] == 4
    assert await result_count(session_maker, student.id) == 1

    session = await stored_session(session_maker, student.id)
    assert session.status == SessionStatus.SUBMITTED.value
    assert session.score == 4
    assert session.answers == sample_exam.correct()


@pytest.mark.asyncio
async def test_manual_submit_merges_final_snapshot(open_engine, student, sample_exam):
    q1, q2, q3, q4 = (str(qid) for qid in sample_exam.question_ids)

    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", {q1: "A", q2: "B"})
        result = await engine.finalize(student.id, "Mathematics", {q3: "C", q4: "A"})

    assert result.score == 3
    assert result.answers == {q1: "A", q2: "B", q3: "C", q4: "A"}


@pytest.mark.asyncio
async def test_timeout_after_deadline_scores_saved_answers_only(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A", "B", "A"))

    clock.advance(minutes=61)
    async with open_engine() as engine:
        result = await engine.finalize(
            student.id, "Mathematics", sample_exam.correct(), FinalizeReason.TIMEOUT,
        )

    assert (result.score, result.total) == (2, 4)
    assert result.status == SessionStatus.EXPIRED
    assert result.reason == FinalizeReason.TIMEOUT

    session = await stored_session(session_maker, student.id)
    assert session.answers == sample_exam.answers("A", "B", "A")


@pytest.mark.asyncio
async def test_manual_submit_after_deadline_ignores_client_answers(open_engine, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))

    clock.advance(hours=2)
    async with open_engine() as engine:
        result = await engine.finalize(student.id, "Mathematics", sample_exam.correct())

    assert result.score == 1
    assert result.status == SessionStatus.EXPIRED
    assert result.reason == FinalizeReason.TIMEOUT


@pytest.mark.asyncio
async def test_client_timeout_before_deadline_is_a_submission(open_engine, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A", "B"))

    clock.advance(minutes=59, seconds=58)
    async with open_engine() as engine:
        result = await engine.finalize(
            student.id, "Mathematics", sample_exam.correct(), FinalizeReason.TIMEOUT,
        )

    assert result.score == 2
    assert result.status == SessionStatus.SUBMITTED
    assert result.reason == FinalizeReason.TIMEOUT


@pytest.mark.asyncio
async def test_finalize_without_session(open_engine, student, sample_exam):
    async with open_engine() as engine:
        with pytest.raises(SessionNotFound):
            await engine.finalize(student.id, "Mathematics")


@pytest.mark.asyncio
async def test_out_of_range_score_is_never_persisted(open_engine, session_maker, student, sample_exam, monkeypatch):
    monkeypatch.setattr(
        exam_session_module, "grade_answers",
        lambda questions, answers: GradingResult(score=len(questions) + 1, total=len(questions)),
    )

    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        with pytest.raises(ScoringInvariantViolation):
            await engine.finalize(student.id, "Mathematics", sample_exam.correct())

    session = await stored_session(session_maker, student.id)
    assert session.status == SessionStatus.IN_PROGRESS.value
    assert session.score is None
    assert await result_count(session_maker, student.id) == 0


@pytest.mark.asyncio
async def test_result_record_matches_session(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        entered = await engine.enter_exam(student.id, "Mathematics")
        clock.advance(minutes=20)
        result = await engine.finalize(student.id, "Mathematics", sample_exam.correct(3))

    async with session_maker() as db:
        record = (await db.execute(
            select(ExamResult).where(ExamResult.student_id == student.id)
        )).scalar_one()

    assert record.session_id == entered.session.id
    assert (record.score, record.total_questions) == (3, 4)
    assert record.percentage == result.percentage == 75.0
    assert record.class_level == "JSS1"
    assert record.reason == "manual"
    assert record.auto_submitted is False


@pytest.mark.asyncio
async def test_finalize_audits_session_status(open_engine, session_maker, student, sample_exam, clock):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))

    clock.advance(minutes=61)
    async with open_engine() as engine:
        await engine.finalize(student.id, "Mathematics")

    async with session_maker() as db:
        entry = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.EXAM_AUTO_SUBMITTED.value)
        )).scalar_one()

    assert entry.user_identifier == student.admission_number
    assert entry.status == "success"
    assert entry.event_data["session_status"] == SessionStatus.EXPIRED.value
    assert entry.event_data["score"] == 1


# ============================================================================
# Admin paths
# ============================================================================

@pytest.mark.asyncio
async def test_score_from_progress_is_atomic_with_its_audit(
    open_engine, session_maker, student, sample_exam, clock, monkeypatch,
):
    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A", "B"))

    async def failing_log_admin(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(AuditLogger, "log_admin", failing_log_admin)

    clock.advance(minutes=70)
    async with open_engine() as engine:
        with pytest.raises(RuntimeError):
            await engine.score_from_progress(student.id, "Mathematics", "admin")

    session = await stored_session(session_maker, student.id)
    assert session.status == SessionStatus.IN_PROGRESS.value
    assert session.score is None
    assert await result_count(session_maker, student.id) == 0


@pytest.mark.asyncio
async def test_expire_overdue_continues_past_a_failing_session(
    open_engine, session_maker, db_session, student, sample_exam, clock, monkeypatch,
):
    await create_exam(db_session, subject="English", key=["A", "B"])

    async with open_engine() as engine:
        await engine.enter_exam(student.id, "Mathematics")
        await engine.enter_exam(student.id, "English")
        await engine.save_progress(student.id, "Mathematics", sample_exam.answers("A"))

    def grade_all_but_english(questions, answers):
        if len(questions) == 2:
            return GradingResult(score=3, total=2)
        return grade_answers(questions, answers)

    monkeypatch.setattr(exam_session_module, "grade_answers", grade_all_but_english)

    clock.advance(minutes=61)
    async with open_engine() as engine:
        sweep = await engine.expire_overdue()

    assert (sweep.finalized, sweep.failed) == (1, 1)

    maths = await stored_session(session_maker, student.id, "Mathematics")
    english = await stored_session(session_maker, student.id, "English")
    assert maths.status == SessionStatus.EXPIRED.value
    assert maths.score == 1
    assert english.status == SessionStatus.IN_PROGRESS.value
    assert await result_count(session_maker, student.id) == 1
