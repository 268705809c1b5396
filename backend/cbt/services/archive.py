"""
CBT Exam Engine - Term Archive
Writes a snapshot of students, exams, questions and results to disk at the end of a term.
Nothing is deleted from the database.
"""
import csv
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cbt.core.clock import Clock, as_utc, utc_now
from cbt.core.config import settings
from cbt.models.catalog import Exam, Question
from cbt.models.result import ExamResult
from cbt.models.student import Student
from cbt.services.grading import whole_percentage

logger = logging.getLogger(__name__)


@dataclass
class ArchiveSummary:
    term_name: str
    path: Path
    students: int = 0
    exams: int = 0
    questions: int = 0
    results: int = 0
    files: list[str] = field(default_factory=list)


def safe_term_name(term_name: str) -> str:
    """Directory name for a term, e.g. "First Term 2024/2025" -> "first_term_2024_2025"."""
    safe = re.sub(r"[^a-zA-Z0-9-]", "_", term_name.strip()).lower()
    if not safe.strip("_"):
        raise ValueError("Term name must contain letters or digits")
    return safe


class ArchiveService:
    def __init__(
        self,
        db: AsyncSession,
        archive_dir: str | Path | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.archive_dir = Path(archive_dir or settings.ARCHIVE_DIR)
        self.clock = clock

    async def archive_term(self, term_name: str) -> ArchiveSummary:
        """
        Export everything for the term into ``<archive_dir>/<safe term name>/``.

        Files are stamped with the export time, so archiving the same term
        twice keeps both snapshots.

        Raises:
            ValueError: If the term name has no usable characters
        """
        target = self.archive_dir / safe_term_name(term_name)
        target.mkdir(parents=True, exist_ok=True)
        stamp = self.clock().strftime("%Y%m%d%H%M%S")

        students = list((await self.db.execute(
            select(Student).order_by(Student.class_level, Student.last_name, Student.admission_number)
        )).scalars().all())
        exams = list((await self.db.execute(
            select(Exam).order_by(Exam.class_level, Exam.subject)
        )).scalars().all())
        questions = list((await self.db.execute(
            select(Question).order_by(Question.exam_id, Question.id)
        )).scalars().all())
        results = list((await self.db.execute(
            select(ExamResult).order_by(ExamResult.class_level, ExamResult.subject, ExamResult.submitted_at)
        )).scalars().all())

        summary = ArchiveSummary(
            term_name=term_name,
            path=target,
            students=len(students),
            exams=len(exams),
            questions=len(questions),
            results=len(results),
        )

        data = {
            "term_name": term_name,
            "exported_at": self.clock().isoformat(),
            "students": [self._student_row(s) for s in students],
            "exams": [
                {
                    "id": e.id,
                    "subject": e.subject,
                    "class_level": e.class_level,
                    "duration_minutes": e.duration_minutes,
                    "is_active": e.is_active,
                }
                for e in exams
            ],
            "questions": [
                {
                    "id": q.id,
                    "exam_id": q.exam_id,
                    "text": q.text,
                    **{f"option_{k.lower()}": v for k, v in q.options.items()},
                    "correct_answer": q.correct_answer,
                }
                for q in questions
            ],
            "results": [
                {
                    "student_id": str(r.student_id),
                    "subject": r.subject,
                    "class_level": r.class_level,
                    "score": r.score,
                    "total_questions": r.total_questions,
                    "reason": r.reason,
                    "submitted_at": as_utc(r.submitted_at).isoformat(),
                }
                for r in results
            ],
        }
        data_file = target / f"data_{stamp}.json"
        with open(data_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        summary.files.append(data_file.name)

        students_file = target / f"students_{stamp}.csv"
        with open(students_file, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["First Name", "Middle Name", "Last Name", "Class", "Admission Number"])
            for s in students:
                writer.writerow([s.first_name, s.middle_name or "", s.last_name, s.class_level, s.admission_number])
        summary.files.append(students_file.name)

        names = {s.id: s.full_name for s in students}
        by_class: dict[str, list[ExamResult]] = defaultdict(list)
        for r in results:
            by_class[r.class_level].append(r)

        for class_level, class_results in sorted(by_class.items()):
            results_file = target / f"results_{class_level}_{stamp}.csv"
            with open(results_file, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(["Name", "Subject", "Score", "Total", "Percentage", "Date"])
                for r in class_results:
                    writer.writerow([
                        names.get(r.student_id, "Unknown"),
                        r.subject,
                        r.score,
                        r.total_questions,
                        whole_percentage(r.score, r.total_questions),
                        as_utc(r.submitted_at).isoformat(),
                    ])
            summary.files.append(results_file.name)

        logger.info(
            "Archived term %r to %s (%d students, %d results)",
            term_name, target, summary.students, summary.results,
        )
        return summary

    @staticmethod
    def _student_row(student: Student) -> dict:
        # Password hashes stay out of the archive
        return {
            "id": str(student.id),
            "admission_number": student.admission_number,
            "first_name": student.first_name,
            "middle_name": student.middle_name,
            "last_name": student.last_name,
            "class_level": student.class_level,
            "is_active": student.is_active,
        }
