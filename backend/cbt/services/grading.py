"""
CBT Exam Engine - Grading
Scoring of multiple choice answers, per-session question ordering and report grades
"""
import hashlib
import math
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from cbt.models.catalog import Question

T = TypeVar("T")


@dataclass(frozen=True)
class GradingResult:
    score: int
    total: int

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.score / self.total * 100, 1)

    @property
    def within_bounds(self) -> bool:
        return 0 <= self.score <= self.total


def normalize_letter(value: str | None) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def grade_answers(questions: Sequence[Question], answers: Mapping[str, str]) -> GradingResult:
    """
    One point per question whose answer matches the key.

    Each question is visited once, so the score cannot exceed the number of
    questions. Unanswered questions score zero; there is no negative marking.
    """
    score = 0
    for question in questions:
        given = normalize_letter(answers.get(str(question.id)))
        if given and given == normalize_letter(question.correct_answer):
            score += 1
    return GradingResult(score=score, total=len(questions))


def session_seed(student_id: object, subject: str, started_at: datetime) -> int:
    """Stable seed for one session: same inputs, same seed, across processes."""
    material = f"{student_id}:{subject}:{started_at.isoformat()}".encode()
    return int.from_bytes(hashlib.sha256(material).digest()[:8], "big")


def shuffled_for_session(
    items: Sequence[T],
    student_id: object,
    subject: str,
    started_at: datetime,
) -> list[T]:
    """
    Deterministic per-session shuffle.

    A resumed session gets the same order because the seed only depends on
    the session key and its fixed start time.
    """
    ordered = list(items)
    random.Random(session_seed(student_id, subject, started_at)).shuffle(ordered)
    return ordered


# Lower bound of each band, highest first
GRADE_BANDS = (
    (75, "A", "Excellent"),
    (70, "B", "Very Good"),
    (60, "C", "Good"),
    (50, "D", "Pass"),
    (45, "E", "Fair"),
    (0, "F", "Fail"),
)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def whole_percentage(score: int, total: int) -> int:
    if total == 0:
        return 0
    return _round_half_up(score / total * 100)


def obj_score(score: int, total: int, out_of: int) -> int:
    """Raw score scaled to the objective component of the term score."""
    if total == 0:
        return 0
    return _round_half_up(score / total * out_of)


def letter_grade(percentage: float) -> tuple[str, str]:
    """Grade letter and remark for a percentage on the school scale."""
    for lower, grade, remark in GRADE_BANDS:
        if percentage >= lower:
            return grade, remark
    return GRADE_BANDS[-1][1], GRADE_BANDS[-1][2]
