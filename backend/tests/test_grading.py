"""
CBT Exam Engine - Grading Tests
"""
import random
import uuid
from datetime import datetime, timezone

import pytest

from cbt.models.catalog import Question
from cbt.services.grading import (
    GradingResult,
    grade_answers,
    letter_grade,
    obj_score,
    shuffled_for_session,
    whole_percentage,
)


def make_questions(key: str) -> list[Question]:
    return [
        Question(
            id=i + 1,
            exam_id=1,
            text=f"Q{i + 1}",
            option_a="a",
            option_b="b",
            option_c="c",
            option_d="d",
            correct_answer=letter,
        )
        for i, letter in enumerate(key)
    ]


def test_all_correct():
    questions = make_questions("ABCD")
    result = grade_answers(questions, {"1": "A", "2": "B", "3": "C", "4": "D"})
    assert result == GradingResult(score=4, total=4)
    assert result.percentage == 100.0


def test_unanswered_and_wrong_score_zero():
    questions = make_questions("ABCD")
    result = grade_answers(questions, {"1": "A", "2": "C"})
    assert result.score == 1
    assert result.total == 4
    assert result.percentage == 25.0


def test_letters_are_case_and_whitespace_insensitive():
    questions = make_questions("AB")
    assert grade_answers(questions, {"1": " a", "2": "b "}).score == 2


def test_unknown_question_ids_never_count():
    questions = make_questions("AB")
    result = grade_answers(questions, {"1": "A", "99": "A", "100": "B"})
    assert result.score == 1
    assert result.within_bounds


def test_score_never_exceeds_question_count():
    rng = random.Random(7)
    questions = make_questions("ABCDABCDAB")
    for _ in range(200):
        answers = {
            str(rng.randint(1, 15)): rng.choice("ABCDE")
            for _ in range(rng.randint(0, 15))
        }
        result = grade_answers(questions, answers)
        assert 0 <= result.score <= result.total == 10


def test_empty_exam():
    result = grade_answers([], {"1": "A"})
    assert result.score == 0
    assert result.percentage == 0.0


def test_percentage_rounds_to_one_decimal():
    assert GradingResult(score=1, total=3).percentage == 33.3
    assert GradingResult(score=2, total=3).percentage == 66.7


def test_out_of_range_result_is_flagged():
    assert not GradingResult(score=5, total=4).within_bounds
    assert not GradingResult(score=-1, total=4).within_bounds


def test_shuffle_is_stable_for_a_session():
    student_id = uuid.uuid4()
    started_at = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
    items = list(range(20))

    first = shuffled_for_session(items, student_id, "Mathematics", started_at)
    second = shuffled_for_session(items, student_id, "Mathematics", started_at)

    assert first == second
    assert sorted(first) == items
    assert items == list(range(20))


def test_shuffle_differs_between_sessions():
    started_at = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
    items = list(range(20))
    orders = {
        tuple(shuffled_for_session(items, uuid.uuid4(), "Mathematics", started_at))
        for _ in range(5)
    }
    assert len(orders) > 1


@pytest.mark.parametrize("percentage, expected", [
    (100, ("A", "Excellent")),
    (75, ("A", "Excellent")),
    (74, ("B", "Very Good")),
    (60, ("C", "Good")),
    (50, ("D", "Pass")),
    (45, ("E", "Fair")),
    (44.9, ("F", "Fail")),
    (0, ("F", "Fail")),
])
def test_letter_grade_bands(percentage, expected):
    assert letter_grade(percentage) == expected


def test_obj_score_rounds_half_up():
    assert obj_score(3, 4, 30) == 23
    assert obj_score(4, 4, 30) == 30
    assert obj_score(1, 3, 30) == 10
    assert obj_score(0, 0, 30) == 0
    assert whole_percentage(1, 8) == 13
    assert whole_percentage(0, 0) == 0
