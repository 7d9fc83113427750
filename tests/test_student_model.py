"""Tests for core/student_model.py"""

import pytest

from core.models import PathStepAttempt
from core.student_model import MasteryCalculator


def attempts(outcomes):
    return [
        PathStepAttempt(
            step_id="p-s1",
            item_id=f"i{n}",
            is_correct=correct,
            elapsed_seconds=45.0,
            attempted_at=f"2026-03-02T09:{n:02d}:00+00:00",
        )
        for n, correct in enumerate(outcomes)
    ]


@pytest.fixture
def calculator():
    return MasteryCalculator()


def test_mastery_is_plain_accuracy(calculator):
    assert calculator.mastery([]) == 0.0
    assert calculator.mastery(attempts([True, False, True, True])) == 0.75


def test_aggregate_counts_all_attempts(calculator):
    aggregate = calculator.aggregate("stu", "X", attempts([True, False, True]))
    assert (aggregate.attempts, aggregate.correct) == (3, 2)
    assert aggregate.mastery == pytest.approx(2 / 3)


def test_recent_accuracy_weights_newest_attempts(calculator):
    # Same 1/2 accuracy, but the newer correct answer counts more
    assert calculator.recent_accuracy(attempts([False, True])) == pytest.approx(1 / 1.9)
    assert calculator.recent_accuracy(attempts([True, False])) == pytest.approx(0.9 / 1.9)


def test_recent_accuracy_uses_last_ten(calculator):
    history = attempts([False] * 20 + [True] * 10)
    assert calculator.recent_accuracy(history) == pytest.approx(1.0)
    assert calculator.mastery(history) == pytest.approx(1 / 3)


def test_consistency(calculator):
    assert calculator.consistency(attempts([True])) == 1.0
    assert calculator.consistency(attempts([True] * 6)) == 1.0
    assert calculator.consistency(attempts([True, False] * 3)) == pytest.approx(0.0)


@pytest.mark.parametrize("score,level", [
    (0.0, "NOVICE"),
    (0.39, "NOVICE"),
    (0.4, "DEVELOPING"),
    (0.7, "PROFICIENT"),
    (0.85, "MASTERY"),
    (1.0, "MASTERY"),
])
def test_levels(calculator, score, level):
    assert calculator.level(score) == level


def test_breakdown(calculator):
    history = attempts([True, True, False, True])
    result = calculator.breakdown("stu", "X", history)
    assert result["mastery"] == 0.75
    assert result["attempts"] == 4
    assert result["correct"] == 3
    assert result["level"] == "PROFICIENT"
    assert result["last_attempt_at"] == history[-1].attempted_at

    empty = calculator.breakdown("stu", "X", [])
    assert empty["mastery"] == 0.0
    assert empty["last_attempt_at"] is None


def test_classify(calculator):
    buckets = calculator.classify({"b": 0.8, "a": 0.5, "c": 0.1, "d": 0.75}, mastered_at=0.75)
    assert buckets == {"mastered": ["b", "d"], "developing": ["a"], "weak": ["c"]}
