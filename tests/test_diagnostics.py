"""Tests for core/diagnostics.py"""

import pytest

from core.config import AssessmentConfig
from core.diagnostics import DiagnosticReportGenerator
from core.errors import InvalidState
from core.models import AssessmentSession, ItemParams, Response, SessionStatus, StopReason


def make_session(outcomes, status=SessionStatus.COMPLETED, theta=0.4, se=0.35):
    """outcomes: list of (topic, concept_ids, is_correct)."""
    responses = [
        Response(
            sequence=i,
            item_id=f"item-{i}",
            selected_option="A" if correct else "B",
            is_correct=correct,
            params=ItemParams(),
            topic=topic,
            concept_ids=list(concepts),
            theta_before=0.0,
            se_before=1.0,
            theta_after=0.0,
            se_after=1.0,
            information=0.1,
            elapsed_seconds=30.0,
        )
        for i, (topic, concepts, correct) in enumerate(outcomes)
    ]
    return AssessmentSession(
        id="s1",
        student_id="stu",
        jurisdiction_id="ca",
        config=AssessmentConfig(min_questions=1, max_questions=20),
        started_at="2026-03-02T09:00:00+00:00",
        responses=responses,
        current_theta=theta,
        current_se=se,
        status=status,
        termination_reason=StopReason.MAX_REACHED if status == SessionStatus.COMPLETED else None,
        completed_at="2026-03-02T09:20:00+00:00" if status == SessionStatus.COMPLETED else None,
    )


OUTCOMES = [
    ("wiring", ["X"], False),
    ("wiring", ["X"], False),
    ("wiring", ["X", "Y"], True),
    ("grounding", ["Y"], True),
    ("grounding", ["Y"], True),
    ("grounding", ["Y", "Z"], True),
    ("services", ["W"], False),
]


def test_weak_and_strong_concepts():
    report = DiagnosticReportGenerator().generate(make_session(OUTCOMES))
    # X: 1/3 weak; Y: 4/4 strong; Z: one observation; W: one observation
    assert report.weak_concepts == ["X"]
    assert report.strong_concepts == ["Y"]

    by_concept = {c.concept_id: c for c in report.concept_performance}
    assert by_concept["Y"].observations == 4
    assert by_concept["X"].accuracy == pytest.approx(0.3333, abs=1e-4)


def test_topic_performance():
    report = DiagnosticReportGenerator().generate(make_session(OUTCOMES))
    topics = {t.topic: t for t in report.topic_performance}
    assert topics["wiring"].questions_asked == 3
    assert topics["wiring"].correct == 1
    assert topics["grounding"].accuracy == 1.0


def test_score_interval_and_readiness():
    report = DiagnosticReportGenerator().generate(make_session(OUTCOMES, theta=0.4, se=0.35))
    assert report.estimated_score == 76.0
    assert report.readiness_level == "READY"
    assert report.confidence_interval_95 == [pytest.approx(0.4 - 0.686), pytest.approx(0.4 + 0.686)]
    assert report.questions_asked == len(OUTCOMES)
    assert report.termination_reason == "MAX_REACHED"


@pytest.mark.parametrize("theta,level", [
    (-3.0, "NOT_READY"),
    (-0.5, "DEVELOPING"),
    (0.5, "READY"),
    (1.0, "EXAM_READY"),
])
def test_readiness_levels(theta, level):
    generator = DiagnosticReportGenerator()
    assert generator.readiness_level(generator.estimated_score(theta)) == level


def test_score_mapping_is_monotone_and_bounded():
    generator = DiagnosticReportGenerator()
    scores = [generator.estimated_score(t / 2) for t in range(-8, 9)]
    assert scores == sorted(scores)
    assert generator.estimated_score(0.0) == 70.0
    assert generator.estimated_score(5.0) == 100.0
    assert generator.estimated_score(-5.0) == 0.0


def test_report_is_reproducible():
    generator = DiagnosticReportGenerator()
    session = make_session(OUTCOMES)
    assert generator.generate(session) == generator.generate(session)


def test_report_requires_completed_session():
    with pytest.raises(InvalidState):
        DiagnosticReportGenerator().generate(make_session(OUTCOMES, status=SessionStatus.IN_PROGRESS))
