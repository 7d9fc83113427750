"""
Diagnostics - Turn a completed assessment into a diagnostic report.

Features:
    - Final ability with a 95% confidence interval
    - Per-topic and per-concept accuracy
    - Weak / strong concept classification
    - Estimated exam score and readiness level
"""

from typing import Dict, List, Tuple

from .errors import InvalidState
from .irt import clamp_theta
from .models import (
    AssessmentSession,
    ConceptPerformance,
    DiagnosticReport,
    SessionStatus,
    TopicPerformance,
)


class DiagnosticReportGenerator:
    """
    Builds reports from a session's response list.

    Pure: the report depends only on the session record, so generating it
    twice yields identical values.
    """

    # Concept classification
    WEAK_THRESHOLD = 0.6  # accuracy below this is weak
    STRONG_THRESHOLD = 0.85  # accuracy at or above this is strong
    MIN_OBSERVATIONS = 2  # fewer responses than this classify nothing

    # Score mapping: theta 0 lands on the passing score
    SCORE_ANCHOR = 70.0
    SCORE_SLOPE = 15.0

    # Readiness cut points, highest first
    READINESS_CUTS = [
        (85.0, "EXAM_READY"),
        (75.0, "READY"),
        (60.0, "DEVELOPING"),
    ]
    LOWEST_READINESS = "NOT_READY"

    CONFIDENCE_Z = 1.96

    def generate(self, session: AssessmentSession) -> DiagnosticReport:
        if session.status != SessionStatus.COMPLETED:
            raise InvalidState(
                f"session '{session.id}' is {session.status.value}, report needs COMPLETED",
                session_id=session.id,
                status=session.status.value,
            )

        theta = clamp_theta(session.current_theta)
        se = session.current_se
        concepts = self.concept_performance(session)
        score = self.estimated_score(theta)

        return DiagnosticReport(
            session_id=session.id,
            student_id=session.student_id,
            jurisdiction_id=session.jurisdiction_id,
            final_theta=round(theta, 4),
            final_se=round(se, 4),
            confidence_interval_95=[
                round(theta - self.CONFIDENCE_Z * se, 4),
                round(theta + self.CONFIDENCE_Z * se, 4),
            ],
            questions_asked=session.questions_asked,
            termination_reason=session.termination_reason.value if session.termination_reason else None,
            concept_performance=concepts,
            topic_performance=self.topic_performance(session),
            weak_concepts=[c.concept_id for c in concepts if self.is_weak(c)],
            strong_concepts=[c.concept_id for c in concepts if self.is_strong(c)],
            estimated_score=score,
            readiness_level=self.readiness_level(score),
            completed_at=session.completed_at,
        )

    # ==================== Performance ====================

    def concept_performance(self, session: AssessmentSession) -> List[ConceptPerformance]:
        stats: Dict[str, Tuple[int, int]] = {}
        for response in session.responses:
            for concept_id in response.concept_ids:
                correct, total = stats.get(concept_id, (0, 0))
                stats[concept_id] = (correct + int(response.is_correct), total + 1)

        return [
            ConceptPerformance(
                concept_id=concept_id,
                observations=total,
                correct=correct,
                accuracy=round(correct / total, 4),
            )
            for concept_id, (correct, total) in sorted(stats.items())
        ]

    def topic_performance(self, session: AssessmentSession) -> List[TopicPerformance]:
        stats: Dict[str, Tuple[int, int]] = {}
        for response in session.responses:
            correct, total = stats.get(response.topic, (0, 0))
            stats[response.topic] = (correct + int(response.is_correct), total + 1)

        return [
            TopicPerformance(
                topic=topic,
                questions_asked=total,
                correct=correct,
                accuracy=round(correct / total, 4),
            )
            for topic, (correct, total) in sorted(stats.items())
        ]

    def is_weak(self, performance: ConceptPerformance) -> bool:
        return (performance.observations >= self.MIN_OBSERVATIONS
                and performance.accuracy < self.WEAK_THRESHOLD)

    def is_strong(self, performance: ConceptPerformance) -> bool:
        return (performance.observations >= self.MIN_OBSERVATIONS
                and performance.accuracy >= self.STRONG_THRESHOLD)

    # ==================== Scoring ====================

    def estimated_score(self, theta: float) -> float:
        """Linear, monotonic map from theta to a 0-100 percentage."""
        score = self.SCORE_ANCHOR + self.SCORE_SLOPE * theta
        return round(max(0.0, min(100.0, score)), 1)

    def readiness_level(self, score: float) -> str:
        for cut, level in self.READINESS_CUTS:
            if score >= cut:
                return level
        return self.LOWEST_READINESS
