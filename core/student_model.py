"""
Student Model - Concept mastery from recorded path step attempts.

Features:
    - Mastery score: correct / total across all attempts on a concept
    - Breakdown: recent exponentially weighted accuracy, consistency
    - Mastery levels (NOVICE, DEVELOPING, PROFICIENT, MASTERY)

The gating score is plain accuracy; the breakdown is informational.
"""

import math
from typing import Dict, List, Sequence

from .models import ConceptMastery, PathStepAttempt


class MasteryCalculator:
    """
    Mastery arithmetic for one (student, concept) attempt history.

    Attempts are expected oldest first.
    """

    # Recent accuracy window and decay per step back in time
    RECENT_WINDOW = 10
    RECENT_DECAY = 0.9

    # Level cut points, highest first
    LEVELS = [
        (0.85, "MASTERY"),
        (0.7, "PROFICIENT"),
        (0.4, "DEVELOPING"),
    ]
    LOWEST_LEVEL = "NOVICE"

    # ==================== Scores ====================

    def mastery(self, attempts: Sequence[PathStepAttempt]) -> float:
        if not attempts:
            return 0.0
        return sum(1 for a in attempts if a.is_correct) / len(attempts)

    def aggregate(self, student_id: str, concept_id: str,
                  attempts: Sequence[PathStepAttempt]) -> ConceptMastery:
        """Recompute the stored aggregate from the full attempt list."""
        return ConceptMastery(
            student_id=student_id,
            concept_id=concept_id,
            attempts=len(attempts),
            correct=sum(1 for a in attempts if a.is_correct),
        )

    def recent_accuracy(self, attempts: Sequence[PathStepAttempt]) -> float:
        """
        Weighted accuracy over the last RECENT_WINDOW attempts.

        The newest attempt has weight 1, the one before RECENT_DECAY, and
        so on.
        """
        recent = list(attempts)[-self.RECENT_WINDOW:]
        if not recent:
            return 0.0
        n = len(recent)
        weights = [self.RECENT_DECAY ** (n - 1 - i) for i in range(n)]
        hits = sum(w for w, a in zip(weights, recent) if a.is_correct)
        return hits / sum(weights)

    def consistency(self, attempts: Sequence[PathStepAttempt]) -> float:
        """1 minus the normalized spread of recent outcomes (1.0 below 2 attempts)."""
        recent = list(attempts)[-self.RECENT_WINDOW:]
        if len(recent) < 2:
            return 1.0
        values = [1.0 if a.is_correct else 0.0 for a in recent]
        mean = sum(values) / len(values)
        stddev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
        # stddev of a 0/1 series is at most 0.5
        return max(0.0, 1.0 - stddev / 0.5)

    def level(self, score: float) -> str:
        for cut, name in self.LEVELS:
            if score >= cut:
                return name
        return self.LOWEST_LEVEL

    def breakdown(self, student_id: str, concept_id: str,
                  attempts: Sequence[PathStepAttempt]) -> Dict:
        score = self.mastery(attempts)
        return {
            "student_id": student_id,
            "concept_id": concept_id,
            "mastery": round(score, 4),
            "recent_accuracy": round(self.recent_accuracy(attempts), 4),
            "consistency": round(self.consistency(attempts), 4),
            "attempts": len(attempts),
            "correct": sum(1 for a in attempts if a.is_correct),
            "level": self.level(score),
            "last_attempt_at": attempts[-1].attempted_at if attempts else None,
        }

    # ==================== Classification ====================

    def classify(self, scores: Dict[str, float], mastered_at: float) -> Dict[str, List[str]]:
        """Split concepts into mastered / developing / weak buckets."""
        developing_at = self.LEVELS[-1][0]
        buckets: Dict[str, List[str]] = {"mastered": [], "developing": [], "weak": []}
        for concept_id in sorted(scores):
            score = scores[concept_id]
            if score >= mastered_at:
                buckets["mastered"].append(concept_id)
            elif score >= developing_at:
                buckets["developing"].append(concept_id)
            else:
                buckets["weak"].append(concept_id)
        return buckets
