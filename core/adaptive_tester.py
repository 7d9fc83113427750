"""
Adaptive Tester - Computerized Adaptive Testing (CAT).

Features:
    - Maximum Information item selection under the 3PL model
    - Exposure control: over-used items are ranked lower
    - Per-topic cap over the early part of the test
    - Required topics from configured topic minimums
    - Nearest-difficulty fallback when the preferred pool runs dry
    - Stopping rules (SE threshold, min/max questions)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from .config import AssessmentConfig
from .irt import item_information
from .models import Item, StopReason


# (exposure rate above, score multiplier), strictest first
EXPOSURE_PENALTIES = ((0.2, 0.5), (0.15, 0.75))


def exposure_penalty(times_used: int, total_sessions: int) -> float:
    """Multiplier on an item's information given how often it was administered."""
    if total_sessions <= 0:
        return 1.0
    rate = times_used / total_sessions
    for threshold, penalty in EXPOSURE_PENALTIES:
        if rate > threshold:
            return penalty
    return 1.0


@dataclass
class ExposureStats:
    """Per-item administration counts and the number of sessions they span."""
    usage: Dict[str, int] = field(default_factory=dict)
    total_sessions: int = 0

    def penalty(self, item_id: str) -> float:
        return exposure_penalty(self.usage.get(item_id, 0), self.total_sessions)


class SelectionReason(str, Enum):
    MAX_INFORMATION = "MAX_INFORMATION"
    REQUIRED_TOPIC = "REQUIRED_TOPIC"
    NEAREST_DIFFICULTY = "NEAREST_DIFFICULTY"


@dataclass
class ItemSelection:
    """The chosen item with its selection metrics."""
    item: Item
    information: float  # Fisher information at current ability
    reason: SelectionReason


class AdaptiveTester:
    """
    Item selection and termination for one assessment configuration.

    Stateless: every call receives the current theta and what has been
    administered so far, so the same tester can serve many sessions.
    """

    def __init__(self, config: Optional[AssessmentConfig] = None):
        self.config = config or AssessmentConfig()

    # ==================== Question Selection ====================

    def select_next(self, theta: float, administered_ids: Iterable[str],
                    pool: List[Item], topic_counts: Optional[Dict[str, int]] = None,
                    exposure: Optional[ExposureStats] = None) -> Optional[ItemSelection]:
        """
        Pick the next item to administer.

        Order of preference:
            1. Unmet required topic: most informative item from such a topic
            2. Otherwise: most informative item overall
        Topics at their cap are skipped while the test is inside the cap
        window. If the preferred pool is empty the item whose difficulty is
        nearest theta is used instead.

        With `exposure` given, items are ranked by information times their
        exposure penalty; the reported information stays unpenalised.

        Returns None only when every item in the pool has been administered.
        """
        administered: Set[str] = set(administered_ids)
        topic_counts = topic_counts or {}
        questions_asked = len(administered)

        available = [item for item in pool if item.id not in administered]
        if not available:
            logger.warning("No candidate items available for selection")
            return None

        eligible = self._apply_topic_cap(available, topic_counts, questions_asked)

        required = self._required_topics(topic_counts)
        if required:
            in_required = [item for item in eligible if item.topic in required]
            if in_required:
                return self._most_informative(theta, in_required, SelectionReason.REQUIRED_TOPIC, exposure)
            logger.debug(f"Required topics {sorted(required)} exhausted, falling back to nearest difficulty")
            return self._nearest_difficulty(theta, eligible or available)

        if eligible:
            return self._most_informative(theta, eligible, SelectionReason.MAX_INFORMATION, exposure)

        return self._nearest_difficulty(theta, available)

    def _apply_topic_cap(self, items: List[Item], topic_counts: Dict[str, int],
                         questions_asked: int) -> List[Item]:
        """Drop items from topics that already hit the cap inside the window."""
        cap = self.config.topic_cap
        if cap is None or questions_asked >= self.config.cap_window:
            return items
        full = {topic for topic, count in topic_counts.items() if count >= cap}
        return [item for item in items if item.topic not in full]

    def _required_topics(self, topic_counts: Dict[str, int]) -> Set[str]:
        return {
            topic for topic, minimum in self.config.topic_minimums.items()
            if topic_counts.get(topic, 0) < minimum
        }

    def _most_informative(self, theta: float, items: List[Item], reason: SelectionReason,
                          exposure: Optional[ExposureStats] = None) -> ItemSelection:
        scored = []
        for item in items:
            information = item_information(theta, item.params)
            penalty = exposure.penalty(item.id) if exposure is not None else 1.0
            scored.append((information * penalty, information, item))
        # Highest adjusted score first, ties broken by id
        scored.sort(key=lambda entry: (-entry[0], entry[2].id))
        score, information, item = scored[0]
        logger.debug(
            f"Selected {item.id} (topic={item.topic}, info={information:.3f}, "
            f"score={score:.3f}, reason={reason.value})"
        )
        return ItemSelection(item=item, information=information, reason=reason)

    def _nearest_difficulty(self, theta: float, items: List[Item]) -> ItemSelection:
        item = min(items, key=lambda i: (abs(i.params.b - theta), i.id))
        logger.debug(f"Selected {item.id} by nearest difficulty (b={item.params.b:.2f}, theta={theta:.2f})")
        return ItemSelection(
            item=item,
            information=item_information(theta, item.params),
            reason=SelectionReason.NEAREST_DIFFICULTY,
        )

    # ==================== Stopping Rules ====================

    def should_stop(self, questions_asked: int, se: float) -> Tuple[bool, StopReason]:
        """
        Check if testing should stop.

        Never stops before min_questions; always stops at max_questions.
        Returns (should_stop, reason).
        """
        if questions_asked >= self.config.max_questions:
            return True, StopReason.MAX_REACHED

        if questions_asked < self.config.min_questions:
            return False, StopReason.CONTINUE

        if se <= self.config.se_threshold:
            return True, StopReason.PRECISION_REACHED

        return False, StopReason.CONTINUE
