"""
Progress Tracker - Step/milestone state machine for learning paths.

Features:
    - Step completion on attempt count + accuracy
    - Gating: a step unlocks only after every earlier step is COMPLETED
      and the scheduled prerequisites of its concept are mastered
    - XP for steps and milestones, each awarded exactly once
    - Practice difficulty nudged up or down from recent attempts
    - Daily study streaks
    - ProgressChannel: explicit publish/subscribe owned by the caller
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from core.config import PathOptions
from core.errors import InvalidState
from core.knowledge_graph import ConceptGraph
from core.models import (
    LearningPath,
    Milestone,
    MilestoneStatus,
    PathStatus,
    PathStep,
    PathStepAttempt,
    StepStatus,
    StepType,
)
from core.student_model import MasteryCalculator

from .milestones import milestone_xp, step_xp, unlock_milestones


class ProgressEventType(str, Enum):
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_UNLOCKED = "STEP_UNLOCKED"
    MILESTONE_UNLOCKED = "MILESTONE_UNLOCKED"
    PATH_COMPLETED = "PATH_COMPLETED"


@dataclass
class ProgressEvent:
    type: ProgressEventType
    path_id: str
    student_id: str
    payload: Dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "path_id": self.path_id,
            "student_id": self.student_id,
            "payload": self.payload,
        }


class ProgressChannel:
    """
    Publish/subscribe for progress events.

    Created by whoever wants the events and passed into the operation that
    produces them; there is no shared global channel.
    """

    def __init__(self):
        self._subscribers: List[Callable[[ProgressEvent], None]] = []
        self.history: List[ProgressEvent] = []

    def subscribe(self, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent):
        self.history.append(event)
        for callback in list(self._subscribers):
            callback(event)


@dataclass
class AttemptOutcome:
    """Result of applying one attempt to a path."""
    step: PathStep
    step_complete: bool
    review: bool
    xp_awarded: int
    unlocked_steps: List[PathStep] = field(default_factory=list)
    milestones_unlocked: List[Milestone] = field(default_factory=list)
    path_completed: bool = False
    events: List[ProgressEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "step_id": self.step.id,
            "step_status": self.step.status.value,
            "step_complete": self.step_complete,
            "review": self.review,
            "accuracy": round(self.step.accuracy, 4),
            "attempts": self.step.attempts,
            "xp_awarded": self.xp_awarded,
            "unlocked_steps": [s.id for s in self.unlocked_steps],
            "milestones_unlocked": [m.to_dict() for m in self.milestones_unlocked],
            "path_completed": self.path_completed,
        }


@dataclass
class DifficultyAdjustment:
    """Target difficulty change for a practice step."""
    adjusted: bool
    old_difficulty: float
    new_difficulty: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "adjusted": self.adjusted,
            "old_difficulty": round(self.old_difficulty, 4),
            "new_difficulty": round(self.new_difficulty, 4),
            "reason": self.reason,
        }


class ProgressTracker:
    """
    Applies attempts to an in-memory path.

    The caller loads the path, applies the attempt here and commits the
    mutated path; events are returned rather than published so they can
    be sent after the write succeeds.
    """

    ADJUST_MIN_ATTEMPTS = 5
    ADJUST_WINDOW = 10
    ADJUST_STEP = 0.3
    ADJUST_BAND = 1.0

    def __init__(self, options: Optional[PathOptions] = None,
                 calculator: Optional[MasteryCalculator] = None):
        self.options = options or PathOptions()
        self.calculator = calculator or MasteryCalculator()

    # ==================== Attempts ====================

    def apply_attempt(self, path: LearningPath, attempt: PathStepAttempt,
                      graph: ConceptGraph, mastery: Dict[str, float]) -> AttemptOutcome:
        """
        Record an attempt on a step and advance the path.

        Args:
            path: path holding the step (mutated)
            attempt: the new attempt
            graph: concept graph snapshot for prerequisite gating
            mastery: concept -> mastery, already including this attempt

        Raises:
            InvalidState: the step is still LOCKED
        """
        step = path.step_by_id(attempt.step_id)
        if step is None:
            raise InvalidState(f"step '{attempt.step_id}' is not part of path '{path.id}'")
        if step.status == StepStatus.LOCKED:
            raise InvalidState(
                f"step '{step.id}' is locked",
                step_id=step.id,
                status=step.status.value,
            )

        review = step.status == StepStatus.COMPLETED
        step.attempts += 1
        step.correct += int(attempt.is_correct)
        step.seconds_spent += attempt.elapsed_seconds

        outcome = AttemptOutcome(step=step, step_complete=False, review=review, xp_awarded=0)

        if not review and self.is_step_complete(step):
            step.status = StepStatus.COMPLETED
            step.xp_awarded = step_xp(step)
            outcome.step_complete = True
            outcome.xp_awarded += step.xp_awarded
            outcome.events.append(self._event(path, ProgressEventType.STEP_COMPLETED, {
                "step_id": step.id,
                "index": step.index,
                "accuracy": round(step.accuracy, 4),
                "xp": step.xp_awarded,
            }))
            logger.debug(f"Step {step.id} completed at accuracy {step.accuracy:.2f}")

        for unlocked in self.unlock_ready_steps(path, graph, mastery):
            outcome.unlocked_steps.append(unlocked)
            outcome.events.append(self._event(path, ProgressEventType.STEP_UNLOCKED, {
                "step_id": unlocked.id,
                "index": unlocked.index,
            }))

        for milestone in unlock_milestones(path, attempt.attempted_at):
            outcome.milestones_unlocked.append(milestone)
            outcome.xp_awarded += milestone_xp(milestone)
            outcome.events.append(self._event(path, ProgressEventType.MILESTONE_UNLOCKED, {
                "index": milestone.index,
                "title": milestone.title,
                "reward": milestone.reward,
            }))

        path.xp_total += outcome.xp_awarded

        if path.status == PathStatus.IN_PROGRESS and all(s.status == StepStatus.COMPLETED for s in path.steps):
            path.status = PathStatus.COMPLETED
            outcome.path_completed = True
            outcome.events.append(self._event(path, ProgressEventType.PATH_COMPLETED, {
                "xp_total": path.xp_total,
            }))
            logger.info(f"Path {path.id} completed with {path.xp_total} XP")

        return outcome

    def is_step_complete(self, step: PathStep) -> bool:
        return step.attempts >= step.required_attempts and step.accuracy >= step.required_accuracy

    # ==================== Difficulty ====================

    def adjust_difficulty(self, step: PathStep, attempts: List[PathStepAttempt],
                          theta: float) -> DifficultyAdjustment:
        """
        Nudge a practice step's target difficulty from its recent attempts.

        Looks at the step's last ADJUST_WINDOW attempts once there are at
        least ADJUST_MIN_ATTEMPTS. Accuracy above 0.9 with answers faster
        than the per-item estimate raises the target by ADJUST_STEP;
        accuracy below 0.5 lowers it. The target starts at theta and stays
        within theta +/- ADJUST_BAND.
        """
        current = step.target_difficulty if step.target_difficulty is not None else theta
        recent = [a for a in attempts if a.step_id == step.id][-self.ADJUST_WINDOW:]

        if step.type != StepType.PRACTICE_SET or len(recent) < self.ADJUST_MIN_ATTEMPTS:
            return DifficultyAdjustment(False, current, current, "not enough attempts")

        accuracy = sum(1 for a in recent if a.is_correct) / len(recent)
        average_seconds = sum(a.elapsed_seconds for a in recent) / len(recent)
        expected_seconds = step.estimated_minutes * 60.0 / max(len(step.item_ids), 1)

        if accuracy > 0.9 and average_seconds < expected_seconds:
            target, reason = current + self.ADJUST_STEP, "strong performance, harder items"
        elif accuracy < 0.5:
            target, reason = current - self.ADJUST_STEP, "low accuracy, easier items"
        else:
            return DifficultyAdjustment(False, current, current, "difficulty is appropriate")

        target = max(theta - self.ADJUST_BAND, min(theta + self.ADJUST_BAND, target))
        if target == current:
            return DifficultyAdjustment(False, current, current, "already at the difficulty limit")

        logger.info(
            f"Step {step.id} difficulty {current:.2f} -> {target:.2f} "
            f"(accuracy {accuracy:.2f}, {reason})"
        )
        return DifficultyAdjustment(True, current, target, reason)

    # ==================== Gating ====================

    def unlock_ready_steps(self, path: LearningPath, graph: ConceptGraph,
                           mastery: Dict[str, float]) -> List[PathStep]:
        """
        Unlock the first unfinished step if it is LOCKED and its gate is open.

        Only the first non-COMPLETED step can ever be unlocked, so steps are
        never opened out of order.
        """
        for step in path.steps:
            if step.status == StepStatus.COMPLETED:
                continue
            if step.status == StepStatus.LOCKED and self.prerequisites_mastered(step, path, graph, mastery):
                step.status = StepStatus.IN_PROGRESS
                return [step]
            return []
        return []

    def prerequisites_mastered(self, step: PathStep, path: LearningPath,
                               graph: ConceptGraph, mastery: Dict[str, float]) -> bool:
        """
        Direct prerequisites of the step's concept that this path schedules
        must be at the mastery threshold. Unscheduled ones were judged
        mastered when the path was generated.
        """
        scheduled = set(path.concept_ids)
        for prereq_id in graph.get_prerequisites(step.concept_id):
            if prereq_id not in scheduled or prereq_id == step.concept_id:
                continue
            if mastery.get(prereq_id, 0.0) < self.options.mastery_threshold:
                logger.debug(f"Step {step.id} stays locked: {prereq_id} below mastery threshold")
                return False
        return True

    # ==================== Progress ====================

    def path_progress(self, path: LearningPath, mastery: Dict[str, float]) -> dict:
        total = len(path.steps)
        completed = sum(1 for s in path.steps if s.status == StepStatus.COMPLETED)
        current = next((s for s in path.steps if s.status == StepStatus.IN_PROGRESS), None)
        scores = {cid: mastery.get(cid, 0.0) for cid in path.concept_ids}
        buckets = self.calculator.classify(scores, self.options.mastery_threshold)

        return {
            "path_id": path.id,
            "status": path.status.value,
            "total_steps": total,
            "completed_steps": completed,
            "percent_complete": round(100.0 * completed / total, 1) if total else 100.0,
            "current_step": current.to_dict() if current else None,
            "minutes_spent": round(sum(s.seconds_spent for s in path.steps) / 60.0, 1),
            "estimated_minutes": path.estimated_minutes,
            "concepts_mastered": buckets["mastered"],
            "concepts_developing": buckets["developing"],
            "concepts_weak": buckets["weak"],
            "milestones_unlocked": sum(1 for m in path.milestones if m.status == MilestoneStatus.UNLOCKED),
            "milestones_total": len(path.milestones),
            "xp_total": path.xp_total,
        }

    # ==================== Streaks ====================

    def update_streak(self, streak: Dict, today: date) -> Dict:
        """
        Advance a {current, longest, last_active} streak record for activity today.

        Same day: unchanged. Next day: +1. Any gap: back to 1.
        """
        last = streak.get("last_active")
        current = int(streak.get("current", 0))

        if last == today.isoformat():
            return dict(streak)
        if last == (today - timedelta(days=1)).isoformat():
            current += 1
        else:
            current = 1

        return {
            "current": current,
            "longest": max(current, int(streak.get("longest", 0))),
            "last_active": today.isoformat(),
        }

    def _event(self, path: LearningPath, event_type: ProgressEventType, payload: Dict) -> ProgressEvent:
        return ProgressEvent(type=event_type, path_id=path.id, student_id=path.student_id, payload=payload)
