"""
Milestones - XP rules and milestone construction / unlocking.

Features:
    - Step XP by step type with accuracy bonuses
    - One milestone per block of consecutive steps
    - Unlock-once semantics for milestones
"""

from typing import List

from core.models import LearningPath, Milestone, MilestoneStatus, PathStep, StepStatus, StepType

# Base XP per completed step
STEP_XP = {
    StepType.CONCEPT_STUDY: 10,
    StepType.PRACTICE_SET: 25,
}

# (minimum accuracy, multiplier), highest first
ACCURACY_BONUSES = [
    (0.95, 1.5),
    (0.85, 1.25),
]


def accuracy_multiplier(accuracy: float) -> float:
    for cut, multiplier in ACCURACY_BONUSES:
        if accuracy >= cut:
            return multiplier
    return 1.0


def step_xp(step: PathStep) -> int:
    """XP for completing a step at its current accuracy."""
    return int(round(STEP_XP[step.type] * accuracy_multiplier(step.accuracy)))


def build_milestones(step_count: int, every: int, xp_per_step: int) -> List[Milestone]:
    """
    One milestone per block of `every` steps.

    A trailing partial block gets its own milestone so the final steps are
    always covered. Reward XP is proportional to the block size.
    """
    milestones = []
    for index, start in enumerate(range(0, step_count, every)):
        block = list(range(start, min(start + every, step_count)))
        milestones.append(Milestone(
            index=index,
            title=f"Milestone {index + 1}: steps {block[0] + 1}-{block[-1] + 1}",
            step_indices=block,
            reward={"type": "XP", "xp": xp_per_step * len(block)},
        ))
    return milestones


def unlock_milestones(path: LearningPath, now: str) -> List[Milestone]:
    """
    Unlock every LOCKED milestone whose steps are all COMPLETED.

    Returns only the milestones unlocked by this call; an UNLOCKED
    milestone is never returned again.
    """
    unlocked = []
    for milestone in path.milestones:
        if milestone.status != MilestoneStatus.LOCKED:
            continue
        if all(path.steps[i].status == StepStatus.COMPLETED for i in milestone.step_indices):
            milestone.status = MilestoneStatus.UNLOCKED
            milestone.unlocked_at = now
            unlocked.append(milestone)
    return unlocked


def milestone_xp(milestone: Milestone) -> int:
    return int(milestone.reward.get("xp", 0))
