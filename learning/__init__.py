"""
Learning module - Learning paths built from diagnostic results.

Components:
    - path_generator: ordered, gated path from weak concepts
    - milestones: XP rules and milestone unlocking
    - progress_tracker: step state machine, streaks, progress events
"""

from .path_generator import LearningPathGenerator
from .progress_tracker import ProgressChannel, ProgressEvent, ProgressEventType, ProgressTracker

__all__ = [
    "LearningPathGenerator",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressEventType",
    "ProgressTracker",
]
