"""
Configuration - environment settings and validated engine config structs.

Process settings come from the environment (a .env file is honoured).
Per-operation configuration is passed around as pydantic models so every
field is enumerated and checked up front.
"""

import math
import os
from enum import Enum
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))
KEY_PREFIX = os.getenv("PATHWISE_KEY_PREFIX", "pathwise")

ITEM_BANK_DIR = os.getenv("ITEM_BANK_DIR", "data/items")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_bool("LOG_JSON", False)


class AssessmentConfig(BaseModel):
    """Stopping and content-balancing rules for one adaptive session."""

    min_questions: int = Field(10, ge=1)
    max_questions: int = Field(25, ge=1)
    se_threshold: float = Field(0.3, gt=0)
    time_limit_seconds: Optional[int] = Field(None, gt=0)

    # No topic may exceed topic_cap items among the first topic_cap_window items.
    topic_cap: Optional[int] = Field(3, ge=1)
    topic_cap_window: Optional[int] = Field(None, ge=1)
    topic_minimums: Dict[str, int] = Field(default_factory=dict)

    # Rank over-used items lower (usage counted per jurisdiction)
    exposure_control: bool = True

    @field_validator("topic_minimums")
    @classmethod
    def _positive_minimums(cls, value: Dict[str, int]) -> Dict[str, int]:
        for topic, count in value.items():
            if count < 1:
                raise ValueError(f"topic minimum for '{topic}' must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "AssessmentConfig":
        if self.min_questions > self.max_questions:
            raise ValueError("min_questions cannot exceed max_questions")
        return self

    @property
    def cap_window(self) -> int:
        return self.topic_cap_window or self.min_questions


class PathOptions(BaseModel):
    """Knobs for learning path generation and gating."""

    items_per_concept: int = Field(5, ge=1)
    required_accuracy: float = Field(0.75, gt=0, le=1)
    milestone_every: int = Field(4, ge=1)
    xp_per_step: int = Field(25, ge=0)
    mastery_threshold: float = Field(0.75, gt=0, le=1)
    minutes_per_item: int = Field(2, ge=1)


class Pace(str, Enum):
    SLOW = "SLOW"
    MEDIUM = "MEDIUM"
    FAST = "FAST"


PACE_MULTIPLIERS = {
    Pace.SLOW: 0.7,
    Pace.MEDIUM: 1.0,
    Pace.FAST: 1.3,
}


class StudentProfile(BaseModel):
    """Study pace used to turn total minutes into a day estimate."""

    student_id: str
    daily_goal_minutes: int = Field(30, gt=0)
    pace: Pace = Pace.MEDIUM
    pace_multiplier: Optional[float] = Field(None, gt=0)

    @property
    def effective_multiplier(self) -> float:
        if self.pace_multiplier is not None:
            return self.pace_multiplier
        return PACE_MULTIPLIERS[self.pace]

    def estimate_days(self, total_minutes: int) -> int:
        if total_minutes <= 0:
            return 0
        adjusted = self.daily_goal_minutes * self.effective_multiplier
        return math.ceil(total_minutes / adjusted)
