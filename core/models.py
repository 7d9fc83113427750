"""
Domain records shared by the assessment loop and the learning path layer.

Every persisted record round-trips through to_dict/from_dict so the
Redis store can keep it as a JSON document.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .config import AssessmentConfig


class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    ABORTED = "ABORTED"


class StopReason(str, Enum):
    CONTINUE = "CONTINUE"
    MAX_REACHED = "MAX_REACHED"
    PRECISION_REACHED = "PRECISION_REACHED"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    TIME_EXPIRED = "TIME_EXPIRED"


class StepType(str, Enum):
    CONCEPT_STUDY = "CONCEPT_STUDY"
    PRACTICE_SET = "PRACTICE_SET"


class StepStatus(str, Enum):
    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class MilestoneStatus(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"


class PathStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# ==================== Item Bank ====================

@dataclass(frozen=True)
class ItemParams:
    """3PL parameters: discrimination a, difficulty b, guessing c."""
    a: float = 1.0
    b: float = 0.0
    c: float = 0.25


@dataclass(frozen=True)
class Item:
    id: str
    jurisdiction_id: str
    topic: str
    options: List[str]
    correct_option: str
    params: ItemParams = ItemParams()
    concept_ids: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    stem: str = ""

    def is_correct(self, selected_option: str) -> bool:
        return selected_option.strip().upper() == self.correct_option.strip().upper()

    def to_public_dict(self) -> dict:
        """Item as shown to a test-taker (no answer key)."""
        return {
            "id": self.id,
            "topic": self.topic,
            "stem": self.stem,
            "options": list(self.options),
            "references": list(self.references),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Item":
        params = data.get("params") or {}
        return cls(
            id=data["id"],
            jurisdiction_id=data.get("jurisdiction_id", "default"),
            topic=data.get("topic", "general"),
            options=list(data.get("options", [])),
            correct_option=data["correct_option"],
            params=ItemParams(
                a=float(params.get("a", data.get("a", 1.0))),
                b=float(params.get("b", data.get("b", 0.0))),
                c=float(params.get("c", data.get("c", 0.25))),
            ),
            concept_ids=list(data.get("concept_ids", [])),
            references=list(data.get("references", [])),
            stem=data.get("stem", ""),
        )


# ==================== Assessment ====================

@dataclass
class Response:
    """One answered item. Append-only; sequence numbers start at 0."""
    sequence: int
    item_id: str
    selected_option: str
    is_correct: bool
    params: ItemParams
    topic: str
    concept_ids: List[str]
    theta_before: float
    se_before: float
    theta_after: float
    se_after: float
    information: float
    elapsed_seconds: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Response":
        data = dict(data)
        data["params"] = ItemParams(**data["params"])
        return cls(**data)


@dataclass
class AssessmentSession:
    id: str
    student_id: str
    jurisdiction_id: str
    config: AssessmentConfig
    started_at: str
    responses: List[Response] = field(default_factory=list)
    current_theta: float = 0.0
    current_se: float = 1.0
    status: SessionStatus = SessionStatus.IN_PROGRESS
    termination_reason: Optional[StopReason] = None
    current_item_id: Optional[str] = None
    completed_at: Optional[str] = None
    version: int = 0

    @property
    def questions_asked(self) -> int:
        return len(self.responses)

    @property
    def administered_ids(self) -> List[str]:
        return [r.item_id for r in self.responses]

    def topic_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.responses:
            counts[r.topic] = counts.get(r.topic, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "jurisdiction_id": self.jurisdiction_id,
            "config": self.config.model_dump(),
            "started_at": self.started_at,
            "responses": [r.to_dict() for r in self.responses],
            "current_theta": self.current_theta,
            "current_se": self.current_se,
            "status": self.status.value,
            "termination_reason": self.termination_reason.value if self.termination_reason else None,
            "current_item_id": self.current_item_id,
            "completed_at": self.completed_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AssessmentSession":
        reason = data.get("termination_reason")
        return cls(
            id=data["id"],
            student_id=data["student_id"],
            jurisdiction_id=data["jurisdiction_id"],
            config=AssessmentConfig(**data["config"]),
            started_at=data["started_at"],
            responses=[Response.from_dict(r) for r in data.get("responses", [])],
            current_theta=data.get("current_theta", 0.0),
            current_se=data.get("current_se", 1.0),
            status=SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value)),
            termination_reason=StopReason(reason) if reason else None,
            current_item_id=data.get("current_item_id"),
            completed_at=data.get("completed_at"),
            version=data.get("version", 0),
        )


# ==================== Diagnostics ====================

@dataclass
class ConceptPerformance:
    concept_id: str
    observations: int
    correct: int
    accuracy: float


@dataclass
class TopicPerformance:
    topic: str
    questions_asked: int
    correct: int
    accuracy: float


@dataclass
class DiagnosticReport:
    session_id: str
    student_id: str
    jurisdiction_id: str
    final_theta: float
    final_se: float
    confidence_interval_95: List[float]
    questions_asked: int
    termination_reason: Optional[str]
    concept_performance: List[ConceptPerformance]
    topic_performance: List[TopicPerformance]
    weak_concepts: List[str]
    strong_concepts: List[str]
    estimated_score: float
    readiness_level: str
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DiagnosticReport":
        data = dict(data)
        data["concept_performance"] = [ConceptPerformance(**c) for c in data.get("concept_performance", [])]
        data["topic_performance"] = [TopicPerformance(**t) for t in data.get("topic_performance", [])]
        return cls(**data)


# ==================== Concept Graph ====================

@dataclass
class Concept:
    """A learning concept; prerequisites point from this concept to what it needs."""
    id: str
    jurisdiction_id: str
    slug: str
    name: str = ""
    category: str = "general"
    difficulty_tier: int = 1
    estimated_minutes: int = 20
    prerequisites: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Concept":
        return cls(
            id=data["id"],
            jurisdiction_id=data["jurisdiction_id"],
            slug=data.get("slug", data["id"]),
            name=data.get("name", ""),
            category=data.get("category", "general"),
            difficulty_tier=int(data.get("difficulty_tier", 1)),
            estimated_minutes=int(data.get("estimated_minutes", 20)),
            prerequisites=list(data.get("prerequisites", [])),
        )


# ==================== Learning Paths ====================

@dataclass
class PathStepAttempt:
    step_id: str
    item_id: Optional[str]
    is_correct: bool
    elapsed_seconds: float
    attempted_at: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PathStepAttempt":
        return cls(**data)


@dataclass
class ConceptMastery:
    """Aggregate accuracy for one (student, concept) pair."""
    student_id: str
    concept_id: str
    attempts: int = 0
    correct: int = 0

    @property
    def mastery(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.correct / self.attempts

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "concept_id": self.concept_id,
            "attempts": self.attempts,
            "correct": self.correct,
            "mastery": self.mastery,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConceptMastery":
        return cls(
            student_id=data["student_id"],
            concept_id=data["concept_id"],
            attempts=int(data.get("attempts", 0)),
            correct=int(data.get("correct", 0)),
        )


@dataclass
class PathStep:
    id: str
    index: int
    type: StepType
    concept_id: str
    title: str
    estimated_minutes: int
    required_accuracy: float
    required_attempts: int = 1
    item_ids: List[str] = field(default_factory=list)
    status: StepStatus = StepStatus.LOCKED
    attempts: int = 0
    correct: int = 0
    xp_awarded: int = 0
    seconds_spent: float = 0.0
    target_difficulty: Optional[float] = None  # set once practice is re-aimed

    @property
    def accuracy(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.correct / self.attempts

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PathStep":
        data = dict(data)
        data["type"] = StepType(data["type"])
        data["status"] = StepStatus(data["status"])
        return cls(**data)


@dataclass
class Milestone:
    index: int
    title: str
    step_indices: List[int]
    reward: Dict[str, object]
    status: MilestoneStatus = MilestoneStatus.LOCKED
    unlocked_at: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Milestone":
        data = dict(data)
        data["status"] = MilestoneStatus(data["status"])
        return cls(**data)


@dataclass
class LearningPath:
    id: str
    student_id: str
    jurisdiction_id: str
    name: str
    steps: List[PathStep]
    milestones: List[Milestone]
    estimated_minutes: int
    estimated_days: int
    created_at: str
    session_id: Optional[str] = None
    ability: float = 0.0  # theta of the report the path was built from
    status: PathStatus = PathStatus.IN_PROGRESS
    xp_total: int = 0
    version: int = 0

    @property
    def concept_ids(self) -> List[str]:
        seen: List[str] = []
        for step in self.steps:
            if step.concept_id not in seen:
                seen.append(step.concept_id)
        return seen

    def step_by_id(self, step_id: str) -> Optional[PathStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "jurisdiction_id": self.jurisdiction_id,
            "name": self.name,
            "steps": [s.to_dict() for s in self.steps],
            "milestones": [m.to_dict() for m in self.milestones],
            "estimated_minutes": self.estimated_minutes,
            "estimated_days": self.estimated_days,
            "created_at": self.created_at,
            "session_id": self.session_id,
            "ability": self.ability,
            "status": self.status.value,
            "xp_total": self.xp_total,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningPath":
        return cls(
            id=data["id"],
            student_id=data["student_id"],
            jurisdiction_id=data["jurisdiction_id"],
            name=data.get("name", ""),
            steps=[PathStep.from_dict(s) for s in data.get("steps", [])],
            milestones=[Milestone.from_dict(m) for m in data.get("milestones", [])],
            estimated_minutes=int(data.get("estimated_minutes", 0)),
            estimated_days=int(data.get("estimated_days", 0)),
            created_at=data["created_at"],
            session_id=data.get("session_id"),
            ability=float(data.get("ability", 0.0)),
            status=PathStatus(data.get("status", PathStatus.IN_PROGRESS.value)),
            xp_total=int(data.get("xp_total", 0)),
            version=int(data.get("version", 0)),
        )
