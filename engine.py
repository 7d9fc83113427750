"""
Adaptive Engine - Public operations of the assessment and learning path engine.

Features:
    - Adaptive sessions: start, submit responses, diagnostic report
    - Concept graph edits guarded against cycles under concurrency
    - Learning path generation and step attempt tracking
    - Mastery, progress and streak queries

Every public method is logged by the instrument_operations interceptor.
State lives in Redis; the engine itself keeps nothing between calls.
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from core.adaptive_tester import AdaptiveTester, ExposureStats
from core.config import AssessmentConfig, PathOptions, StudentProfile
from core.diagnostics import DiagnosticReportGenerator
from core.errors import (
    ConstraintViolation,
    CycleRejectedError,
    ExhaustedPool,
    InvalidState,
    NotFound,
    SessionExpired,
)
from core.irt import clamp_theta, estimate_ability, item_information
from core.item_bank import ItemBank
from core.log import instrument_operations
from core.models import (
    AssessmentSession,
    Concept,
    DiagnosticReport,
    Item,
    LearningPath,
    PathStatus,
    PathStep,
    PathStepAttempt,
    Response,
    SessionStatus,
    StepStatus,
    StepType,
    StopReason,
)
from core.student_model import MasteryCalculator
from learning.path_generator import LearningPathGenerator
from learning.progress_tracker import DifficultyAdjustment, ProgressChannel, ProgressTracker
from redis_store import RedisStore

OPTION_LABELS = ("A", "B", "C", "D")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@instrument_operations
class AdaptiveEngine:
    """
    Stateless facade over the store, item bank and algorithms.

    Args:
        store: Redis persistence
        item_bank: calibrated item pool
        path_options: learning path knobs (generation and gating)
        clock: returns the current aware datetime (injectable for tests)
        id_factory: returns new record ids
    """

    def __init__(self, store: RedisStore, item_bank: ItemBank,
                 path_options: Optional[PathOptions] = None,
                 clock: Callable[[], datetime] = _utcnow,
                 id_factory: Callable[[], str] = _new_id):
        self.store = store
        self.item_bank = item_bank
        self.path_options = path_options or PathOptions()
        self.clock = clock
        self.id_factory = id_factory

        self.reports = DiagnosticReportGenerator()
        self.calculator = MasteryCalculator()
        self.path_generator = LearningPathGenerator(item_bank, self.path_options)
        self.tracker = ProgressTracker(self.path_options, self.calculator)

    # ==================== Assessment Sessions ====================

    def start_session(self, student_id: str, jurisdiction_id: str,
                      config: Optional[AssessmentConfig] = None) -> dict:
        """Create a session and pick its first item at the prior ability."""
        config = config or AssessmentConfig()
        tester = AdaptiveTester(config)

        pool = self.item_bank.find_candidate_items(jurisdiction_id)
        selection = tester.select_next(0.0, [], pool, {}, self._exposure(config, jurisdiction_id))
        if selection is None:
            raise ExhaustedPool(
                f"no items available for jurisdiction '{jurisdiction_id}'",
                jurisdiction_id=jurisdiction_id,
            )

        session = AssessmentSession(
            id=self.id_factory(),
            student_id=student_id,
            jurisdiction_id=jurisdiction_id,
            config=config,
            started_at=self.clock().isoformat(),
            current_item_id=selection.item.id,
        )
        self.store.create_session(session)
        self.store.record_exposure(jurisdiction_id, selection.item.id, new_session=True)

        return {
            "session_id": session.id,
            "first_item": selection.item.to_public_dict(),
            "theta": session.current_theta,
            "se": session.current_se,
        }

    def submit_response(self, session_id: str, item_id: str, selected_option: str,
                        elapsed_seconds: float) -> dict:
        """
        Score the pending item, re-estimate ability and pick the next item.

        Raises:
            InvalidState: session not IN_PROGRESS, or item is not the pending one
            SessionExpired: time limit passed (session is stored as EXPIRED)
            ExhaustedPool: no item left before a stopping rule fired
                           (session is stored as ABORTED)
            ConcurrencyConflict: another submission changed the session first
        """
        session = self.store.get_session(session_id)
        base_version = session.version

        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidState(
                f"session '{session_id}' is {session.status.value}",
                session_id=session_id,
                status=session.status.value,
            )

        now = self.clock()
        if self._time_exceeded(session, now):
            self._finish(session, SessionStatus.EXPIRED, StopReason.TIME_EXPIRED, now)
            self.store.save_session(session, base_version)
            raise SessionExpired(
                f"session '{session_id}' exceeded its {session.config.time_limit_seconds}s time limit",
                session_id=session_id,
            )

        if item_id != session.current_item_id:
            raise InvalidState(
                f"item '{item_id}' is not the pending item of session '{session_id}'",
                session_id=session_id,
                expected_item_id=session.current_item_id,
            )
        option = (selected_option or "").strip().upper()
        if option not in OPTION_LABELS:
            raise ConstraintViolation(
                f"selected option must be one of {', '.join(OPTION_LABELS)}",
                selected_option=selected_option,
            )

        item = self.item_bank.get_item(item_id)
        self._append_response(session, item, option, elapsed_seconds)

        tester = AdaptiveTester(session.config)
        stop, reason = tester.should_stop(session.questions_asked, session.current_se)
        if stop:
            self._finish(session, SessionStatus.COMPLETED, reason, now)
        else:
            pool = self.item_bank.find_candidate_items(
                session.jurisdiction_id, exclude_ids=session.administered_ids,
            )
            selection = tester.select_next(
                session.current_theta, session.administered_ids, pool, session.topic_counts(),
                self._exposure(session.config, session.jurisdiction_id),
            )
            if selection is None:
                self._finish(session, SessionStatus.ABORTED, StopReason.POOL_EXHAUSTED, now)
                self.store.save_session(session, base_version)
                raise ExhaustedPool(
                    f"item pool exhausted after {session.questions_asked} questions",
                    session_id=session_id,
                    questions_asked=session.questions_asked,
                )
            session.current_item_id = selection.item.id

        self.store.save_session(session, base_version)

        next_item = None
        if session.current_item_id:
            self.store.record_exposure(session.jurisdiction_id, session.current_item_id)
            next_item = self.item_bank.get_item(session.current_item_id).to_public_dict()
        return {
            "complete": session.status == SessionStatus.COMPLETED,
            "is_correct": session.responses[-1].is_correct,
            "theta": round(clamp_theta(session.current_theta), 4),
            "se": round(session.current_se, 4),
            "questions_asked": session.questions_asked,
            "termination_reason": session.termination_reason.value if session.termination_reason else None,
            "next_item": next_item,
        }

    def get_session(self, session_id: str) -> AssessmentSession:
        return self.store.get_session(session_id)

    def get_report(self, session_id: str) -> DiagnosticReport:
        """Diagnostic report of a COMPLETED session, generated once and cached."""
        cached = self.store.get_report(session_id)
        if cached is not None:
            return cached
        session = self.store.get_session(session_id)
        report = self.reports.generate(session)
        return self.store.save_report(report)

    def _exposure(self, config: AssessmentConfig, jurisdiction_id: str) -> Optional[ExposureStats]:
        if not config.exposure_control:
            return None
        usage, total_sessions = self.store.get_exposure(jurisdiction_id)
        return ExposureStats(usage=usage, total_sessions=total_sessions)

    def _append_response(self, session: AssessmentSession, item: Item, option: str,
                         elapsed_seconds: float):
        theta_before, se_before = session.current_theta, session.current_se
        correct = item.is_correct(option)

        pairs = [(r.params, r.is_correct) for r in session.responses]
        pairs.append((item.params, correct))
        estimate = estimate_ability(pairs)

        session.responses.append(Response(
            sequence=len(session.responses),
            item_id=item.id,
            selected_option=option,
            is_correct=correct,
            params=item.params,
            topic=item.topic,
            concept_ids=list(item.concept_ids),
            theta_before=theta_before,
            se_before=se_before,
            theta_after=estimate.theta,
            se_after=estimate.se,
            information=item_information(theta_before, item.params),
            elapsed_seconds=float(elapsed_seconds),
        ))
        session.current_theta = estimate.theta
        session.current_se = estimate.se

    def _time_exceeded(self, session: AssessmentSession, now: datetime) -> bool:
        limit = session.config.time_limit_seconds
        if not limit:
            return False
        started = datetime.fromisoformat(session.started_at)
        return (now - started).total_seconds() > limit

    def _finish(self, session: AssessmentSession, status: SessionStatus,
                reason: StopReason, now: datetime):
        session.status = status
        session.termination_reason = reason
        session.completed_at = now.isoformat()
        session.current_item_id = None
        logger.info(f"Session {session.id} {status.value} ({reason.value}) after {session.questions_asked} questions")

    # ==================== Concept Graph ====================

    def create_concept(self, concept: Concept) -> Concept:
        """
        Store a concept together with its prerequisite edges.

        Prerequisites are checked before anything is written; the record
        and all of its edges then commit in one watched transaction, so a
        rejected concept leaves nothing behind.
        """
        if self.store.concept_exists(concept.id):
            raise ConstraintViolation(f"concept '{concept.id}' already exists", concept_id=concept.id)
        jurisdiction_id = concept.jurisdiction_id
        prerequisites = list(dict.fromkeys(concept.prerequisites))
        for prereq_id in prerequisites:
            if prereq_id == concept.id:
                raise CycleRejectedError(concept.id, prereq_id)
            self._check_same_jurisdiction(concept, self.store.get_concept(prereq_id))

        keys = [
            self.store.concept_key(concept.id),
            self.store.concepts_key(jurisdiction_id),
            self.store.edges_key(jurisdiction_id),
        ]

        def work(pipe):
            if self.store.concept_exists(concept.id, conn=pipe):
                raise ConstraintViolation(f"concept '{concept.id}' already exists", concept_id=concept.id)
            graph = self.store.load_graph(jurisdiction_id, conn=pipe)
            for prereq_id in prerequisites:
                if prereq_id not in graph:
                    raise NotFound("concept", prereq_id)
                if graph.would_create_cycle(concept.id, prereq_id):
                    raise CycleRejectedError(concept.id, prereq_id)
            pipe.multi()
            self.store.save_concept(concept, conn=pipe)
            for prereq_id in prerequisites:
                self.store.add_edge(jurisdiction_id, concept.id, prereq_id, conn=pipe)

        self.store.transaction(keys, work)
        return self.store.get_concept(concept.id)

    def get_concept(self, concept_id: str) -> Concept:
        return self.store.get_concept(concept_id)

    def delete_concept(self, concept_id: str) -> dict:
        """Delete a concept unless an in-progress learning path still uses it."""
        concept = self.store.get_concept(concept_id)
        keys = [
            self.store.concept_paths_key(concept_id),
            self.store.edges_key(concept.jurisdiction_id),
        ]

        def work(pipe):
            active = [
                path_id for path_id in self.store.active_path_ids(concept_id, conn=pipe)
                if self._path_in_progress(path_id, pipe)
            ]
            if active:
                raise ConstraintViolation(
                    f"concept '{concept_id}' is used by {len(active)} in-progress learning path(s)",
                    concept_id=concept_id,
                    path_ids=active,
                )
            edges = self.store.get_edges(concept.jurisdiction_id, conn=pipe)
            pipe.multi()
            self.store.delete_concept(concept, edges, conn=pipe)

        self.store.transaction(keys, work)
        return {"deleted": concept_id}

    def _path_in_progress(self, path_id: str, conn) -> bool:
        try:
            return self.store.get_path(path_id, conn=conn).status == PathStatus.IN_PROGRESS
        except NotFound:
            return False

    def add_prerequisite(self, concept_id: str, prerequisite_id: str) -> dict:
        """
        Add the edge concept -> prerequisite.

        Both endpoints and the cycle check are re-read from the graph
        rebuilt inside the same watched transaction that writes the edge.
        """
        concept = self.store.get_concept(concept_id)
        self._check_same_jurisdiction(concept, self.store.get_concept(prerequisite_id))
        jurisdiction_id = concept.jurisdiction_id

        def work(pipe):
            graph = self.store.load_graph(jurisdiction_id, conn=pipe)
            for node in (concept_id, prerequisite_id):
                if node not in graph:
                    raise NotFound("concept", node)
            if graph.would_create_cycle(concept_id, prerequisite_id):
                raise CycleRejectedError(concept_id, prerequisite_id)
            pipe.multi()
            self.store.add_edge(jurisdiction_id, concept_id, prerequisite_id, conn=pipe)

        keys = [self.store.concepts_key(jurisdiction_id), self.store.edges_key(jurisdiction_id)]
        self.store.transaction(keys, work)
        return {"concept_id": concept_id, "prerequisite_id": prerequisite_id}

    def _check_same_jurisdiction(self, concept: Concept, prereq: Concept):
        if concept.jurisdiction_id != prereq.jurisdiction_id:
            raise ConstraintViolation(
                "prerequisites must belong to the same jurisdiction",
                concept_id=concept.id,
                prerequisite_id=prereq.id,
            )

    def remove_prerequisite(self, concept_id: str, prerequisite_id: str) -> dict:
        concept = self.store.get_concept(concept_id)
        removed = self.store.remove_edge(concept.jurisdiction_id, concept_id, prerequisite_id)
        return {"concept_id": concept_id, "prerequisite_id": prerequisite_id, "removed": bool(removed)}

    def get_prerequisite_chain(self, concept_id: str) -> List[Concept]:
        """Transitive prerequisites in learning order, the concept itself last."""
        concept = self.store.get_concept(concept_id)
        graph = self.store.load_graph(concept.jurisdiction_id)
        return [graph.get_concept(cid) for cid in graph.prerequisite_chain(concept_id)]

    def validate_graph(self, jurisdiction_id: str) -> dict:
        graph = self.store.load_graph(jurisdiction_id)
        return graph.validate(self.item_bank.item_counts(graph.concepts, jurisdiction_id))

    def graph_visualization(self, jurisdiction_id: str, student_id: Optional[str] = None) -> dict:
        graph = self.store.load_graph(jurisdiction_id)
        mastery = self.store.get_mastery_scores(student_id) if student_id else None
        return graph.to_visualization(mastery)

    # ==================== Learning Paths ====================

    def generate_path(self, profile: StudentProfile, session_id: Optional[str] = None,
                      report: Optional[DiagnosticReport] = None) -> LearningPath:
        """Build and store a learning path from a report (or a session's report)."""
        if report is None:
            if session_id is None:
                raise ConstraintViolation("either session_id or report is required")
            report = self.get_report(session_id)
        if report.student_id != profile.student_id:
            raise ConstraintViolation(
                f"report belongs to student '{report.student_id}', not '{profile.student_id}'",
                session_id=report.session_id,
            )

        graph = self.store.load_graph(report.jurisdiction_id)
        mastery = self.store.get_mastery_scores(profile.student_id)
        path = self.path_generator.generate(
            path_id=self.id_factory(),
            report=report,
            graph=graph,
            profile=profile,
            created_at=self.clock().isoformat(),
            mastery=mastery,
        )
        self.store.create_path(path)
        return path

    def get_path(self, path_id: str) -> LearningPath:
        return self.store.get_path(path_id)

    def record_step_attempt(self, step_id: str, item_id: Optional[str], is_correct: bool,
                            elapsed_seconds: float, channel: Optional[ProgressChannel] = None) -> dict:
        """
        Record an attempt on a path step and advance the path.

        Path state, attempt log, mastery aggregate and streak commit in one
        watched transaction. Events go to `channel` after the commit.
        """
        path_id = self.store.path_id_for_step(step_id)
        snapshot = self.store.get_path(path_id)
        step = snapshot.step_by_id(step_id)
        if step is None:
            raise NotFound("step", step_id)
        student_id, concept_id = snapshot.student_id, step.concept_id

        if step.type == StepType.PRACTICE_SET and item_id is not None and item_id not in step.item_ids:
            raise ConstraintViolation(
                f"item '{item_id}' is not part of step '{step_id}'",
                step_id=step_id,
                item_id=item_id,
            )

        now = self.clock()
        attempt = PathStepAttempt(
            step_id=step_id,
            item_id=item_id,
            is_correct=bool(is_correct),
            elapsed_seconds=float(elapsed_seconds),
            attempted_at=now.isoformat(),
        )
        keys = [
            self.store.path_key(path_id),
            self.store.attempts_key(student_id, concept_id),
            self.store.mastery_key(student_id),
            self.store.streak_key(student_id),
        ]

        def work(pipe):
            path = self.store.get_path(path_id, conn=pipe)
            history = self.store.get_attempts(student_id, concept_id, conn=pipe)
            aggregate = self.calculator.aggregate(student_id, concept_id, history + [attempt])

            mastery = self.store.get_mastery_scores(student_id, conn=pipe)
            mastery[concept_id] = aggregate.mastery

            graph = self.store.load_graph(path.jurisdiction_id, conn=pipe)
            outcome = self.tracker.apply_attempt(path, attempt, graph, mastery)
            adjustment = self._retarget_practice(path, outcome.step, history + [attempt])
            streak = self.tracker.update_streak(self.store.get_streak(student_id, conn=pipe), now.date())
            path.version += 1

            pipe.multi()
            self.store.put_path(path, conn=pipe)
            self.store.append_attempt(student_id, concept_id, attempt, conn=pipe)
            self.store.put_mastery(aggregate, conn=pipe)
            self.store.put_streak(student_id, streak, conn=pipe)
            if outcome.path_completed:
                self.store.release_path(path, conn=pipe)
            return outcome, aggregate, streak, adjustment

        outcome, aggregate, streak, adjustment = self.store.transaction(keys, work)

        if channel is not None:
            for event in outcome.events:
                channel.publish(event)

        result = outcome.to_dict()
        result["mastery"] = round(aggregate.mastery, 4)
        result["streak"] = streak
        result["difficulty"] = adjustment.to_dict() if adjustment else None
        return result

    def _retarget_practice(self, path: LearningPath, step: PathStep,
                           attempts: List[PathStepAttempt]) -> Optional[DifficultyAdjustment]:
        """Re-aim the unattempted items of an open practice step at a new difficulty."""
        if step.type != StepType.PRACTICE_SET or step.status != StepStatus.IN_PROGRESS:
            return None
        adjustment = self.tracker.adjust_difficulty(step, attempts, path.ability)
        if adjustment.adjusted:
            attempted = [a.item_id for a in attempts if a.step_id == step.id and a.item_id]
            step.target_difficulty = adjustment.new_difficulty
            step.item_ids = self.path_generator.repick_items(
                step, path.jurisdiction_id, adjustment.new_difficulty, attempted,
            )
        return adjustment

    # ==================== Progress Queries ====================

    def get_mastery(self, student_id: str, concept_id: str) -> dict:
        attempts = self.store.get_attempts(student_id, concept_id)
        return self.calculator.breakdown(student_id, concept_id, attempts)

    def path_progress(self, path_id: str) -> dict:
        path = self.store.get_path(path_id)
        mastery = self.store.get_mastery_scores(path.student_id)
        progress = self.tracker.path_progress(path, mastery)
        progress["streak"] = self.store.get_streak(path.student_id)
        return progress

    def get_streak(self, student_id: str) -> Dict:
        return self.store.get_streak(student_id)
