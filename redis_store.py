"""
Redis Store - Persistence for sessions, concept graphs, paths and mastery.

Key Structure:
    {prefix}:session:{session_id}                     -> String (JSON session, versioned)
    {prefix}:session:{session_id}:report              -> String (JSON report, written once)
    {prefix}:concept:{concept_id}                     -> String (JSON concept)
    {prefix}:concept:{concept_id}:paths               -> Set (in-progress path ids using it)
    {prefix}:jurisdiction:{jurisdiction_id}:concepts  -> Set (concept ids)
    {prefix}:jurisdiction:{jurisdiction_id}:edges     -> Set (JSON [concept_id, prerequisite_id])
    {prefix}:jurisdiction:{jurisdiction_id}:exposure  -> Hash (item_id -> times administered)
    {prefix}:jurisdiction:{jurisdiction_id}:sessions  -> String (sessions started, counter)
    {prefix}:path:{path_id}                           -> String (JSON learning path, versioned)
    {prefix}:step:{step_id}                           -> String (owning path id)
    {prefix}:student:{student_id}:paths               -> Set (path ids)
    {prefix}:student:{student_id}:concept:{cid}:attempts -> List (JSON attempts, oldest first)
    {prefix}:student:{student_id}:mastery             -> Hash (concept_id -> JSON aggregate)
    {prefix}:student:{student_id}:streak              -> String (JSON streak)

Every reader/writer takes an optional `conn` so it can run on a watched
pipeline inside transaction(); writes on such a pipeline must come after
pipe.multi().
"""

import json
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import redis
from loguru import logger
from redis.exceptions import WatchError

from core.config import KEY_PREFIX, REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from core.errors import ConcurrencyConflict, NotFound
from core.knowledge_graph import ConceptGraph
from core.models import (
    AssessmentSession,
    Concept,
    ConceptMastery,
    DiagnosticReport,
    LearningPath,
    PathStatus,
    PathStepAttempt,
)


class RedisStore:
    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = KEY_PREFIX):
        """Connect to Redis using environment settings unless a client is given."""
        self.client = client or redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD,
            db=REDIS_DB,
            decode_responses=True  # Return strings instead of bytes
        )
        self.prefix = prefix

    # ==================== Key Builders ====================

    def _session_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}"

    def _report_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:report"

    def concept_key(self, concept_id: str) -> str:
        return f"{self.prefix}:concept:{concept_id}"

    def concept_paths_key(self, concept_id: str) -> str:
        return f"{self.prefix}:concept:{concept_id}:paths"

    def concepts_key(self, jurisdiction_id: str) -> str:
        return f"{self.prefix}:jurisdiction:{jurisdiction_id}:concepts"

    def edges_key(self, jurisdiction_id: str) -> str:
        return f"{self.prefix}:jurisdiction:{jurisdiction_id}:edges"

    def _exposure_key(self, jurisdiction_id: str) -> str:
        return f"{self.prefix}:jurisdiction:{jurisdiction_id}:exposure"

    def _session_count_key(self, jurisdiction_id: str) -> str:
        return f"{self.prefix}:jurisdiction:{jurisdiction_id}:sessions"

    def path_key(self, path_id: str) -> str:
        return f"{self.prefix}:path:{path_id}"

    def _step_key(self, step_id: str) -> str:
        return f"{self.prefix}:step:{step_id}"

    def _student_paths_key(self, student_id: str) -> str:
        return f"{self.prefix}:student:{student_id}:paths"

    def attempts_key(self, student_id: str, concept_id: str) -> str:
        return f"{self.prefix}:student:{student_id}:concept:{concept_id}:attempts"

    def mastery_key(self, student_id: str) -> str:
        return f"{self.prefix}:student:{student_id}:mastery"

    def streak_key(self, student_id: str) -> str:
        return f"{self.prefix}:student:{student_id}:streak"

    # ==================== Transactions ====================

    def transaction(self, keys: Iterable[str], work: Callable):
        """
        Run work(pipe) with `keys` watched, then EXEC.

        work reads through the pipeline (immediate mode), calls pipe.multi()
        and queues its writes. If any watched key changes before EXEC the
        transaction is discarded and ConcurrencyConflict is raised.
        """
        keys = list(keys)
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(*keys)
                result = work(pipe)
                pipe.execute()
                return result
            except WatchError:
                logger.warning(f"Concurrent write on {keys}, transaction aborted")
                raise ConcurrencyConflict(
                    "record was modified concurrently, retry the operation",
                    keys=keys,
                )

    def _cas_put(self, key: str, doc: dict, expected_version: int, kind: str, identifier: str):
        """Write a versioned document only if the stored version is unchanged."""

        def work(pipe):
            raw = pipe.get(key)
            if raw is None:
                raise NotFound(kind, identifier)
            current = json.loads(raw).get("version", 0)
            if current != expected_version:
                raise ConcurrencyConflict(
                    f"{kind} '{identifier}' is at version {current}, expected {expected_version}",
                    kind=kind,
                    id=identifier,
                )
            doc["version"] = expected_version + 1
            pipe.multi()
            pipe.set(key, json.dumps(doc))

        self.transaction([key], work)
        return expected_version + 1

    # ==================== Session Management ====================

    def create_session(self, session: AssessmentSession):
        """Store a new session; ids are unique so an existing key is a conflict."""
        created = self.client.set(self._session_key(session.id), json.dumps(session.to_dict()), nx=True)
        if not created:
            raise ConcurrencyConflict(f"session '{session.id}' already exists", id=session.id)

    def get_session(self, session_id: str, conn=None) -> AssessmentSession:
        conn = self.client if conn is None else conn
        raw = conn.get(self._session_key(session_id))
        if raw is None:
            raise NotFound("session", session_id)
        return AssessmentSession.from_dict(json.loads(raw))

    def save_session(self, session: AssessmentSession, expected_version: int) -> AssessmentSession:
        """
        Compare-and-swap on the session version.

        Raises ConcurrencyConflict when another writer got there first.
        """
        session.version = self._cas_put(
            self._session_key(session.id), session.to_dict(), expected_version, "session", session.id,
        )
        return session

    def get_report(self, session_id: str) -> Optional[DiagnosticReport]:
        raw = self.client.get(self._report_key(session_id))
        if raw is None:
            return None
        return DiagnosticReport.from_dict(json.loads(raw))

    def save_report(self, report: DiagnosticReport) -> DiagnosticReport:
        """Cache a report; the first write wins and is what gets returned."""
        key = self._report_key(report.session_id)
        self.client.set(key, json.dumps(report.to_dict()), nx=True)
        return DiagnosticReport.from_dict(json.loads(self.client.get(key)))

    # ==================== Item Exposure ====================

    def get_exposure(self, jurisdiction_id: str, conn=None) -> Tuple[Dict[str, int], int]:
        """(item id -> times administered, sessions started) for a jurisdiction."""
        conn = self.client if conn is None else conn
        usage = {item_id: int(count) for item_id, count in conn.hgetall(self._exposure_key(jurisdiction_id)).items()}
        total = conn.get(self._session_count_key(jurisdiction_id))
        return usage, int(total or 0)

    def record_exposure(self, jurisdiction_id: str, item_id: str, new_session: bool = False):
        """Count one administration of an item, and a new session if it opens one."""
        with self.client.pipeline(transaction=True) as pipe:
            pipe.hincrby(self._exposure_key(jurisdiction_id), item_id, 1)
            if new_session:
                pipe.incr(self._session_count_key(jurisdiction_id))
            pipe.execute()

    # ==================== Concept Graph ====================

    def save_concept(self, concept: Concept, conn=None):
        """Store a concept record. Prerequisite edges are kept separately."""
        conn = self.client if conn is None else conn
        doc = concept.to_dict()
        doc["prerequisites"] = []
        conn.set(self.concept_key(concept.id), json.dumps(doc))
        conn.sadd(self.concepts_key(concept.jurisdiction_id), concept.id)

    def concept_exists(self, concept_id: str, conn=None) -> bool:
        conn = self.client if conn is None else conn
        return bool(conn.exists(self.concept_key(concept_id)))

    def get_concept(self, concept_id: str, conn=None) -> Concept:
        conn = self.client if conn is None else conn
        raw = conn.get(self.concept_key(concept_id))
        if raw is None:
            raise NotFound("concept", concept_id)
        concept = Concept.from_dict(json.loads(raw))
        concept.prerequisites = sorted(
            prereq for cid, prereq in self.get_edges(concept.jurisdiction_id, conn=conn) if cid == concept_id
        )
        return concept

    def get_edges(self, jurisdiction_id: str, conn=None) -> List[Tuple[str, str]]:
        conn = self.client if conn is None else conn
        return sorted(tuple(json.loads(raw)) for raw in conn.smembers(self.edges_key(jurisdiction_id)))

    def load_graph(self, jurisdiction_id: str, conn=None) -> ConceptGraph:
        """Build a fresh graph snapshot from the committed concepts and edges."""
        conn = self.client if conn is None else conn
        concept_ids = sorted(conn.smembers(self.concepts_key(jurisdiction_id)))
        edges = self.get_edges(jurisdiction_id, conn=conn)

        concepts = []
        if concept_ids:
            docs = conn.mget([self.concept_key(cid) for cid in concept_ids])
            for raw in docs:
                if raw is not None:
                    concepts.append(Concept.from_dict(json.loads(raw)))

        prereqs: Dict[str, List[str]] = {}
        for cid, prereq in edges:
            prereqs.setdefault(cid, []).append(prereq)
        for concept in concepts:
            concept.prerequisites = sorted(prereqs.get(concept.id, []))

        return ConceptGraph(concepts, edges)

    def add_edge(self, jurisdiction_id: str, concept_id: str, prerequisite_id: str, conn=None):
        conn = self.client if conn is None else conn
        conn.sadd(self.edges_key(jurisdiction_id), json.dumps([concept_id, prerequisite_id]))

    def remove_edge(self, jurisdiction_id: str, concept_id: str, prerequisite_id: str, conn=None):
        conn = self.client if conn is None else conn
        return conn.srem(self.edges_key(jurisdiction_id), json.dumps([concept_id, prerequisite_id]))

    def delete_concept(self, concept: Concept, edges: Iterable[Tuple[str, str]], conn=None):
        """Remove a concept record and every edge touching it."""
        conn = self.client if conn is None else conn
        conn.delete(self.concept_key(concept.id), self.concept_paths_key(concept.id))
        conn.srem(self.concepts_key(concept.jurisdiction_id), concept.id)
        for cid, prereq in edges:
            if concept.id in (cid, prereq):
                conn.srem(self.edges_key(concept.jurisdiction_id), json.dumps([cid, prereq]))

    def active_path_ids(self, concept_id: str, conn=None) -> List[str]:
        conn = self.client if conn is None else conn
        return sorted(conn.smembers(self.concept_paths_key(concept_id)))

    # ==================== Learning Paths ====================

    def create_path(self, path: LearningPath):
        """Store a new path with its step index and concept references."""
        with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self.path_key(path.id), json.dumps(path.to_dict()))
            pipe.sadd(self._student_paths_key(path.student_id), path.id)
            for step in path.steps:
                pipe.set(self._step_key(step.id), path.id)
            if path.steps and path.status == PathStatus.IN_PROGRESS:
                for concept_id in path.concept_ids:
                    pipe.sadd(self.concept_paths_key(concept_id), path.id)
            pipe.execute()

    def get_path(self, path_id: str, conn=None) -> LearningPath:
        conn = self.client if conn is None else conn
        raw = conn.get(self.path_key(path_id))
        if raw is None:
            raise NotFound("path", path_id)
        return LearningPath.from_dict(json.loads(raw))

    def put_path(self, path: LearningPath, conn=None):
        conn = self.client if conn is None else conn
        conn.set(self.path_key(path.id), json.dumps(path.to_dict()))

    def release_path(self, path: LearningPath, conn=None):
        """Drop a finished path from its concepts' in-progress sets."""
        conn = self.client if conn is None else conn
        for concept_id in path.concept_ids:
            conn.srem(self.concept_paths_key(concept_id), path.id)

    def path_id_for_step(self, step_id: str) -> str:
        path_id = self.client.get(self._step_key(step_id))
        if path_id is None:
            raise NotFound("step", step_id)
        return path_id

    def get_student_path_ids(self, student_id: str) -> List[str]:
        return sorted(self.client.smembers(self._student_paths_key(student_id)))

    # ==================== Attempts & Mastery ====================

    def get_attempts(self, student_id: str, concept_id: str, conn=None) -> List[PathStepAttempt]:
        conn = self.client if conn is None else conn
        raw = conn.lrange(self.attempts_key(student_id, concept_id), 0, -1)
        return [PathStepAttempt.from_dict(json.loads(a)) for a in raw]

    def append_attempt(self, student_id: str, concept_id: str, attempt: PathStepAttempt, conn=None):
        conn = self.client if conn is None else conn
        conn.rpush(self.attempts_key(student_id, concept_id), json.dumps(attempt.to_dict()))

    def get_mastery(self, student_id: str, concept_id: str, conn=None) -> ConceptMastery:
        conn = self.client if conn is None else conn
        raw = conn.hget(self.mastery_key(student_id), concept_id)
        if raw is None:
            return ConceptMastery(student_id=student_id, concept_id=concept_id)
        return ConceptMastery.from_dict(json.loads(raw))

    def get_mastery_scores(self, student_id: str, conn=None) -> Dict[str, float]:
        """Concept id -> mastery score for every concept the student attempted."""
        conn = self.client if conn is None else conn
        raw = conn.hgetall(self.mastery_key(student_id))
        return {cid: ConceptMastery.from_dict(json.loads(v)).mastery for cid, v in raw.items()}

    def put_mastery(self, mastery: ConceptMastery, conn=None):
        conn = self.client if conn is None else conn
        conn.hset(self.mastery_key(mastery.student_id), mastery.concept_id, json.dumps(mastery.to_dict()))

    def get_streak(self, student_id: str, conn=None) -> Dict:
        conn = self.client if conn is None else conn
        raw = conn.get(self.streak_key(student_id))
        if raw is None:
            return {"current": 0, "longest": 0, "last_active": None}
        return json.loads(raw)

    def put_streak(self, student_id: str, streak: Dict, conn=None):
        conn = self.client if conn is None else conn
        conn.set(self.streak_key(student_id), json.dumps(streak))

    # ==================== Health ====================

    def ping(self) -> bool:
        return bool(self.client.ping())
