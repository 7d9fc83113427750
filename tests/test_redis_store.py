"""Tests for redis_store.py (fake Redis)"""

import json

import pytest

from core.config import AssessmentConfig, StudentProfile
from core.errors import ConcurrencyConflict, NotFound
from core.knowledge_graph import ConceptGraph
from core.models import AssessmentSession, ConceptMastery, PathStepAttempt
from learning.path_generator import LearningPathGenerator
from tests.conftest import concept_bank, make_concept, make_report


def new_session(session_id="s1"):
    return AssessmentSession(
        id=session_id,
        student_id="stu",
        jurisdiction_id="ca",
        config=AssessmentConfig(min_questions=3, max_questions=6, topic_minimums={"wiring": 1}),
        started_at="2026-03-02T09:00:00+00:00",
        current_item_id="wiring-05",
    )


def new_path(weak=("X",)):
    graph = ConceptGraph([make_concept("X")])
    return LearningPathGenerator(concept_bank(["X"])).generate(
        "p1", make_report(weak=weak), graph, StudentProfile(student_id="stu"),
        "2026-03-02T09:00:00+00:00",
    )


# ==================== Sessions ====================

def test_session_roundtrip(store):
    store.create_session(new_session())
    loaded = store.get_session("s1")
    assert loaded == new_session()
    assert loaded.config.topic_minimums == {"wiring": 1}


def test_duplicate_session_id(store):
    store.create_session(new_session())
    with pytest.raises(ConcurrencyConflict):
        store.create_session(new_session())


def test_missing_session(store):
    with pytest.raises(NotFound) as info:
        store.get_session("nope")
    assert info.value.to_dict() == {
        "error": "NOT_FOUND",
        "detail": "session 'nope' not found",
        "retryable": False,
        "kind": "session",
        "id": "nope",
    }


def test_save_session_bumps_version(store):
    store.create_session(new_session())
    session = store.get_session("s1")
    session.current_theta = 0.5

    store.save_session(session, 0)
    assert session.version == 1
    assert store.get_session("s1").current_theta == 0.5

    with pytest.raises(ConcurrencyConflict):
        store.save_session(session, 0)


def test_report_first_write_wins(store):
    first = make_report(weak=["X"], session_id="s1")
    second = make_report(weak=["Y"], session_id="s1")
    assert store.get_report("s1") is None

    assert store.save_report(first).weak_concepts == ["X"]
    assert store.save_report(second).weak_concepts == ["X"]
    assert store.get_report("s1") == first


# ==================== Concept Graph ====================

def test_concept_prerequisites_come_from_edges(store):
    store.save_concept(make_concept("A"))
    store.save_concept(make_concept("B", ["A"]))
    assert store.get_concept("B").prerequisites == []

    store.add_edge("ca", "B", "A")
    assert store.get_concept("B").prerequisites == ["A"]
    assert store.get_edges("ca") == [("B", "A")]

    graph = store.load_graph("ca")
    assert sorted(graph.concepts) == ["A", "B"]
    assert graph.get_prerequisites("B") == ["A"]


def test_remove_edge_reports_count(store):
    store.add_edge("ca", "B", "A")
    assert store.remove_edge("ca", "B", "A") == 1
    assert store.remove_edge("ca", "B", "A") == 0


def test_delete_concept_drops_touching_edges(store):
    for concept in (make_concept("A"), make_concept("B"), make_concept("C")):
        store.save_concept(concept)
    store.add_edge("ca", "B", "A")
    store.add_edge("ca", "C", "B")

    store.delete_concept(store.get_concept("B"), store.get_edges("ca"))

    assert store.get_edges("ca") == []
    assert not store.concept_exists("B")
    assert sorted(store.load_graph("ca").concepts) == ["A", "C"]


def test_empty_jurisdiction_graph(store):
    graph = store.load_graph("nowhere")
    assert len(graph) == 0


# ==================== Learning Paths ====================

def test_create_path_registers_steps_and_concepts(store):
    path = new_path()
    store.create_path(path)

    assert store.get_path("p1") == path
    assert store.path_id_for_step("p1-s1") == "p1"
    assert store.get_student_path_ids("stu") == ["p1"]
    assert store.active_path_ids("X") == ["p1"]

    store.release_path(path)
    assert store.active_path_ids("X") == []


def test_completed_empty_path_is_not_active(store):
    store.create_path(new_path(weak=()))
    assert store.get_student_path_ids("stu") == ["p1"]
    assert store.active_path_ids("X") == []


def test_unknown_step(store):
    with pytest.raises(NotFound):
        store.path_id_for_step("p9-s0")


# ==================== Attempts, Mastery & Streaks ====================

def test_attempts_are_kept_in_order(store):
    for n in range(3):
        store.append_attempt("stu", "X", PathStepAttempt(
            step_id="p1-s1", item_id=f"X-{n}", is_correct=n != 1,
            elapsed_seconds=30.0, attempted_at=f"2026-03-02T09:0{n}:00+00:00",
        ))
    assert [a.item_id for a in store.get_attempts("stu", "X")] == ["X-0", "X-1", "X-2"]
    assert store.get_attempts("stu", "Y") == []


def test_mastery_defaults_and_scores(store):
    assert store.get_mastery("stu", "X") == ConceptMastery(student_id="stu", concept_id="X")
    store.put_mastery(ConceptMastery(student_id="stu", concept_id="X", attempts=4, correct=3))
    assert store.get_mastery_scores("stu") == {"X": 0.75}


def test_streak_defaults(store, redis_client):
    assert store.get_streak("stu") == {"current": 0, "longest": 0, "last_active": None}
    store.put_streak("stu", {"current": 2, "longest": 5, "last_active": "2026-03-02"})
    assert json.loads(redis_client.get(store.streak_key("stu")))["longest"] == 5
