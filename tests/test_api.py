"""Tests for api/main.py"""

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_engine
from core.config import StudentProfile
from tests.conftest import make_concept, make_report


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_session_flow(client):
    started = client.post("/sessions", json={
        "student_id": "stu",
        "jurisdiction_id": "ca",
        "config": {"min_questions": 2, "max_questions": 3},
    }).json()
    session_id, item = started["session_id"], started["first_item"]
    assert "correct_option" not in item

    early = client.get(f"/sessions/{session_id}/report")
    assert early.status_code == 409
    assert early.json()["error"] == "INVALID_STATE"

    while True:
        body = client.post(f"/sessions/{session_id}/responses", json={
            "item_id": item["id"], "selected_option": "A", "elapsed_seconds": 12.5,
        }).json()
        if body["complete"]:
            break
        item = body["next_item"]

    report = client.get(f"/sessions/{session_id}/report")
    assert report.status_code == 200
    assert report.json()["session_id"] == session_id

    session = client.get(f"/sessions/{session_id}").json()
    assert session["status"] == "COMPLETED"
    assert session["questions_asked"] == body["questions_asked"]


def test_invalid_config_is_rejected(client):
    response = client.post("/sessions", json={
        "student_id": "stu",
        "jurisdiction_id": "ca",
        "config": {"min_questions": 9, "max_questions": 3},
    })
    assert response.status_code == 422


def test_not_found_body(client):
    response = client.get("/sessions/missing")
    assert response.status_code == 404
    assert response.json() == {
        "error": "NOT_FOUND",
        "detail": "session 'missing' not found",
        "retryable": False,
        "kind": "session",
        "id": "missing",
    }


def test_empty_jurisdiction_is_unavailable(client):
    response = client.post("/sessions", json={"student_id": "stu", "jurisdiction_id": "nowhere"})
    assert response.status_code == 503
    assert response.json()["error"] == "EXHAUSTED_POOL"


def test_concept_graph_endpoints(client):
    for concept_id, prereqs in (("A", []), ("B", ["A"]), ("C", ["B"])):
        response = client.post("/concepts", json={
            "id": concept_id, "jurisdiction_id": "ca", "slug": concept_id.lower(), "prerequisites": prereqs,
        })
        assert response.status_code == 200

    rejected = client.post("/concepts/A/prerequisites", json={"prerequisite_id": "C"})
    assert rejected.status_code == 422
    assert rejected.json()["error"] == "CYCLE_REJECTED"
    assert rejected.json()["retryable"] is False

    chain = client.get("/concepts/C/chain").json()
    assert [c["id"] for c in chain] == ["A", "B", "C"]

    removed = client.delete("/concepts/C/prerequisites/B").json()
    assert removed["removed"] is True

    validation = client.get("/jurisdictions/ca/graph/validation").json()
    assert validation["is_valid"]


def test_path_endpoints(client):
    client.post("/concepts", json={"id": "wiring", "jurisdiction_id": "ca", "slug": "wiring"})
    started = client.post("/sessions", json={
        "student_id": "stu", "jurisdiction_id": "ca", "config": {"min_questions": 1, "max_questions": 1},
    }).json()
    client.post(f"/sessions/{started['session_id']}/responses", json={
        "item_id": started["first_item"]["id"], "selected_option": "B",
    })

    created = client.post("/paths", json={
        "session_id": started["session_id"],
        "profile": {"student_id": "stu", "daily_goal_minutes": 45, "pace": "FAST"},
    })
    assert created.status_code == 200
    path = created.json()

    progress = client.get(f"/paths/{path['id']}/progress").json()
    assert progress["path_id"] == path["id"]
    assert "streak" in progress

    streak = client.get("/students/stu/streak").json()
    assert streak == {"current": 0, "longest": 0, "last_active": None}


def test_step_attempt_returns_events(client, engine):
    engine.create_concept(make_concept("wiring"))
    path = engine.generate_path(StudentProfile(student_id="stu"), report=make_report(weak=["wiring"]))

    response = client.post(f"/steps/{path.steps[0].id}/attempts", json={"is_correct": True, "elapsed_seconds": 40})
    body = response.json()
    assert response.status_code == 200
    assert [e["type"] for e in body["events"]] == ["STEP_COMPLETED", "STEP_UNLOCKED"]

    review = client.post(f"/steps/{path.steps[0].id}/attempts", json={"is_correct": True})
    assert review.status_code == 200
    assert review.json()["review"] is True

    mastery = client.get("/students/stu/concepts/wiring/mastery").json()
    assert mastery["attempts"] == 2
