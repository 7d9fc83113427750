"""Shared fixtures: synthetic item banks, fake Redis, a controllable clock."""

from datetime import datetime, timedelta, timezone
from itertools import count

import fakeredis
import pytest

from core.config import AssessmentConfig, PathOptions
from core.item_bank import ItemBank
from core.models import Concept, DiagnosticReport, Item, ItemParams
from engine import AdaptiveEngine
from redis_store import RedisStore

JURISDICTION = "ca"


def make_item(item_id, topic="general", b=0.0, a=1.0, c=0.25, concepts=None,
              jurisdiction=JURISDICTION, correct="A"):
    return Item(
        id=item_id,
        jurisdiction_id=jurisdiction,
        topic=topic,
        options=["opt A", "opt B", "opt C", "opt D"],
        correct_option=correct,
        params=ItemParams(a=a, b=b, c=c),
        concept_ids=list(concepts or []),
    )


def make_concept(concept_id, prerequisites=None, minutes=20, jurisdiction=JURISDICTION):
    return Concept(
        id=concept_id,
        jurisdiction_id=jurisdiction,
        slug=concept_id.lower(),
        name=f"Concept {concept_id}",
        estimated_minutes=minutes,
        prerequisites=list(prerequisites or []),
    )


def build_bank(topics=("wiring", "grounding", "services"), per_topic=12):
    """Items spread over difficulty -2..2, each linked to a concept named after its topic."""
    items = []
    for topic in topics:
        for i in range(per_topic):
            b = -2.0 + 4.0 * i / max(per_topic - 1, 1)
            items.append(make_item(f"{topic}-{i:02d}", topic=topic, b=round(b, 3),
                                   a=0.8 + 0.1 * (i % 5), concepts=[topic]))
    return ItemBank(items)


def concept_bank(concept_ids, per_concept=5):
    """A handful of items per concept, difficulty rising with the item number."""
    items = []
    for concept_id in concept_ids:
        for i in range(per_concept):
            items.append(make_item(f"{concept_id}-{i}", topic=concept_id, b=-1.0 + 0.5 * i, concepts=[concept_id]))
    return ItemBank(items)


def make_report(weak=(), strong=(), student_id="stu", session_id="sess-1"):
    return DiagnosticReport(
        session_id=session_id,
        student_id=student_id,
        jurisdiction_id=JURISDICTION,
        final_theta=0.0,
        final_se=0.3,
        confidence_interval_95=[-0.588, 0.588],
        questions_asked=10,
        termination_reason="PRECISION_REACHED",
        concept_performance=[],
        topic_performance=[],
        weak_concepts=list(weak),
        strong_concepts=list(strong),
        estimated_score=70.0,
        readiness_level="DEVELOPING",
    )


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisStore(client=redis_client, prefix="test")


@pytest.fixture
def bank():
    return build_bank()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, bank, clock):
    ids = count(1)
    return AdaptiveEngine(
        store,
        bank,
        path_options=PathOptions(items_per_concept=4, milestone_every=4),
        clock=clock,
        id_factory=lambda: f"id{next(ids)}",
    )


@pytest.fixture
def short_config():
    return AssessmentConfig(min_questions=5, max_questions=10, se_threshold=0.3)
