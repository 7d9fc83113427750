"""Tests for core/item_bank.py"""

import json

import pytest

from core.errors import NotFound
from core.item_bank import ItemBank
from tests.conftest import make_item


def test_rejects_invalid_items():
    bank = ItemBank()
    assert bank.add_item(make_item("ok"))
    assert not bank.add_item(make_item("bad-params", a=0.0))
    assert not bank.add_item(make_item("bad-key", correct="E"))
    assert sorted(bank.items) == ["ok"]


def test_get_item_unknown():
    with pytest.raises(NotFound):
        ItemBank().get_item("nope")


def test_candidate_filters():
    bank = ItemBank([
        make_item("q1", topic="alg"),
        make_item("q2", topic="geo"),
        make_item("q3", topic="alg", jurisdiction="ny"),
    ])
    assert [i.id for i in bank.find_candidate_items("ca")] == ["q1", "q2"]
    assert [i.id for i in bank.find_candidate_items("ca", topic_constraints=["geo"])] == ["q2"]
    assert [i.id for i in bank.find_candidate_items("ca", exclude_ids=["q1"])] == ["q2"]


def test_items_for_concept_are_easiest_first():
    bank = ItemBank([
        make_item("hard", b=1.5, concepts=["X"]),
        make_item("easy", b=-1.0, concepts=["X", "Y"]),
        make_item("mid", b=0.2, concepts=["X"]),
    ])
    assert [i.id for i in bank.find_items_for_concept("X")] == ["easy", "mid", "hard"]
    assert [i.id for i in bank.find_items_for_concept("X", limit=2)] == ["easy", "mid"]
    assert bank.item_counts(["X", "Y", "Z"]) == {"X": 3, "Y": 1, "Z": 0}


def test_items_for_concept_within_jurisdiction():
    bank = ItemBank([
        make_item("ca-1", b=0.5, concepts=["X"]),
        make_item("ny-1", b=-2.0, concepts=["X"], jurisdiction="ny"),
    ])
    assert [i.id for i in bank.find_items_for_concept("X")] == ["ny-1", "ca-1"]
    assert [i.id for i in bank.find_items_for_concept("X", jurisdiction_id="ca")] == ["ca-1"]
    assert bank.item_counts(["X"], jurisdiction_id="ny") == {"X": 1}


def test_from_directory(tmp_path):
    jurisdiction_dir = tmp_path / "ca"
    jurisdiction_dir.mkdir()
    (jurisdiction_dir / "wiring.json").write_text(json.dumps({"items": [
        {
            "id": "w1",
            "topic": "wiring",
            "stem": "Minimum conductor size?",
            "options": ["14 AWG", "12 AWG", "10 AWG", "8 AWG"],
            "correct_option": "B",
            "params": {"a": 1.2, "b": -0.4, "c": 0.2},
            "concept_ids": ["conductors"],
        },
        {"id": "broken", "options": ["x"], "correct_option": "A"},
    ]}))

    bank = ItemBank.from_directory(str(tmp_path))
    item = bank.get_item("w1")
    assert item.jurisdiction_id == "ca"
    assert item.params.b == -0.4
    assert item.is_correct("b")
    assert "correct_option" not in item.to_public_dict()
    assert "broken" not in bank.items


def test_missing_directory_gives_empty_bank(tmp_path):
    assert ItemBank.from_directory(str(tmp_path / "absent")).items == {}
