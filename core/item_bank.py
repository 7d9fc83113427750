"""
Item Bank - Read-only access to calibrated multiple-choice items.

Loads items from JSON files, one directory per jurisdiction or flat:
    data/items/<jurisdiction>/*.json   {"items": [...]} or a single item
Items with out-of-range 3PL parameters are logged and skipped.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from loguru import logger

from .errors import NotFound
from .irt import validate_item_params
from .models import Item


class ItemBank:
    """In-memory item pool indexed by id, jurisdiction and concept."""

    OPTIONS_PER_ITEM = 4
    OPTION_LABELS = ("A", "B", "C", "D")

    def __init__(self, items: Optional[Iterable[Item]] = None):
        self.items: Dict[str, Item] = {}
        for item in items or []:
            self.add_item(item)

    @classmethod
    def from_directory(cls, data_dir: str) -> "ItemBank":
        """Load all item files under data_dir."""
        bank = cls()
        root = Path(data_dir)
        if not root.exists():
            logger.warning(f"Item bank directory {root} does not exist, starting empty")
            return bank

        for item_file in sorted(root.rglob("*.json")):
            with open(item_file, "r") as f:
                data = json.load(f)

            default_jurisdiction = item_file.parent.name if item_file.parent != root else "default"
            records = data.get("items", [data]) if isinstance(data, dict) else data
            for record in records:
                record.setdefault("jurisdiction_id", default_jurisdiction)
                bank.add_item(Item.from_dict(record))

        logger.info(f"Loaded {len(bank.items)} items from {root}")
        return bank

    def add_item(self, item: Item) -> bool:
        """Index an item; returns False if it was rejected."""
        problems = validate_item_params(item.params)
        if len(item.options) != self.OPTIONS_PER_ITEM:
            problems.append(f"expected {self.OPTIONS_PER_ITEM} options, got {len(item.options)}")
        if item.correct_option.strip().upper() not in self.OPTION_LABELS:
            problems.append(f"correct option '{item.correct_option}' is not one of {self.OPTION_LABELS}")
        if problems:
            logger.warning(f"Skipping item {item.id}: {'; '.join(problems)}")
            return False
        self.items[item.id] = item
        return True

    # ==================== Query Methods ====================

    def get_item(self, item_id: str) -> Item:
        item = self.items.get(item_id)
        if item is None:
            raise NotFound("item", item_id)
        return item

    def find_candidate_items(self, jurisdiction_id: str,
                             topic_constraints: Optional[Iterable[str]] = None,
                             exclude_ids: Iterable[str] = ()) -> List[Item]:
        """Items of a jurisdiction, optionally limited to topics, minus exclusions."""
        excluded = set(exclude_ids)
        topics = set(topic_constraints) if topic_constraints else None
        return [
            item for item in sorted(self.items.values(), key=lambda i: i.id)
            if item.jurisdiction_id == jurisdiction_id
            and item.id not in excluded
            and (topics is None or item.topic in topics)
        ]

    def find_items_for_concept(self, concept_id: str, limit: Optional[int] = None,
                               jurisdiction_id: Optional[str] = None) -> List[Item]:
        """Items linked to a concept, easiest first, optionally within one jurisdiction."""
        linked = sorted(
            self._linked_items(concept_id, jurisdiction_id),
            key=lambda i: (i.params.b, i.id),
        )
        return linked[:limit] if limit is not None else linked

    def count_items_for_concept(self, concept_id: str, jurisdiction_id: Optional[str] = None) -> int:
        return sum(1 for _ in self._linked_items(concept_id, jurisdiction_id))

    def item_counts(self, concept_ids: Iterable[str], jurisdiction_id: Optional[str] = None) -> Dict[str, int]:
        return {cid: self.count_items_for_concept(cid, jurisdiction_id) for cid in concept_ids}

    def _linked_items(self, concept_id: str, jurisdiction_id: Optional[str]) -> Iterator[Item]:
        for item in self.items.values():
            if concept_id not in item.concept_ids:
                continue
            if jurisdiction_id is not None and item.jurisdiction_id != jurisdiction_id:
                continue
            yield item
