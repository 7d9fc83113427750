"""
Knowledge Graph - Concept prerequisite DAG for one jurisdiction.

Features:
    - Immutable snapshot built once per operation from the committed edges
    - Cycle guard for proposed prerequisite edges
    - Prerequisite chains and deterministic topological ordering
    - Graph validation (cycles, dangling references, orphans, depth)
    - Visualization payload with topological levels

Edges point from a concept to its prerequisites: (concept -> prerequisite).
"""

import heapq
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx
from loguru import logger

from .errors import CycleError, NotFound
from .models import Concept


class ConceptGraph:
    """
    Directed acyclic graph of concepts with prerequisites.

    The underlying networkx graph is frozen after construction, so a
    snapshot cannot drift while an operation is using it.
    """

    # Concepts deeper than this in the prerequisite chain get a warning
    MAX_RECOMMENDED_DEPTH = 6

    # Cycles reported by validate()
    MAX_REPORTED_CYCLES = 10

    def __init__(self, concepts: Iterable[Concept], edges: Optional[Iterable[Tuple[str, str]]] = None):
        """
        Build the graph.

        Args:
            concepts: concept records (their node data)
            edges: (concept_id, prerequisite_id) pairs; defaults to the
                   prerequisites listed on each concept
        """
        self.concepts: Dict[str, Concept] = {c.id: c for c in concepts}

        graph = nx.DiGraph()
        for concept_id, concept in self.concepts.items():
            graph.add_node(concept_id, concept=concept)

        if edges is None:
            edges = [(c.id, p) for c in self.concepts.values() for p in c.prerequisites]
        for concept_id, prereq_id in edges:
            graph.add_edge(concept_id, prereq_id)

        self.graph = nx.freeze(graph)

    def __contains__(self, concept_id: str) -> bool:
        return concept_id in self.concepts

    def __len__(self) -> int:
        return len(self.concepts)

    # ==================== Query Methods ====================

    def get_concept(self, concept_id: str) -> Concept:
        concept = self.concepts.get(concept_id)
        if concept is None:
            raise NotFound("concept", concept_id)
        return concept

    def get_prerequisites(self, concept_id: str) -> List[str]:
        """Direct prerequisites (one level down the chain)."""
        if concept_id not in self.graph:
            return []
        return sorted(self.graph.successors(concept_id))

    def get_dependents(self, concept_id: str) -> List[str]:
        """Concepts that list this one as a direct prerequisite."""
        if concept_id not in self.graph:
            return []
        return sorted(self.graph.predecessors(concept_id))

    def get_all_prerequisites(self, concept_id: str) -> Set[str]:
        """Every transitive prerequisite of a concept."""
        if concept_id not in self.graph:
            return set()
        return set(nx.descendants(self.graph, concept_id))

    def edges(self) -> List[Tuple[str, str]]:
        return sorted(self.graph.edges())

    # ==================== Cycle Guard ====================

    def would_create_cycle(self, concept_id: str, prerequisite_id: str) -> bool:
        """
        Would adding (concept_id -> prerequisite_id) close a loop?

        True when concept_id is reachable from prerequisite_id by following
        existing prerequisite edges. A self-edge is always a cycle.
        """
        if concept_id == prerequisite_id:
            return True
        if prerequisite_id not in self.graph or concept_id not in self.graph:
            return False

        seen = {prerequisite_id}
        queue = deque([prerequisite_id])
        while queue:
            current = queue.popleft()
            for nxt in self.graph.successors(current):
                if nxt == concept_id:
                    logger.debug(f"Edge {concept_id} -> {prerequisite_id} rejected: {prerequisite_id} already depends on {concept_id}")
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return False

    # ==================== Ordering ====================

    def topological_sort(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Kahn's algorithm: prerequisites come before their dependents.

        Only edges between nodes of `subset` (all nodes by default) are
        considered. Ties are broken by concept id so the order is stable.
        Raises CycleError if the nodes cannot all be ordered.
        """
        nodes = set(self.graph.nodes) if subset is None else set(subset)

        remaining = {
            node: sum(1 for p in self._successors(node) if p in nodes)
            for node in nodes
        }
        ready = [node for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._predecessors(node):
                if dependent not in remaining:
                    continue
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) < len(nodes):
            placed = set(order)
            raise CycleError(unresolved=[n for n in nodes if n not in placed])
        return order

    def prerequisite_chain(self, concept_id: str) -> List[str]:
        """All transitive prerequisites in topological order, concept last."""
        if concept_id not in self.concepts:
            raise NotFound("concept", concept_id)
        members = self.get_all_prerequisites(concept_id)
        members.discard(concept_id)
        order = self.topological_sort(members)
        order.append(concept_id)
        return order

    def depths(self) -> Dict[str, int]:
        """Longest prerequisite chain below each concept (0 for roots)."""
        depth: Dict[str, int] = {}
        for node in self.topological_sort():
            prereqs = self._successors(node)
            depth[node] = 1 + max(depth[p] for p in prereqs) if prereqs else 0
        return depth

    def _successors(self, node: str) -> List[str]:
        return list(self.graph.successors(node)) if node in self.graph else []

    def _predecessors(self, node: str) -> List[str]:
        return list(self.graph.predecessors(node)) if node in self.graph else []

    # ==================== Validation ====================

    def validate(self, item_counts: Optional[Dict[str, int]] = None) -> dict:
        """
        Check the graph.

        Errors: cycles, prerequisites that do not resolve to a concept.
        Warnings: concepts without linked items (when item_counts is given),
        orphans with no edges at all, concepts deeper than
        MAX_RECOMMENDED_DEPTH.
        """
        errors: List[str] = []
        warnings: List[str] = []

        cycles = []
        for cycle in nx.simple_cycles(self.graph):
            cycles.append(cycle)
            if len(cycles) >= self.MAX_REPORTED_CYCLES:
                break
        for cycle in cycles:
            errors.append(f"Cycle detected: {' -> '.join(cycle + [cycle[0]])}")

        for concept_id, prereq_id in self.edges():
            if prereq_id not in self.concepts:
                errors.append(f"Concept '{concept_id}' references non-existent prerequisite '{prereq_id}'")
            if concept_id not in self.concepts:
                errors.append(f"Edge source '{concept_id}' is not a known concept")

        roots = 0
        leaves = 0
        for concept_id in sorted(self.concepts):
            has_prereqs = self.graph.out_degree(concept_id) > 0
            has_dependents = self.graph.in_degree(concept_id) > 0
            if not has_prereqs:
                roots += 1
            if not has_dependents:
                leaves += 1
            if not has_prereqs and not has_dependents:
                warnings.append(f"Concept '{concept_id}' has no prerequisites and no dependents (orphan)")
            if item_counts is not None and item_counts.get(concept_id, 0) == 0:
                warnings.append(f"Concept '{concept_id}' has no linked items")

        max_depth = 0
        if not cycles:
            depth = self.depths()
            max_depth = max(depth.values(), default=0)
            for concept_id in sorted(self.concepts):
                if depth.get(concept_id, 0) > self.MAX_RECOMMENDED_DEPTH:
                    warnings.append(
                        f"Concept '{concept_id}' sits {depth[concept_id]} levels deep "
                        f"(more than {self.MAX_RECOMMENDED_DEPTH})"
                    )

        result = {
            "is_valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "stats": {
                "total_concepts": len(self.concepts),
                "total_edges": self.graph.number_of_edges(),
                "roots": roots,
                "leaves": leaves,
                "max_depth": max_depth,
            },
        }
        logger.debug(f"Graph validation: {len(errors)} errors, {len(warnings)} warnings")
        return result

    # ==================== Visualization ====================

    def to_visualization(self, mastery: Optional[Dict[str, float]] = None) -> dict:
        """Nodes with topological level (and mastery score if given) plus edges."""
        try:
            levels = self.depths()
        except CycleError:
            levels = {}

        nodes = []
        for concept_id in sorted(self.concepts):
            concept = self.concepts[concept_id]
            node = {
                "id": concept_id,
                "label": concept.name or concept.slug,
                "category": concept.category,
                "level": levels.get(concept_id, 0),
            }
            if mastery is not None:
                node["score"] = mastery.get(concept_id, 0.0)
            nodes.append(node)

        edges = [
            {"source": prereq_id, "target": concept_id}
            for concept_id, prereq_id in self.edges()
        ]
        return {"nodes": nodes, "edges": edges}
