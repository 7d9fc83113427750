"""
Path Generator - Diagnostic report -> ordered, gated learning path.

Features:
    - Weak concepts expanded with their unmastered prerequisites
    - Prerequisites always scheduled before dependents (topological order)
    - CONCEPT_STUDY + PRACTICE_SET step pair per concept
    - Milestones every few steps, day estimate from the student's pace
    - Practice sets re-aimed at a new target difficulty mid-step
"""

from typing import Dict, List, Optional, Set

from loguru import logger

from core.config import PathOptions, StudentProfile
from core.item_bank import ItemBank
from core.knowledge_graph import ConceptGraph
from core.models import (
    DiagnosticReport,
    LearningPath,
    PathStatus,
    PathStep,
    StepStatus,
    StepType,
)

from .milestones import build_milestones


class LearningPathGenerator:
    """
    Builds LearningPath records; persistence is left to the caller.
    """

    def __init__(self, item_bank: ItemBank, options: Optional[PathOptions] = None):
        self.item_bank = item_bank
        self.options = options or PathOptions()

    def generate(self, path_id: str, report: DiagnosticReport, graph: ConceptGraph,
                 profile: StudentProfile, created_at: str,
                 mastery: Optional[Dict[str, float]] = None) -> LearningPath:
        """
        Generate a path for the report's weak concepts.

        Args:
            path_id: id for the new path (step ids derive from it)
            report: diagnostic report of a completed session
            graph: concept graph snapshot of the report's jurisdiction
            profile: pace profile for the day estimate
            created_at: timestamp stored on the path
            mastery: current concept mastery scores of the student
        """
        concept_ids = self.concepts_to_learn(report, graph, mastery or {})
        steps = self._build_steps(path_id, concept_ids, graph)

        if steps:
            steps[0].status = StepStatus.IN_PROGRESS

        milestones = build_milestones(len(steps), self.options.milestone_every, self.options.xp_per_step)
        total_minutes = sum(step.estimated_minutes for step in steps)

        path = LearningPath(
            id=path_id,
            student_id=profile.student_id,
            jurisdiction_id=report.jurisdiction_id,
            name=f"Personalized Path: {len(concept_ids)} Concepts",
            steps=steps,
            milestones=milestones,
            estimated_minutes=total_minutes,
            estimated_days=profile.estimate_days(total_minutes),
            created_at=created_at,
            session_id=report.session_id,
            ability=report.final_theta,
            status=PathStatus.IN_PROGRESS if steps else PathStatus.COMPLETED,
        )

        logger.info(
            f"Generated path {path_id}: {len(concept_ids)} concepts, {len(steps)} steps, "
            f"{len(milestones)} milestones, ~{path.estimated_days} days"
        )
        return path

    def concepts_to_learn(self, report: DiagnosticReport, graph: ConceptGraph,
                          mastery: Dict[str, float]) -> List[str]:
        """
        Weak concepts plus every unmastered transitive prerequisite,
        in topological order.
        """
        mastered: Set[str] = set(report.strong_concepts)
        mastered.update(cid for cid, score in mastery.items() if score >= self.options.mastery_threshold)

        selected: Set[str] = set()
        for weak_id in report.weak_concepts:
            if weak_id not in graph:
                logger.warning(f"Weak concept {weak_id} is not in the concept graph, skipping")
                continue
            for concept_id in graph.prerequisite_chain(weak_id):
                if concept_id == weak_id or (concept_id in graph and concept_id not in mastered):
                    selected.add(concept_id)

        return graph.topological_sort(selected)

    def _build_steps(self, path_id: str, concept_ids: List[str], graph: ConceptGraph) -> List[PathStep]:
        steps: List[PathStep] = []
        for concept_id in concept_ids:
            concept = graph.get_concept(concept_id)
            label = concept.name or concept.slug

            steps.append(PathStep(
                id=f"{path_id}-s{len(steps)}",
                index=len(steps),
                type=StepType.CONCEPT_STUDY,
                concept_id=concept_id,
                title=f"Study: {label}",
                estimated_minutes=concept.estimated_minutes,
                required_accuracy=self.options.required_accuracy,
                required_attempts=1,
            ))

            items = self.item_bank.find_items_for_concept(
                concept_id, limit=self.options.items_per_concept, jurisdiction_id=concept.jurisdiction_id,
            )
            if not items:
                logger.warning(f"No practice items found for concept {concept_id}")
                continue

            steps.append(PathStep(
                id=f"{path_id}-s{len(steps)}",
                index=len(steps),
                type=StepType.PRACTICE_SET,
                concept_id=concept_id,
                title=f"Practice: {label}",
                estimated_minutes=len(items) * self.options.minutes_per_item,
                required_accuracy=self.options.required_accuracy,
                required_attempts=len(items),
                item_ids=[item.id for item in items],
            ))
        return steps

    def repick_items(self, step: PathStep, jurisdiction_id: str, target: float,
                     attempted_ids: List[str]) -> List[str]:
        """
        Practice items aimed at `target` difficulty.

        Items already attempted on the step keep their place; the rest of
        the set is refilled with the unattempted items whose difficulty is
        nearest the target. The set keeps its size.
        """
        kept = [item_id for item_id in step.item_ids if item_id in attempted_ids]
        candidates = [
            item for item in self.item_bank.find_items_for_concept(step.concept_id, jurisdiction_id=jurisdiction_id)
            if item.id not in kept
        ]
        candidates.sort(key=lambda item: (abs(item.params.b - target), item.id))
        refill = [item.id for item in candidates[:len(step.item_ids) - len(kept)]]
        return kept + refill
