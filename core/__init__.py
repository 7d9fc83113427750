"""
Core module - Ability estimation, adaptive testing and concept modeling.

Components:
    - irt: 3PL response model + EAP ability estimation
    - adaptive_tester: item selection and stopping rules (CAT)
    - knowledge_graph: concept prerequisite DAG
    - diagnostics: diagnostic report from a completed session
    - student_model: concept mastery from path step attempts
    - item_bank: calibrated item pool
"""

from .adaptive_tester import AdaptiveTester, ItemSelection, SelectionReason
from .config import AssessmentConfig, Pace, PathOptions, StudentProfile
from .diagnostics import DiagnosticReportGenerator
from .item_bank import ItemBank
from .knowledge_graph import ConceptGraph
from .student_model import MasteryCalculator

__all__ = [
    "AdaptiveTester",
    "ItemSelection",
    "SelectionReason",
    "AssessmentConfig",
    "Pace",
    "PathOptions",
    "StudentProfile",
    "DiagnosticReportGenerator",
    "ItemBank",
    "ConceptGraph",
    "MasteryCalculator",
]
