"""The journey execution engine."""

from journeyrun.engine.conditions import evaluate_condition, evaluate_edge_condition, evaluate_group
from journeyrun.engine.facts import FactSnapshot, build_facts
from journeyrun.engine.machine import transition
from journeyrun.engine.orchestrator import JourneyOrchestrator
from journeyrun.engine.resolver import find_next_block

__all__ = [
    "evaluate_condition",
    "evaluate_edge_condition",
    "evaluate_group",
    "FactSnapshot",
    "build_facts",
    "transition",
    "JourneyOrchestrator",
    "find_next_block",
]
