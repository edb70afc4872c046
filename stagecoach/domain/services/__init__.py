"""
Domain Services Package

Architectural Intent:
- Contains domain services implementing deployment decision logic
- Barrier evaluation and check execution are pure with respect to persistence
"""

from stagecoach.domain.services.barrier import BarrierDecision, evaluate_barrier
from stagecoach.domain.services.validation_engine import CheckRegistry, ValidationEngine

__all__ = [
    "BarrierDecision",
    "evaluate_barrier",
    "CheckRegistry",
    "ValidationEngine",
]
