"""
Domain Events Package

Architectural Intent:
- Contains domain events published at orchestration transitions
- Events are the only channel from the core to reporting components
"""

from stagecoach.domain.events.event_base import DomainEvent
from stagecoach.domain.events.transition import StageTransitionEvent

__all__ = [
    "DomainEvent",
    "StageTransitionEvent",
]
