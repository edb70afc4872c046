"""
Stage Transition Event

Emitted by the orchestrator on every state-machine transition, e.g.
NotStarted -> Running(install-role) or Running(create-cluster) -> Halted(create-cluster).
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from stagecoach.domain.events.event_base import DomainEvent


@dataclass(frozen=True)
class StageTransitionEvent(DomainEvent):
    from_state: str = ""
    to_state: str = ""
    stage_id: Optional[str] = None
    per_node_summary: dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @property
    def plan_id(self) -> str:
        return self.aggregate_id

    @property
    def timestamp(self) -> str:
        return self.occurred_at

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "timestamp": self.occurred_at,
                "plan_id": self.aggregate_id,
                "from_state": self.from_state,
                "to_state": self.to_state,
                "stage_id": self.stage_id,
                "per_node_summary": dict(self.per_node_summary),
                "reason": self.reason,
            }
        )
        return data
