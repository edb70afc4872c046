"""
Deployment DTOs

Architectural Intent:
- Data Transfer Objects for deployment use case boundaries
- Input validation at the application boundary
- Decouples external representation (CLI output, dashboard) from the domain model
"""

from dataclasses import dataclass, field
from typing import Optional

from stagecoach.domain.entities.deployment_state import DeploymentState


@dataclass(frozen=True)
class RunDeploymentRequest:
    plan_path: str
    targets: list[str] = field(default_factory=list)
    plan_id: Optional[str] = None
    resume_from: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.plan_path:
            raise ValueError("plan_path cannot be empty")
        if self.plan_id is not None and not self.plan_id:
            raise ValueError("plan_id cannot be empty")


@dataclass(frozen=True)
class RunDeploymentResponse:
    plan_id: str
    state: str
    exit_code: int
    instructions: str = ""
    nodes: tuple[str, ...] = ()


@dataclass(frozen=True)
class RemoveNodeRequest:
    plan_id: str
    node_id: str
    reason: str

    def __post_init__(self) -> None:
        if not self.plan_id:
            raise ValueError("plan_id cannot be empty")
        if not self.node_id:
            raise ValueError("node_id cannot be empty")
        if not self.reason.strip():
            raise ValueError("A removal needs a reason for the audit trail")


@dataclass(frozen=True)
class NodeStatusView:
    node: str
    outcome: str
    attempt: int
    timestamp: str
    detail: str = ""


@dataclass(frozen=True)
class DeploymentStatusResponse:
    plan_id: str
    status: str
    status_reason: str
    current_stage_id: Optional[str]
    completed_stage_ids: tuple[str, ...]
    stage_sequence: tuple[str, ...]
    node_set: tuple[str, ...]
    last_updated_at: str
    stages: dict[str, tuple[NodeStatusView, ...]] = field(default_factory=dict)
    remediation: dict[str, str] = field(default_factory=dict)
    removed_nodes: tuple[str, ...] = ()

    @staticmethod
    def from_state(state: DeploymentState) -> "DeploymentStatusResponse":
        stages: dict[str, tuple[NodeStatusView, ...]] = {}
        order = list(state.stage_sequence) or list(state.per_node_stage_results)
        for stage_id in order:
            by_node = state.per_node_stage_results.get(stage_id)
            if not by_node:
                continue
            views = []
            for node, results in by_node.items():
                latest = results[-1]
                views.append(
                    NodeStatusView(
                        node=node,
                        outcome=latest.outcome.value,
                        attempt=latest.attempt,
                        timestamp=latest.timestamp,
                        detail=latest.error_detail or "",
                    )
                )
            stages[stage_id] = tuple(views)
        return DeploymentStatusResponse(
            plan_id=state.plan_id,
            status=state.status.value,
            status_reason=state.status_reason,
            current_stage_id=state.current_stage_id,
            completed_stage_ids=state.completed_stage_ids,
            stage_sequence=state.stage_sequence,
            node_set=state.node_set,
            last_updated_at=state.last_updated_at,
            stages=stages,
            remediation=dict(state.remediation),
            removed_nodes=tuple(f"{r.node} ({r.reason})" for r in state.removed_nodes),
        )
