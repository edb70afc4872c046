"""
Deployment State Module

Architectural Intent:
- DeploymentState is the single source of truth for "how far did we get"
- It is the only thing consulted on resume and the only thing persisted
- Every change produces a new instance; the orchestrator hands the new
  instance to the state store, which is the only way progress is recorded
- NodeResults are immutable and accumulate per (stage, node), ordered by attempt

Invariants:
- current_stage_id is None (not started / complete) or a stage whose
  dependencies are all in completed_stage_ids (enforced by the orchestrator)
- Results for a node still in node_set are never pruned
- Removing a node is explicit and recorded in removed_nodes
- endpoints keeps the full 'user@host:port' target of each node so a resume
  without re-stated targets reaches the same SSH endpoint
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Iterable, Optional

from stagecoach.domain.errors import StateCorruptionError

SCHEMA_VERSION = 1


def _now() -> str:
    return datetime.now(UTC).isoformat()


class NodeOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REBOOT_PENDING = "reboot_pending"
    SKIPPED = "skipped"

    @property
    def counts_as_success(self) -> bool:
        return self in (NodeOutcome.SUCCESS, NodeOutcome.SKIPPED)


class FailureKind(Enum):
    OPERATION = "operation"
    POST_CONDITION = "post_condition"
    TIMEOUT = "timeout"
    EXCEPTION = "exception"


class RunStatus(Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    PAUSED_FOR_REBOOT = "PausedForReboot"
    HALTED = "Halted"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class NodeResult:
    node: str
    stage_id: str
    outcome: NodeOutcome
    attempt: int = 1
    timestamp: str = field(default_factory=_now)
    error_detail: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "stage_id": self.stage_id,
            "outcome": self.outcome.value,
            "attempt": self.attempt,
            "timestamp": self.timestamp,
            "error_detail": self.error_detail,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "NodeResult":
        kind = data.get("failure_kind")
        return NodeResult(
            node=data["node"],
            stage_id=data["stage_id"],
            outcome=NodeOutcome(data["outcome"]),
            attempt=int(data["attempt"]),
            timestamp=data["timestamp"],
            error_detail=data.get("error_detail"),
            failure_kind=FailureKind(kind) if kind else None,
        )


@dataclass(frozen=True)
class RemovedNode:
    node: str
    reason: str
    timestamp: str = field(default_factory=_now)


@dataclass(frozen=True)
class DeploymentState:
    plan_id: str
    node_set: tuple[str, ...]
    created_at: str = field(default_factory=_now)
    last_updated_at: str = field(default_factory=_now)
    completed_stage_ids: tuple[str, ...] = ()
    current_stage_id: Optional[str] = None
    per_node_stage_results: dict[str, dict[str, tuple[NodeResult, ...]]] = field(
        default_factory=dict
    )
    config_snapshot: dict[str, Any] = field(default_factory=dict)
    status: RunStatus = RunStatus.NOT_STARTED
    status_reason: str = ""
    stage_sequence: tuple[str, ...] = ()
    remediation: dict[str, str] = field(default_factory=dict)
    removed_nodes: tuple[RemovedNode, ...] = ()
    endpoints: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def new(
        plan_id: str,
        node_set: Iterable[str],
        stage_sequence: Iterable[str] = (),
        config_snapshot: Optional[dict[str, Any]] = None,
        endpoints: Optional[dict[str, str]] = None,
    ) -> "DeploymentState":
        nodes = tuple(node_set)
        if not nodes:
            raise ValueError("A deployment needs at least one node")
        if len(set(nodes)) != len(nodes):
            raise ValueError("Node set contains duplicates")
        return DeploymentState(
            plan_id=plan_id,
            node_set=nodes,
            stage_sequence=tuple(stage_sequence),
            config_snapshot=dict(config_snapshot or {}),
            endpoints={n: e for n, e in (endpoints or {}).items() if n in nodes},
        )

    # -- Queries --------------------------------------------------------------

    def results_for(self, stage_id: str, node: str) -> tuple[NodeResult, ...]:
        return self.per_node_stage_results.get(stage_id, {}).get(node, ())

    def latest_result(self, stage_id: str, node: str) -> Optional[NodeResult]:
        results = self.results_for(stage_id, node)
        return results[-1] if results else None

    def attempts_for(self, stage_id: str, node: str) -> int:
        latest = self.latest_result(stage_id, node)
        return latest.attempt if latest else 0

    def endpoint_for(self, node: str) -> str:
        """Target string to reconnect to the node; the bare node id if none was recorded."""
        return self.endpoints.get(node, node)

    def active_nodes(self) -> tuple[str, ...]:
        """Nodes that take part in upcoming stages (not held for remediation)."""
        return tuple(n for n in self.node_set if n not in self.remediation)

    # -- Transitions (each returns a new instance) ----------------------------

    def _touch(self, **changes: Any) -> "DeploymentState":
        return replace(self, last_updated_at=_now(), **changes)

    def with_results(self, results: Iterable[NodeResult]) -> "DeploymentState":
        merged = {
            stage: dict(by_node) for stage, by_node in self.per_node_stage_results.items()
        }
        for result in results:
            by_node = merged.setdefault(result.stage_id, {})
            history = by_node.get(result.node, ())
            if history and history[-1] == result:
                continue
            if history and result.attempt <= history[-1].attempt:
                raise ValueError(
                    f"Result attempt {result.attempt} for {result.node}/{result.stage_id} "
                    f"does not follow attempt {history[-1].attempt}"
                )
            by_node[result.node] = history + (result,)
        return self._touch(per_node_stage_results=merged)

    def mark_completed(self, stage_id: str, next_stage_id: Optional[str]) -> "DeploymentState":
        completed = self.completed_stage_ids
        if stage_id not in completed:
            completed = completed + (stage_id,)
        return self._touch(completed_stage_ids=completed, current_stage_id=next_stage_id)

    def with_current_stage(self, stage_id: Optional[str]) -> "DeploymentState":
        return self._touch(current_stage_id=stage_id)

    def with_status(self, status: RunStatus, reason: str = "") -> "DeploymentState":
        return self._touch(status=status, status_reason=reason)

    def with_remediation(self, nodes: Iterable[str], stage_id: str) -> "DeploymentState":
        marked = dict(self.remediation)
        for node in nodes:
            marked.setdefault(node, stage_id)
        return self._touch(remediation=marked)

    def without_node(self, node: str, reason: str) -> "DeploymentState":
        if node not in self.node_set:
            raise ValueError(f"Node {node} is not part of plan {self.plan_id}")
        if len(self.node_set) == 1:
            raise ValueError("Cannot remove the last node of a plan")
        remaining = tuple(n for n in self.node_set if n != node)
        remediation = {n: s for n, s in self.remediation.items() if n != node}
        return self._touch(
            node_set=remaining,
            remediation=remediation,
            removed_nodes=self.removed_nodes + (RemovedNode(node=node, reason=reason),),
            endpoints={n: e for n, e in self.endpoints.items() if n != node},
        )

    # -- Serialization --------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "plan_id": self.plan_id,
            "created_at": self.created_at,
            "last_updated_at": self.last_updated_at,
            "status": self.status.value,
            "status_reason": self.status_reason,
            "completed_stage_ids": list(self.completed_stage_ids),
            "current_stage_id": self.current_stage_id,
            "node_set": list(self.node_set),
            "endpoints": dict(self.endpoints),
            "stage_sequence": list(self.stage_sequence),
            "per_node_stage_results": {
                stage: {
                    node: [r.to_dict() for r in results]
                    for node, results in by_node.items()
                }
                for stage, by_node in self.per_node_stage_results.items()
            },
            "remediation": dict(self.remediation),
            "removed_nodes": [
                {"node": r.node, "reason": r.reason, "timestamp": r.timestamp}
                for r in self.removed_nodes
            ],
            "config_snapshot": dict(self.config_snapshot),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DeploymentState":
        try:
            version = data.get("schema_version", SCHEMA_VERSION)
            if version != SCHEMA_VERSION:
                raise StateCorruptionError(f"Unsupported state schema version: {version}")
            results = {
                stage: {
                    node: tuple(NodeResult.from_dict(r) for r in records)
                    for node, records in by_node.items()
                }
                for stage, by_node in data.get("per_node_stage_results", {}).items()
            }
            return DeploymentState(
                plan_id=data["plan_id"],
                node_set=tuple(data["node_set"]),
                endpoints=dict(data.get("endpoints", {})),
                created_at=data["created_at"],
                last_updated_at=data["last_updated_at"],
                completed_stage_ids=tuple(data.get("completed_stage_ids", [])),
                current_stage_id=data.get("current_stage_id"),
                per_node_stage_results=results,
                config_snapshot=dict(data.get("config_snapshot", {})),
                status=RunStatus(data.get("status", RunStatus.NOT_STARTED.value)),
                status_reason=data.get("status_reason", ""),
                stage_sequence=tuple(data.get("stage_sequence", [])),
                remediation=dict(data.get("remediation", {})),
                removed_nodes=tuple(
                    RemovedNode(node=r["node"], reason=r["reason"], timestamp=r["timestamp"])
                    for r in data.get("removed_nodes", [])
                ),
            )
        except StateCorruptionError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateCorruptionError(f"Malformed deployment state: {e}") from e
