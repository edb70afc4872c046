"""
Stage Definition Module

Architectural Intent:
- Declarative, immutable description of one unit of rollout work
- Created at plan-authoring time, never mutated at runtime
- Binds to an external operation through the StageOperation contract;
  placeholder stages bind to a trivial operation and are not special-cased

Design Decisions:
- Checks are referenced by name (CheckRef) and resolved through a CheckRegistry
- Retries are only honoured for stages declared idempotent
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from stagecoach.domain.value_objects.node import Node

CheckRef = str


class BarrierPolicy(Enum):
    ALL_MUST_SUCCEED = "all_must_succeed"
    MAJORITY_MUST_SUCCEED = "majority_must_succeed"
    BEST_EFFORT = "best_effort"

    @staticmethod
    def parse(value: str) -> "BarrierPolicy":
        normalized = value.strip().lower().replace("-", "_")
        aliases = {
            "allmustsucceed": BarrierPolicy.ALL_MUST_SUCCEED,
            "majoritymustsucceed": BarrierPolicy.MAJORITY_MUST_SUCCEED,
            "besteffort": BarrierPolicy.BEST_EFFORT,
        }
        if normalized in aliases:
            return aliases[normalized]
        return BarrierPolicy(normalized)


@dataclass(frozen=True)
class OperationResult:
    """Outcome reported by a stage operation for one node."""
    success: bool
    reboot_required: bool = False
    detail: str = ""


StageOperation = Callable[
    [Node, Mapping[str, Any]],
    Union[OperationResult, Awaitable[OperationResult]],
]


def noop_operation(node: Node, config_snapshot: Mapping[str, Any]) -> OperationResult:
    return OperationResult(success=True, detail="no-op")


@dataclass(frozen=True)
class StageDefinition:
    id: str
    description: str = ""
    requires_reboot: bool = False
    depends_on: frozenset[str] = field(default_factory=frozenset)
    validation: tuple[CheckRef, ...] = ()
    post_validation: tuple[CheckRef, ...] = ()
    satisfied_when: tuple[CheckRef, ...] = ()
    barrier_policy: BarrierPolicy = BarrierPolicy.ALL_MUST_SUCCEED
    operation: StageOperation = field(default=noop_operation, compare=False, repr=False)
    idempotent: bool = False
    max_retries: int = 0
    timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Stage id cannot be empty")
        if self.max_retries < 0:
            raise ValueError(f"Stage {self.id}: max_retries must be >= 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"Stage {self.id}: timeout_seconds must be > 0")
        if self.id in self.depends_on:
            raise ValueError(f"Stage {self.id} cannot depend on itself")
        # accept any iterable from callers, store canonical immutable forms
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        object.__setattr__(self, "validation", tuple(self.validation))
        object.__setattr__(self, "post_validation", tuple(self.post_validation))
        object.__setattr__(self, "satisfied_when", tuple(self.satisfied_when))

    @property
    def retry_bound(self) -> int:
        """Retries allowed after the first attempt; irreversible stages never retry."""
        return self.max_retries if self.idempotent else 0

    @property
    def all_checks(self) -> tuple[CheckRef, ...]:
        return self.validation + self.post_validation + self.satisfied_when
