"""
Execution Context

Architectural Intent:
- Explicit context passed into every check and operation call
- Replaces process-wide mutable state (paths, log handles, current stage)
- Immutable; a new context is derived per stage and per phase
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping, Optional


class Phase:
    PRE = "pre"
    POST = "post"
    SATISFIED = "satisfied"


@dataclass(frozen=True)
class ExecutionContext:
    plan_id: str
    config_snapshot: Mapping[str, Any] = field(default_factory=dict)
    stage_id: Optional[str] = None
    phase: str = Phase.PRE
    extras: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "config_snapshot", MappingProxyType(dict(self.config_snapshot)))
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))

    def for_stage(self, stage_id: str) -> ExecutionContext:
        return replace(self, stage_id=stage_id)

    def in_phase(self, phase: str) -> ExecutionContext:
        return replace(self, phase=phase)
