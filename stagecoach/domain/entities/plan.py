"""
Deployment Plan Module

Architectural Intent:
- Ordered, validated sequence of StageDefinitions for one rollout
- Acts as the stage registry: lookup by stable id, position, resume point
- Rejects plans the orchestrator could not drive linearly

Validation Rules:
- Stage ids are unique
- Every dependency names a known stage that appears earlier in the sequence
- No circular dependencies
- Every referenced check is known to the supplied check registry (if given)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Optional

from stagecoach.domain.entities.stage import StageDefinition
from stagecoach.domain.errors import PlanDefinitionError


@dataclass(frozen=True)
class DeploymentPlan:
    plan_id: str
    stages: tuple[StageDefinition, ...]
    targets: tuple[str, ...] = ()
    config_snapshot: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.plan_id:
            raise PlanDefinitionError("plan_id cannot be empty")
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "targets", tuple(self.targets))
        if not self.stages:
            raise PlanDefinitionError(f"Plan {self.plan_id} has no stages")
        self._validate_unique_ids()
        self._validate_no_cycles()
        self._validate_ordering()

    def _validate_unique_ids(self) -> None:
        seen: set[str] = set()
        for stage in self.stages:
            if stage.id in seen:
                raise PlanDefinitionError(f"Duplicate stage id: {stage.id}")
            seen.add(stage.id)

    def _validate_no_cycles(self) -> None:
        by_id = {s.id: s for s in self.stages}
        visited: set[str] = set()
        rec_stack: set[str] = set()

        def has_cycle(name: str) -> bool:
            visited.add(name)
            rec_stack.add(name)
            for dep in by_id[name].depends_on:
                if dep not in by_id:
                    raise PlanDefinitionError(
                        f"Stage {name} depends on unknown stage: {dep}"
                    )
                if dep not in visited:
                    if has_cycle(dep):
                        return True
                elif dep in rec_stack:
                    return True
            rec_stack.remove(name)
            return False

        for stage in self.stages:
            if stage.id not in visited and has_cycle(stage.id):
                raise PlanDefinitionError(
                    f"Circular dependency detected involving stage: {stage.id}"
                )

    def _validate_ordering(self) -> None:
        earlier: set[str] = set()
        for stage in self.stages:
            later = stage.depends_on - earlier
            if later:
                raise PlanDefinitionError(
                    f"Stage {stage.id} depends on stages that do not precede it: "
                    f"{', '.join(sorted(later))}"
                )
            earlier.add(stage.id)

    def validate_checks(self, known_checks: Iterable[str]) -> None:
        known = set(known_checks)
        for stage in self.stages:
            missing = [c for c in stage.all_checks if c not in known]
            if missing:
                raise PlanDefinitionError(
                    f"Stage {stage.id} references unknown checks: {', '.join(missing)}"
                )

    # -- Registry -------------------------------------------------------------

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def stage_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.stages)

    def has_stage(self, stage_id: str) -> bool:
        return stage_id in self.stage_ids

    def get(self, stage_id: str) -> StageDefinition:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise PlanDefinitionError(f"Unknown stage id: {stage_id}")

    def next_pending(self, completed: Iterable[str]) -> Optional[StageDefinition]:
        """First stage in plan order not yet completed, or None when all are done."""
        done = set(completed)
        for stage in self.stages:
            if stage.id not in done:
                return stage
        return None
