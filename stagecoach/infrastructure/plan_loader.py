"""
Plan Loader

Architectural Intent:
- Builds a DeploymentPlan and its CheckRegistry from a JSON plan document
- Binds each stage to an operation (SSH command or no-op placeholder) and
  each named check to a command-backed check
- All validation failures raise PlanDefinitionError before anything runs

Document Shape:
    {
      "plan_id": "cluster-rollout",
      "targets": ["admin@node1", "node2"],
      "config": {"cluster_name": "prod"},
      "checks": {"role-installed": {"command": "...", "severity": "blocking"}},
      "stages": [
        {"id": "install-role", "requires_reboot": true,
         "operation": {"type": "command", "command": "..."},
         "satisfied_when": ["role-installed"],
         "barrier_policy": "all_must_succeed"}
      ]
    }
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Optional

from stagecoach.domain.entities.plan import DeploymentPlan
from stagecoach.domain.entities.stage import (
    BarrierPolicy,
    StageDefinition,
    StageOperation,
    noop_operation,
)
from stagecoach.domain.errors import PlanDefinitionError
from stagecoach.domain.ports.plan_source_port import LoadedPlan, PlanSourcePort
from stagecoach.domain.ports.remote_executor_port import RemoteExecutorPort
from stagecoach.domain.services.validation_engine import CheckRegistry
from stagecoach.domain.value_objects.validation_report import Severity
from stagecoach.infrastructure.adapters.command_operations import (
    DEFAULT_REBOOT_EXIT_CODES,
    CommandCheck,
    CommandOperation,
)

logger = logging.getLogger(__name__)

_STAGE_KEYS = {
    "id", "description", "requires_reboot", "depends_on", "validation",
    "post_validation", "satisfied_when", "barrier_policy", "operation",
    "idempotent", "max_retries", "timeout_seconds",
}


class PlanLoader(PlanSourcePort):
    def __init__(self, remote: RemoteExecutorPort, default_timeout: Optional[float] = None):
        self.remote = remote
        # bounds remote commands of stages that set no timeout of their own
        self.default_timeout = default_timeout

    def load(self, path: str | Path) -> LoadedPlan:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PlanDefinitionError(f"Plan file {path} is not valid JSON: {e}") from e
        loaded = self.from_dict(data)
        logger.info(
            "Loaded plan %s from %s (%d stages)", loaded.plan.plan_id, path, len(loaded.plan)
        )
        return loaded

    def from_dict(self, data: dict[str, Any]) -> LoadedPlan:
        if not isinstance(data, dict):
            raise PlanDefinitionError("Plan document must be a JSON object")

        registry = CheckRegistry()
        for check_id, entry in (data.get("checks") or {}).items():
            registry.register(check_id, self._build_check(check_id, entry))

        stages = [self._build_stage(s) for s in data.get("stages") or []]
        targets = data.get("targets") or []
        if isinstance(targets, str):
            targets = [t.strip() for t in targets.split(",") if t.strip()]

        plan = DeploymentPlan(
            plan_id=str(data.get("plan_id", "")),
            stages=tuple(stages),
            targets=tuple(targets),
            config_snapshot=dict(data.get("config") or {}),
        )
        plan.validate_checks(registry)
        return LoadedPlan(plan=plan, checks=registry)

    def _build_check(self, check_id: str, entry: Any) -> CommandCheck:
        if isinstance(entry, str):
            entry = {"command": entry}
        if not isinstance(entry, dict) or not entry.get("command"):
            raise PlanDefinitionError(f"Check {check_id} needs a command")
        kind = entry.get("type", "command")
        if kind != "command":
            raise PlanDefinitionError(f"Check {check_id}: unsupported type {kind!r}")
        try:
            severity = Severity(str(entry.get("severity", "blocking")).lower())
        except ValueError:
            raise PlanDefinitionError(
                f"Check {check_id}: unknown severity {entry.get('severity')!r}"
            ) from None
        return CommandCheck(
            self.remote,
            check_id,
            entry["command"],
            severity=severity,
            reboot_exit_codes=self._names(stage_id, entry, "reboot_exit_codes"),
            timeout=entry.get("timeout_seconds", 60.0),
        )

    def _build_operation(
        self, stage_id: str, entry: Any, stage_timeout: Optional[float] = None
    ) -> StageOperation:
        if entry is None:
            return noop_operation
        if isinstance(entry, str):
            entry = {"type": "command", "command": entry}
        kind = entry.get("type", "command")
        if kind == "noop":
            return noop_operation
        if kind == "command":
            if not entry.get("command"):
                raise PlanDefinitionError(f"Stage {stage_id}: command operation needs a command")
            return CommandOperation(
                self.remote,
                entry["command"],
                reboot_exit_codes=tuple(entry.get("reboot_exit_codes", DEFAULT_REBOOT_EXIT_CODES)),
                timeout=self._command_timeout(entry.get("timeout_seconds"), stage_timeout),
            )
        raise PlanDefinitionError(f"Stage {stage_id}: unsupported operation type {kind!r}")

    def _command_timeout(
        self, own: Optional[float], stage_timeout: Optional[float]
    ) -> Optional[float]:
        # a remote command never outlives the stage that waits for it
        bound = stage_timeout if stage_timeout is not None else self.default_timeout
        if own is None:
            return bound
        return own if bound is None else min(own, bound)

    @staticmethod
    def _names(stage_id: str, entry: dict, key: str) -> tuple[str, ...]:
        value = entry.get(key, ())
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise PlanDefinitionError(
                f"Stage {stage_id}: {key} must be a list of names, got {value!r}"
            )
        return tuple(value)

    def _build_stage(self, entry: Any) -> StageDefinition:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise PlanDefinitionError(f"Stage entry needs an id: {entry!r}")
        stage_id = entry["id"]
        unknown = set(entry) - _STAGE_KEYS
        if unknown:
            logger.warning("Stage %s: ignoring unknown keys %s", stage_id, sorted(unknown))
        try:
            return StageDefinition(
                id=stage_id,
                description=entry.get("description", ""),
                requires_reboot=bool(entry.get("requires_reboot", False)),
                depends_on=frozenset(self._names(stage_id, entry, "depends_on")),
                validation=self._names(stage_id, entry, "validation"),
                post_validation=self._names(stage_id, entry, "post_validation"),
                satisfied_when=self._names(stage_id, entry, "satisfied_when"),
                barrier_policy=BarrierPolicy.parse(
                    entry.get("barrier_policy", BarrierPolicy.ALL_MUST_SUCCEED.value)
                ),
                operation=self._build_operation(
                    stage_id, entry.get("operation"), entry.get("timeout_seconds")
                ),
                idempotent=bool(entry.get("idempotent", False)),
                max_retries=int(entry.get("max_retries", 0)),
                timeout_seconds=entry.get("timeout_seconds"),
            )
        except ValueError as e:
            raise PlanDefinitionError(f"Stage {stage_id}: {e}") from e
