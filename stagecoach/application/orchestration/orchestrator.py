"""
Orchestrator

Architectural Intent:
- Drives a DeploymentPlan to completion across a bounded node set, once
- Single-threaded state machine over stage indices:
    NotStarted -> Running(s) -> Running(next) | PausedForReboot(s) | Halted(s, reason) | Completed
- Every invocation starts from the persisted state, never from stage 0
- Stage N+1 never starts before stage N's barrier decision is durably saved

Persistence Rules:
- The state store is written once per stage attempt, synchronously
- A failed save is fatal (PersistenceError propagates); the orchestrator never
  proceeds past a stage whose completion was not recorded
- A blocking pre-validation failure halts with no state change

Cancellation:
- request_abort() is honoured only between stages; a running stage is
  allowed to finish so every dispatched node gets a recorded result
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from stagecoach.application.orchestration.fleet_coordinator import (
    FleetCoordinator,
    StageOutcome,
)
from stagecoach.domain.entities.deployment_state import DeploymentState, RunStatus
from stagecoach.domain.entities.plan import DeploymentPlan
from stagecoach.domain.entities.stage import StageDefinition
from stagecoach.domain.errors import (
    NodeSetMismatchError,
    ResumeHintMismatchError,
    StateCorruptionError,
)
from stagecoach.domain.events.transition import StageTransitionEvent
from stagecoach.domain.ports.event_bus_port import EventBusPort
from stagecoach.domain.ports.state_store_port import StateStorePort
from stagecoach.domain.services.validation_engine import ValidationEngine
from stagecoach.domain.value_objects.context import ExecutionContext, Phase
from stagecoach.domain.value_objects.node import Node

logger = logging.getLogger(__name__)

EXIT_CODES = {
    RunStatus.COMPLETED: 0,
    RunStatus.HALTED: 1,
    RunStatus.PAUSED_FOR_REBOOT: 2,
}


@dataclass(frozen=True)
class OrchestratorState:
    status: RunStatus
    stage_id: Optional[str] = None
    reason: str = ""
    nodes: tuple[str, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in EXIT_CODES

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 0)

    @property
    def instructions(self) -> str:
        if self.status == RunStatus.PAUSED_FOR_REBOOT:
            return (
                f"Reboot {', '.join(self.nodes) or 'the affected nodes'} and re-invoke "
                f"to resume at stage {self.stage_id}."
            )
        if self.status == RunStatus.HALTED:
            target = f" on {', '.join(self.nodes)}" if self.nodes else ""
            return (
                f"Stage {self.stage_id} halted{target}: {self.reason}. "
                "Fix the cause manually, then re-invoke to retry the stage."
            )
        if self.status == RunStatus.COMPLETED:
            return "All stages completed."
        return ""

    def __str__(self) -> str:
        if self.status in (RunStatus.NOT_STARTED, RunStatus.COMPLETED):
            return self.status.value
        if self.status == RunStatus.HALTED:
            return f"{self.status.value}({self.stage_id}, {self.reason})"
        return f"{self.status.value}({self.stage_id})"

    @staticmethod
    def of(state: DeploymentState) -> "OrchestratorState":
        return OrchestratorState(
            status=state.status,
            stage_id=state.current_stage_id,
            reason=state.status_reason,
        )


class Orchestrator:
    def __init__(
        self,
        plan: DeploymentPlan,
        nodes: Sequence[Node],
        state_store: StateStorePort,
        validation_engine: ValidationEngine,
        fleet_coordinator: FleetCoordinator,
        event_bus: Optional[EventBusPort] = None,
    ):
        plan.validate_checks(validation_engine.registry)
        self.plan = plan
        self.nodes = {n.node_id: n for n in nodes}
        if len(self.nodes) != len(nodes):
            raise NodeSetMismatchError("Duplicate nodes in target list")
        self.state_store = state_store
        self.validation_engine = validation_engine
        self.fleet_coordinator = fleet_coordinator
        self.event_bus = event_bus
        self._state: Optional[DeploymentState] = None
        self._abort_requested = False

    # -- Public API -----------------------------------------------------------

    def request_abort(self) -> None:
        logger.warning("Abort requested for plan %s; honoured after the current stage", self.plan.plan_id)
        self._abort_requested = True

    async def run(self, resume_from: Optional[str] = None) -> OrchestratorState:
        """Run stages until the plan completes, pauses for reboot or halts."""
        state = await self._ensure_state()
        if resume_from is not None:
            pending = self.plan.next_pending(state.completed_stage_ids)
            expected = pending.id if pending else None
            if resume_from != expected:
                raise ResumeHintMismatchError(
                    f"Resume hint {resume_from!r} does not match the persisted resume "
                    f"point {expected!r} for plan {self.plan.plan_id}"
                )

        while True:
            result = await self.step()
            if result.is_terminal:
                return result

    async def step(self) -> OrchestratorState:
        """Run one stage attempt (or finish the plan) and return the new state."""
        state = await self._ensure_state()
        stage = self.plan.next_pending(state.completed_stage_ids)

        if stage is None:
            return await self._complete(state)

        if self._abort_requested:
            return await self._abort(state, stage)

        missing = stage.depends_on - set(state.completed_stage_ids)
        if missing:
            raise StateCorruptionError(
                f"Stage {stage.id} is next but its dependencies are not complete: "
                f"{', '.join(sorted(missing))}"
            )

        from_state = self._describe(state)
        running = f"{RunStatus.RUNNING.value}({stage.id})"
        if from_state != running:
            await self._emit(from_state, running, stage.id)

        return await self._run_stage(state, stage)

    async def remove_node(self, node_id: str, reason: str) -> DeploymentState:
        """Explicitly drop a node from the node set; its history is kept for audit."""
        state = self.state_store.load(self.plan.plan_id)
        if state is None:
            raise StateCorruptionError(f"No persisted state for plan {self.plan.plan_id}")
        try:
            new_state = state.without_node(node_id, reason)
        except ValueError as e:
            raise NodeSetMismatchError(str(e)) from e
        self.state_store.save(new_state)
        self._state = new_state
        self.nodes.pop(node_id, None)
        logger.warning(
            "Removed node %s from plan %s: %s", node_id, self.plan.plan_id, reason
        )
        return new_state

    # -- Stage attempt --------------------------------------------------------

    async def _run_stage(
        self, state: DeploymentState, stage: StageDefinition
    ) -> OrchestratorState:
        context = ExecutionContext(
            plan_id=self.plan.plan_id,
            config_snapshot=state.config_snapshot,
            stage_id=stage.id,
        )
        nodes = [self.nodes[n] for n in state.active_nodes()]
        previous = {
            n.node_id: r
            for n in nodes
            if (r := state.latest_result(stage.id, n.node_id)) is not None
        }
        pending = [
            n for n in nodes
            if n.node_id not in previous or not previous[n.node_id].outcome.counts_as_success
        ]

        reports = await self.validation_engine.run(
            stage.validation, pending, context.in_phase(Phase.PRE)
        )
        blocking = ValidationEngine.blocking_failures(reports)
        if blocking:
            reason = "pre-validation failed: " + "; ".join(
                f"{r.node}: {r.check_id} ({r.detail})" for r in blocking
            )
            halted = OrchestratorState(
                status=RunStatus.HALTED,
                stage_id=stage.id,
                reason=reason,
                nodes=tuple(dict.fromkeys(r.node for r in blocking if r.node)),
            )
            logger.error("Plan %s halted at %s: %s", self.plan.plan_id, stage.id, reason)
            await self._emit(
                f"{RunStatus.RUNNING.value}({stage.id})", str(halted), stage.id, reason=reason
            )
            return halted

        outcome = await self.fleet_coordinator.run_stage(stage, nodes, context, previous)
        new_state, result = self._apply_outcome(state, stage, outcome)

        self._save(new_state)
        await self._emit(
            f"{RunStatus.RUNNING.value}({stage.id})",
            str(result),
            stage.id,
            outcome.summary(),
            result.reason,
        )
        return result

    def _apply_outcome(
        self,
        state: DeploymentState,
        stage: StageDefinition,
        outcome: StageOutcome,
    ) -> tuple[DeploymentState, OrchestratorState]:
        decision = outcome.decision
        new_state = state.with_results(outcome.new_results)

        if decision.advance:
            completed = state.completed_stage_ids + (stage.id,)
            next_stage = self.plan.next_pending(completed)
            new_state = new_state.mark_completed(
                stage.id, next_stage.id if next_stage else None
            )
            if decision.remediation:
                logger.warning(
                    "Stage %s: marking %s for manual remediation",
                    stage.id, ", ".join(decision.remediation),
                )
                new_state = new_state.with_remediation(decision.remediation, stage.id)
            elif decision.failed:
                logger.warning(
                    "Stage %s advanced despite failures on %s",
                    stage.id, ", ".join(decision.failed),
                )
            if next_stage is None:
                new_state = new_state.with_status(RunStatus.COMPLETED)
                logger.info("Plan %s completed", self.plan.plan_id)
                return new_state, OrchestratorState(status=RunStatus.COMPLETED)
            new_state = new_state.with_status(RunStatus.RUNNING, decision.reason)
            logger.info("Stage %s complete; next is %s", stage.id, next_stage.id)
            return new_state, OrchestratorState(
                status=RunStatus.RUNNING,
                stage_id=next_stage.id,
                reason=decision.reason,
                nodes=decision.failed,
            )

        if decision.paused_for_reboot:
            new_state = new_state.with_current_stage(stage.id).with_status(
                RunStatus.PAUSED_FOR_REBOOT, decision.reason
            )
            logger.warning("Plan %s paused at %s: %s", self.plan.plan_id, stage.id, decision.reason)
            return new_state, OrchestratorState(
                status=RunStatus.PAUSED_FOR_REBOOT,
                stage_id=stage.id,
                reason=decision.reason,
                nodes=decision.reboot_pending,
            )

        new_state = new_state.with_current_stage(stage.id).with_status(
            RunStatus.HALTED, decision.reason
        )
        logger.error("Plan %s halted at %s: %s", self.plan.plan_id, stage.id, decision.reason)
        return new_state, OrchestratorState(
            status=RunStatus.HALTED,
            stage_id=stage.id,
            reason=decision.reason,
            nodes=decision.failed,
        )

    async def _complete(self, state: DeploymentState) -> OrchestratorState:
        if state.status != RunStatus.COMPLETED or state.current_stage_id is not None:
            from_state = self._describe(state)
            new_state = state.with_current_stage(None).with_status(RunStatus.COMPLETED)
            self._save(new_state)
            await self._emit(from_state, RunStatus.COMPLETED.value, None)
        return OrchestratorState(status=RunStatus.COMPLETED)

    async def _abort(
        self, state: DeploymentState, stage: StageDefinition
    ) -> OrchestratorState:
        reason = "aborted by operator"
        from_state = self._describe(state)
        new_state = state.with_current_stage(stage.id).with_status(RunStatus.HALTED, reason)
        self._save(new_state)
        result = OrchestratorState(status=RunStatus.HALTED, stage_id=stage.id, reason=reason)
        await self._emit(from_state, str(result), stage.id, reason=reason)
        return result

    # -- State handling -------------------------------------------------------

    async def _ensure_state(self) -> DeploymentState:
        if self._state is not None:
            return self._state

        state = self.state_store.load(self.plan.plan_id)
        if state is None:
            state = await self._start()
        else:
            self._check_resumable(state)
            logger.info(
                "Resuming plan %s (%s); completed: %s",
                self.plan.plan_id,
                self._describe(state),
                ", ".join(state.completed_stage_ids) or "none",
            )
        self._state = state
        return state

    async def _start(self) -> DeploymentState:
        if not self.nodes:
            raise NodeSetMismatchError(f"Plan {self.plan.plan_id} has no target nodes")
        first = self.plan.stages[0]
        state = DeploymentState.new(
            plan_id=self.plan.plan_id,
            node_set=list(self.nodes),
            stage_sequence=self.plan.stage_ids,
            config_snapshot=dict(self.plan.config_snapshot),
            endpoints={node_id: str(node) for node_id, node in self.nodes.items()},
        )
        state = state.with_current_stage(first.id).with_status(RunStatus.RUNNING)
        self._save(state)
        logger.info(
            "Started plan %s on %d node(s): %s",
            self.plan.plan_id, len(state.node_set), ", ".join(state.node_set),
        )
        await self._emit(RunStatus.NOT_STARTED.value, f"{RunStatus.RUNNING.value}({first.id})", first.id)
        return state

    def _check_resumable(self, state: DeploymentState) -> None:
        if state.plan_id != self.plan.plan_id:
            raise StateCorruptionError(
                f"State file belongs to plan {state.plan_id}, expected {self.plan.plan_id}"
            )

        unknown = [s for s in state.completed_stage_ids if not self.plan.has_stage(s)]
        if unknown:
            raise StateCorruptionError(
                f"Persisted state references unknown stage id(s): {', '.join(unknown)}"
            )
        if state.current_stage_id is not None:
            if not self.plan.has_stage(state.current_stage_id):
                raise StateCorruptionError(
                    f"Persisted current stage is unknown: {state.current_stage_id}"
                )
            current = self.plan.get(state.current_stage_id)
            if not current.depends_on <= set(state.completed_stage_ids):
                raise StateCorruptionError(
                    f"Persisted current stage {current.id} has incomplete dependencies"
                )

        removed = {r.node for r in state.removed_nodes}
        given = set(self.nodes)
        missing = [n for n in state.node_set if n not in given]
        added = sorted(given - set(state.node_set) - removed)
        if missing or added:
            raise NodeSetMismatchError(
                f"Node set for plan {self.plan.plan_id} differs from the persisted one "
                f"(missing: {', '.join(missing) or '-'}; new: {', '.join(added) or '-'}). "
                "Nodes can only leave a plan through an explicit removal."
            )

        if state.stage_sequence and state.stage_sequence != self.plan.stage_ids:
            logger.warning(
                "Stage sequence of plan %s changed since it started: %s -> %s",
                self.plan.plan_id,
                ", ".join(state.stage_sequence),
                ", ".join(self.plan.stage_ids),
            )

    def _save(self, state: DeploymentState) -> None:
        # PersistenceError propagates; no stage starts without a durable checkpoint
        self.state_store.save(state)
        self._state = state

    @staticmethod
    def _describe(state: DeploymentState) -> str:
        return str(OrchestratorState.of(state))

    async def _emit(
        self,
        from_state: str,
        to_state: str,
        stage_id: Optional[str],
        per_node_summary: Optional[dict[str, str]] = None,
        reason: str = "",
    ) -> None:
        if self.event_bus is None:
            return
        event = StageTransitionEvent(
            aggregate_id=self.plan.plan_id,
            from_state=from_state,
            to_state=to_state,
            stage_id=stage_id,
            per_node_summary=dict(per_node_summary or {}),
            reason=reason,
        )
        try:
            await self.event_bus.publish([event])
        except Exception:
            logger.exception("Transition event handler failed for plan %s", self.plan.plan_id)
