"""
Orchestrator Tests

Architectural Intent:
- Drive the orchestrator state machine across repeated invocations
- An in-memory state store stands in for the file store; each new
  Orchestrator instance over the same store models a process restart
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from stagecoach.application.orchestration import (
    FleetCoordinator,
    NodeExecutor,
    Orchestrator,
    OrchestratorState,
    RetryPolicy,
)
from stagecoach.domain.entities.deployment_state import (
    DeploymentState,
    NodeOutcome,
    NodeResult,
    RunStatus,
)
from stagecoach.domain.entities.plan import DeploymentPlan
from stagecoach.domain.entities.stage import BarrierPolicy, OperationResult, StageDefinition
from stagecoach.domain.errors import (
    NodeSetMismatchError,
    PersistenceError,
    PlanDefinitionError,
    ResumeHintMismatchError,
    StateCorruptionError,
)
from stagecoach.domain.services.validation_engine import CheckRegistry, ValidationEngine
from stagecoach.domain.value_objects.node import Node
from stagecoach.domain.value_objects.validation_report import Severity, ValidationReport

OK = OperationResult(success=True)
FAIL = OperationResult(success=False, detail="exit code 1")
REBOOT = OperationResult(success=True, reboot_required=True)


class ScriptedOperation:
    """Per-node scripted results; records every call."""

    def __init__(self, default=OK, **per_node):
        self.default = default
        self.per_node = per_node
        self.calls: list[str] = []

    def __call__(self, node, config_snapshot):
        self.calls.append(node.node_id)
        return self.per_node.get(node.node_id, self.default)


class RecordingBus:
    def __init__(self):
        self.events = []

    async def publish(self, events):
        self.events.extend(events)

    def subscribe(self, event_type, handler):
        pass

    def transitions(self):
        return [(e.from_state, e.to_state) for e in self.events]


def _orchestrator(plan, nodes, store, checks=None, event_bus=None):
    registry = CheckRegistry()
    for check_id, check in (checks or {}).items():
        registry.register(check_id, check)
    engine = ValidationEngine(registry)
    executor = NodeExecutor(engine, RetryPolicy(base_delay_seconds=0, max_delay_seconds=0))
    coordinator = FleetCoordinator(executor, node_timeout_seconds=5)
    return Orchestrator(plan, nodes, store, engine, coordinator, event_bus)


def _plan(*stages):
    return DeploymentPlan(plan_id="rollout", stages=stages, config_snapshot={"env": "test"})


class TestFirstRun:
    @pytest.mark.asyncio
    async def test_runs_all_stages_to_completion(self, nodes, state_store):
        op_a, op_b = ScriptedOperation(), ScriptedOperation()
        bus = RecordingBus()
        plan = _plan(
            StageDefinition(id="a", operation=op_a),
            StageDefinition(id="b", operation=op_b, depends_on={"a"}),
        )
        result = await _orchestrator(plan, nodes, state_store, event_bus=bus).run()

        assert result.status == RunStatus.COMPLETED
        assert result.exit_code == 0
        assert str(result) == "Completed"
        assert sorted(op_a.calls) == ["node1", "node2", "node3"]
        assert sorted(op_b.calls) == ["node1", "node2", "node3"]

        state = state_store.load("rollout")
        assert state.completed_stage_ids == ("a", "b")
        assert state.current_stage_id is None
        assert state.status == RunStatus.COMPLETED
        assert state.config_snapshot == {"env": "test"}
        assert bus.transitions() == [
            ("NotStarted", "Running(a)"),
            ("Running(a)", "Running(b)"),
            ("Running(b)", "Completed"),
        ]

    @pytest.mark.asyncio
    async def test_state_saved_after_every_stage(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a"), StageDefinition(id="b"))
        await _orchestrator(plan, nodes, state_store).run()
        completed = [s.completed_stage_ids for s in state_store.saves]
        assert completed == [(), ("a",), ("a", "b")]

    @pytest.mark.asyncio
    async def test_step_runs_one_stage(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a"), StageDefinition(id="b"))
        orchestrator = _orchestrator(plan, nodes, state_store)
        result = await orchestrator.step()
        assert str(result) == "Running(b)"
        assert state_store.saves[-1].completed_stage_ids == ("a",)

    @pytest.mark.asyncio
    async def test_transition_events_carry_node_summary(self, nodes, state_store):
        bus = RecordingBus()
        plan = _plan(StageDefinition(id="a"))
        await _orchestrator(plan, nodes, state_store, event_bus=bus).run()
        last = bus.events[-1]
        assert last.plan_id == "rollout"
        assert last.stage_id == "a"
        assert last.per_node_summary == {
            "node1": "success", "node2": "success", "node3": "success",
        }

    @pytest.mark.asyncio
    async def test_failing_event_handler_does_not_stop_run(self, nodes, state_store):
        bus = MagicMock()
        bus.publish = AsyncMock(side_effect=RuntimeError("collector down"))
        plan = _plan(StageDefinition(id="a"))
        result = await _orchestrator(plan, nodes, state_store, event_bus=bus).run()
        assert result.status == RunStatus.COMPLETED

    def test_unknown_check_rejected_at_construction(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a", validation=("ghost",)))
        with pytest.raises(PlanDefinitionError, match="ghost"):
            _orchestrator(plan, nodes, state_store)

    def test_duplicate_nodes_rejected(self, state_store):
        plan = _plan(StageDefinition(id="a"))
        with pytest.raises(NodeSetMismatchError):
            _orchestrator(plan, [Node(host="node1"), Node(host="node1")], state_store)


class TestResumeIdempotence:
    @pytest.mark.asyncio
    async def test_only_stages_after_completed_ones_run(self, nodes, state_store):
        ops = {sid: ScriptedOperation() for sid in ("s1", "s2", "s3", "s4")}
        plan = _plan(*(StageDefinition(id=sid, operation=op) for sid, op in ops.items()))
        state_store.save(
            DeploymentState.new(
                plan_id="rollout",
                node_set=[n.node_id for n in nodes],
                stage_sequence=plan.stage_ids,
            )
            .mark_completed("s1", "s2")
            .mark_completed("s2", "s3")
            .with_status(RunStatus.RUNNING)
        )

        result = await _orchestrator(plan, nodes, state_store).run()

        assert result.status == RunStatus.COMPLETED
        assert ops["s1"].calls == []
        assert ops["s2"].calls == []
        assert len(ops["s3"].calls) == 3
        assert len(ops["s4"].calls) == 3
        assert state_store.load("rollout").completed_stage_ids == ("s1", "s2", "s3", "s4")

    @pytest.mark.asyncio
    async def test_completed_plan_does_nothing(self, nodes, state_store):
        op = ScriptedOperation()
        plan = _plan(StageDefinition(id="a", operation=op))
        await _orchestrator(plan, nodes, state_store).run()
        saves = len(state_store.saves)

        result = await _orchestrator(plan, nodes, state_store).run()
        assert result.status == RunStatus.COMPLETED
        assert len(op.calls) == 3
        assert len(state_store.saves) == saves


class TestBarrier:
    @pytest.mark.asyncio
    async def test_all_must_succeed_halts_on_one_failure(self, nodes, state_store):
        plan = _plan(
            StageDefinition(
                id="create-cluster",
                operation=ScriptedOperation(node2=FAIL),
                barrier_policy=BarrierPolicy.ALL_MUST_SUCCEED,
            ),
        )
        result = await _orchestrator(plan, nodes, state_store).run()

        assert result.status == RunStatus.HALTED
        assert result.exit_code == 1
        assert str(result) == "Halted(create-cluster, node2 failed)"
        assert result.nodes == ("node2",)
        assert "Fix the cause manually" in result.instructions
        state = state_store.load("rollout")
        assert "create-cluster" not in state.completed_stage_ids
        assert state.current_stage_id == "create-cluster"
        assert state.status == RunStatus.HALTED

    @pytest.mark.asyncio
    async def test_best_effort_advances_even_if_all_fail(self, nodes, state_store):
        plan = _plan(
            StageDefinition(
                id="optional-tuning",
                operation=ScriptedOperation(default=FAIL),
                barrier_policy=BarrierPolicy.BEST_EFFORT,
            ),
        )
        result = await _orchestrator(plan, nodes, state_store).run()
        assert result.status == RunStatus.COMPLETED
        assert state_store.load("rollout").completed_stage_ids == ("optional-tuning",)

    @pytest.mark.asyncio
    async def test_majority_failures_held_for_remediation(self, nodes, state_store):
        later = ScriptedOperation()
        plan = _plan(
            StageDefinition(
                id="join-domain",
                operation=ScriptedOperation(node3=FAIL),
                barrier_policy=BarrierPolicy.MAJORITY_MUST_SUCCEED,
            ),
            StageDefinition(id="configure", operation=later),
        )
        result = await _orchestrator(plan, nodes, state_store).run()
        assert result.status == RunStatus.COMPLETED
        assert sorted(later.calls) == ["node1", "node2"]
        assert state_store.load("rollout").remediation == {"node3": "join-domain"}

    @pytest.mark.asyncio
    async def test_halted_stage_retried_on_reinvoke(self, nodes, state_store):
        op = ScriptedOperation(node2=FAIL)
        plan = _plan(StageDefinition(id="a", operation=op))
        await _orchestrator(plan, nodes, state_store).run()

        op.per_node.clear()
        bus = RecordingBus()
        result = await _orchestrator(plan, nodes, state_store, event_bus=bus).run()

        assert result.status == RunStatus.COMPLETED
        # node1 and node3 already succeeded and are not re-run
        assert sorted(op.calls) == ["node1", "node2", "node2", "node3"]
        assert bus.transitions()[0] == ("Halted(a, node2 failed)", "Running(a)")
        assert state_store.load("rollout").attempts_for("a", "node2") == 2


class TestRebootPauseResume:
    @pytest.mark.asyncio
    async def test_pause_then_resume_without_duplicate_work(self, nodes, state_store):
        op = ScriptedOperation(node1=REBOOT)
        next_op = ScriptedOperation()
        checks = {"service-up": lambda node, ctx: ValidationReport.ok("service-up")}
        plan = _plan(
            StageDefinition(id="install-role", operation=op, post_validation=("service-up",)),
            StageDefinition(id="configure", operation=next_op),
        )

        first = await _orchestrator(plan, nodes, state_store, checks).run()
        assert first.status == RunStatus.PAUSED_FOR_REBOOT
        assert first.exit_code == 2
        assert str(first) == "PausedForReboot(install-role)"
        assert first.nodes == ("node1",)
        assert "Reboot node1" in first.instructions
        paused = state_store.load("rollout")
        assert paused.current_stage_id == "install-role"
        assert paused.completed_stage_ids == ()
        assert next_op.calls == []

        # node1 rebooted; its operation would now report plain success
        op.per_node.clear()
        second = await _orchestrator(plan, nodes, state_store, checks).run()

        assert second.status == RunStatus.COMPLETED
        assert sorted(op.calls) == ["node1", "node2", "node3"]
        final = state_store.load("rollout")
        assert final.latest_result("install-role", "node1").outcome == NodeOutcome.SKIPPED
        assert final.attempts_for("install-role", "node2") == 1
        assert final.completed_stage_ids == ("install-role", "configure")

    @pytest.mark.asyncio
    async def test_halt_wins_over_pause(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a", operation=ScriptedOperation(node1=REBOOT, node2=FAIL)))
        result = await _orchestrator(plan, nodes, state_store).run()
        assert result.status == RunStatus.HALTED


class TestValidationGating:
    @pytest.mark.asyncio
    async def test_blocking_failure_prevents_any_node_call(self, nodes, state_store):
        op = ScriptedOperation()
        bus = RecordingBus()

        def disk_space(node, ctx):
            if node.node_id == "node2":
                return ValidationReport.fail("disk-space", "2GB free")
            return ValidationReport.ok("disk-space")

        plan = _plan(StageDefinition(id="a", operation=op, validation=("disk-space",)))
        orchestrator = _orchestrator(
            plan, nodes, state_store, {"disk-space": disk_space}, event_bus=bus
        )
        orchestrator.fleet_coordinator.node_executor = MagicMock()
        orchestrator.fleet_coordinator.node_executor.execute = AsyncMock()

        result = await orchestrator.run()

        assert result.status == RunStatus.HALTED
        assert result.reason == "pre-validation failed: node2: disk-space (2GB free)"
        assert result.nodes == ("node2",)
        orchestrator.fleet_coordinator.node_executor.execute.assert_not_called()
        assert op.calls == []
        # only the initial checkpoint; a validation halt changes no state
        assert len(state_store.saves) == 1
        assert bus.events[-1].to_state.startswith("Halted(a, pre-validation failed")

    @pytest.mark.asyncio
    async def test_warning_does_not_gate(self, nodes, state_store):
        op = ScriptedOperation()
        checks = {
            "ntp": lambda node, ctx: ValidationReport.fail("ntp", "skew", Severity.WARNING)
        }
        plan = _plan(StageDefinition(id="a", operation=op, validation=("ntp",)))
        result = await _orchestrator(plan, nodes, state_store, checks).run()
        assert result.status == RunStatus.COMPLETED
        assert len(op.calls) == 3


class TestResumeSafety:
    @pytest.mark.asyncio
    async def test_node_set_must_match(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a", operation=ScriptedOperation(node1=REBOOT)))
        await _orchestrator(plan, nodes, state_store).run()

        with pytest.raises(NodeSetMismatchError, match="missing: node3"):
            await _orchestrator(plan, nodes[:2], state_store).run()
        with pytest.raises(NodeSetMismatchError, match="new: node4"):
            await _orchestrator(plan, nodes + [Node(host="node4")], state_store).run()

    @pytest.mark.asyncio
    async def test_resume_hint_must_match(self, nodes, state_store):
        plan = _plan(
            StageDefinition(id="a", operation=ScriptedOperation(node1=REBOOT)),
            StageDefinition(id="b"),
        )
        await _orchestrator(plan, nodes, state_store).run()

        with pytest.raises(ResumeHintMismatchError, match="'b'"):
            await _orchestrator(plan, nodes, state_store).run(resume_from="b")
        result = await _orchestrator(plan, nodes, state_store).run(resume_from="a")
        assert result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_persisted_stage_is_corruption(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a"))
        state_store.save(
            DeploymentState.new(plan_id="rollout", node_set=[n.node_id for n in nodes])
            .mark_completed("removed-stage", "a")
        )
        with pytest.raises(StateCorruptionError, match="removed-stage"):
            await _orchestrator(plan, nodes, state_store).run()

    @pytest.mark.asyncio
    async def test_persistence_failure_is_fatal(self, nodes, state_store):
        op_b = ScriptedOperation()
        plan = _plan(StageDefinition(id="a"), StageDefinition(id="b", operation=op_b))
        real_save = state_store.save
        calls = []

        def flaky_save(state):
            calls.append(state)
            if len(calls) == 2:
                raise PersistenceError("disk full")
            real_save(state)

        state_store.save = flaky_save
        with pytest.raises(PersistenceError, match="disk full"):
            await _orchestrator(plan, nodes, state_store).run()
        assert op_b.calls == []
        assert state_store.load("rollout").completed_stage_ids == ()


class TestOperatorControls:
    @pytest.mark.asyncio
    async def test_abort_honoured_between_stages(self, nodes, state_store):
        op_b = ScriptedOperation()
        holder = {}

        def op_a(node, snapshot):
            holder["orchestrator"].request_abort()
            return OK

        plan = _plan(StageDefinition(id="a", operation=op_a), StageDefinition(id="b", operation=op_b))
        orchestrator = _orchestrator(plan, nodes, state_store)
        holder["orchestrator"] = orchestrator

        result = await orchestrator.run()

        assert str(result) == "Halted(b, aborted by operator)"
        assert op_b.calls == []
        state = state_store.load("rollout")
        assert state.completed_stage_ids == ("a",)
        assert state.status == RunStatus.HALTED

    @pytest.mark.asyncio
    async def test_remove_node_lets_plan_continue(self, nodes, state_store):
        op = ScriptedOperation(node2=FAIL)
        plan = _plan(StageDefinition(id="a", operation=op))
        orchestrator = _orchestrator(plan, nodes, state_store)
        assert (await orchestrator.run()).status == RunStatus.HALTED

        state = await orchestrator.remove_node("node2", "hardware replaced")
        assert state.node_set == ("node1", "node3")

        result = await _orchestrator(plan, nodes, state_store).run()
        assert result.status == RunStatus.COMPLETED
        assert op.calls.count("node2") == 1
        persisted = state_store.load("rollout")
        assert persisted.removed_nodes[0].reason == "hardware replaced"

    @pytest.mark.asyncio
    async def test_remove_unknown_node(self, nodes, state_store):
        plan = _plan(StageDefinition(id="a", operation=ScriptedOperation(node2=FAIL)))
        orchestrator = _orchestrator(plan, nodes, state_store)
        await orchestrator.run()
        with pytest.raises(NodeSetMismatchError, match="ghost"):
            await orchestrator.remove_node("ghost", "typo")


class TestOrchestratorState:
    def test_string_forms(self):
        assert str(OrchestratorState(RunStatus.NOT_STARTED)) == "NotStarted"
        assert str(OrchestratorState(RunStatus.RUNNING, "a")) == "Running(a)"
        assert str(OrchestratorState(RunStatus.PAUSED_FOR_REBOOT, "a")) == "PausedForReboot(a)"
        assert str(OrchestratorState(RunStatus.HALTED, "a", "boom")) == "Halted(a, boom)"

    def test_exit_codes(self):
        assert OrchestratorState(RunStatus.COMPLETED).exit_code == 0
        assert OrchestratorState(RunStatus.HALTED, "a").exit_code == 1
        assert OrchestratorState(RunStatus.PAUSED_FOR_REBOOT, "a").exit_code == 2
        assert not OrchestratorState(RunStatus.RUNNING, "a").is_terminal
