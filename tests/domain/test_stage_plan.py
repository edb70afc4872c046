"""Tests for StageDefinition and DeploymentPlan."""

import pytest

from stagecoach.domain.entities.plan import DeploymentPlan
from stagecoach.domain.entities.stage import (
    BarrierPolicy,
    OperationResult,
    StageDefinition,
    noop_operation,
)
from stagecoach.domain.errors import PlanDefinitionError
from stagecoach.domain.value_objects.node import Node


class TestStageDefinition:
    def test_defaults(self):
        stage = StageDefinition(id="install-role")
        assert stage.requires_reboot is False
        assert stage.depends_on == frozenset()
        assert stage.barrier_policy == BarrierPolicy.ALL_MUST_SUCCEED
        assert stage.operation is noop_operation

    def test_iterables_normalized(self):
        stage = StageDefinition(
            id="s", depends_on=["a"], validation=["c1"], satisfied_when=["c2"]
        )
        assert stage.depends_on == frozenset({"a"})
        assert stage.validation == ("c1",)
        assert stage.all_checks == ("c1", "c2")

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="id cannot be empty"):
            StageDefinition(id=" ")

    def test_self_dependency_rejected(self):
        with pytest.raises(ValueError, match="cannot depend on itself"):
            StageDefinition(id="s", depends_on={"s"})

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError, match="max_retries"):
            StageDefinition(id="s", max_retries=-1)

    def test_retries_only_for_idempotent_stages(self):
        assert StageDefinition(id="s", max_retries=3).retry_bound == 0
        assert StageDefinition(id="s", max_retries=3, idempotent=True).retry_bound == 3

    def test_noop_operation_succeeds(self):
        result = noop_operation(Node(host="node1"), {})
        assert result == OperationResult(success=True, detail="no-op")


class TestBarrierPolicyParse:
    @pytest.mark.parametrize("value,expected", [
        ("all_must_succeed", BarrierPolicy.ALL_MUST_SUCCEED),
        ("AllMustSucceed", BarrierPolicy.ALL_MUST_SUCCEED),
        ("majority-must-succeed", BarrierPolicy.MAJORITY_MUST_SUCCEED),
        ("BestEffort", BarrierPolicy.BEST_EFFORT),
    ])
    def test_accepted_spellings(self, value, expected):
        assert BarrierPolicy.parse(value) == expected

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            BarrierPolicy.parse("quorum")


class TestDeploymentPlan:
    def _plan(self, *stages, **kwargs):
        return DeploymentPlan(plan_id="p1", stages=stages, **kwargs)

    def test_registry_queries(self):
        plan = self._plan(
            StageDefinition(id="a"),
            StageDefinition(id="b", depends_on={"a"}),
        )
        assert len(plan) == 2
        assert plan.stage_ids == ("a", "b")
        assert plan.has_stage("b")
        assert plan.get("b").depends_on == {"a"}
        assert [s.id for s in plan] == ["a", "b"]

    def test_get_unknown_stage(self):
        plan = self._plan(StageDefinition(id="a"))
        with pytest.raises(PlanDefinitionError, match="Unknown stage id"):
            plan.get("zzz")

    def test_next_pending(self):
        plan = self._plan(StageDefinition(id="a"), StageDefinition(id="b"))
        assert plan.next_pending([]).id == "a"
        assert plan.next_pending(["a"]).id == "b"
        assert plan.next_pending(["a", "b"]) is None

    def test_empty_plan_rejected(self):
        with pytest.raises(PlanDefinitionError, match="no stages"):
            self._plan()

    def test_empty_plan_id_rejected(self):
        with pytest.raises(PlanDefinitionError, match="plan_id"):
            DeploymentPlan(plan_id="", stages=(StageDefinition(id="a"),))

    def test_duplicate_ids_rejected(self):
        with pytest.raises(PlanDefinitionError, match="Duplicate stage id"):
            self._plan(StageDefinition(id="a"), StageDefinition(id="a"))

    def test_unknown_dependency_rejected(self):
        with pytest.raises(PlanDefinitionError, match="unknown stage"):
            self._plan(StageDefinition(id="a", depends_on={"ghost"}))

    def test_cycle_rejected(self):
        with pytest.raises(PlanDefinitionError, match="Circular dependency"):
            self._plan(
                StageDefinition(id="a", depends_on={"b"}),
                StageDefinition(id="b", depends_on={"a"}),
            )

    def test_dependency_on_later_stage_rejected(self):
        with pytest.raises(PlanDefinitionError, match="do not precede"):
            self._plan(
                StageDefinition(id="a", depends_on={"b"}),
                StageDefinition(id="b"),
            )

    def test_validate_checks(self):
        plan = self._plan(StageDefinition(id="a", validation=("disk-space",)))
        plan.validate_checks(["disk-space"])
        with pytest.raises(PlanDefinitionError, match="unknown checks: disk-space"):
            plan.validate_checks([])
