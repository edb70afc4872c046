"""
Run Deployment Use Case

Architectural Intent:
- Loads a plan document, resolves the target node set and drives the
  Orchestrator until it completes, pauses for a reboot or halts
- Every invocation is a resume: the orchestrator starts from persisted state
- Wires the per-run collaborators (validation engine, node executor, fleet
  coordinator) because checks and operations are bound per plan document

Target Resolution (first non-empty wins):
1. Targets given on the request
2. Targets listed in the plan document
3. Configured fleet targets
4. The node set persisted for the plan id (resume without re-stating targets)
"""

import dataclasses
import logging
from typing import Optional, Sequence

from stagecoach.application.dtos.deployment_dtos import (
    RunDeploymentRequest,
    RunDeploymentResponse,
)
from stagecoach.application.orchestration.fleet_coordinator import (
    DEFAULT_NODE_TIMEOUT_SECONDS,
    FleetCoordinator,
)
from stagecoach.application.orchestration.node_executor import NodeExecutor, RetryPolicy
from stagecoach.application.orchestration.orchestrator import Orchestrator
from stagecoach.domain.errors import NodeSetMismatchError
from stagecoach.domain.ports.event_bus_port import EventBusPort
from stagecoach.domain.ports.plan_source_port import LoadedPlan, PlanSourcePort
from stagecoach.domain.ports.state_store_port import StateStorePort
from stagecoach.domain.services.validation_engine import ValidationEngine
from stagecoach.domain.value_objects.node import Node


logger = logging.getLogger(__name__)


class RunDeployment:
    def __init__(
        self,
        plan_source: PlanSourcePort,
        state_store: StateStorePort,
        event_bus: Optional[EventBusPort] = None,
        retry_policy: Optional[RetryPolicy] = None,
        node_timeout_seconds: float = DEFAULT_NODE_TIMEOUT_SECONDS,
        max_parallel: Optional[int] = None,
        default_targets: Sequence[str] = (),
        default_user: str = "root",
    ):
        self.plan_source = plan_source
        self.state_store = state_store
        self.event_bus = event_bus
        self.retry_policy = retry_policy or RetryPolicy()
        self.node_timeout_seconds = node_timeout_seconds
        self.max_parallel = max_parallel or None
        self.default_targets = tuple(default_targets)
        self.default_user = default_user
        self.orchestrator: Optional[Orchestrator] = None

    def build_orchestrator(self, loaded: LoadedPlan, nodes: Sequence[Node]) -> Orchestrator:
        engine = ValidationEngine(loaded.checks)
        executor = NodeExecutor(engine, self.retry_policy)
        coordinator = FleetCoordinator(
            executor,
            node_timeout_seconds=self.node_timeout_seconds,
            max_parallel=self.max_parallel,
        )
        return Orchestrator(
            plan=loaded.plan,
            nodes=nodes,
            state_store=self.state_store,
            validation_engine=engine,
            fleet_coordinator=coordinator,
            event_bus=self.event_bus,
        )

    def resolve_nodes(self, plan_id: str, targets: Sequence[str]) -> list[Node]:
        if not targets:
            state = self.state_store.load(plan_id)
            if state is None:
                raise NodeSetMismatchError(
                    f"No targets given for plan {plan_id} and no persisted node set to resume"
                )
            removed = {r.node for r in state.removed_nodes}
            targets = [state.endpoint_for(n) for n in state.node_set if n not in removed]
            logger.info("Using persisted node set for %s: %s", plan_id, ", ".join(targets))
        try:
            return Node.parse_many(list(targets), default_user=self.default_user)
        except ValueError as e:
            raise NodeSetMismatchError(str(e)) from e

    async def execute(self, request: RunDeploymentRequest) -> RunDeploymentResponse:
        loaded = self.plan_source.load(request.plan_path)
        if request.plan_id and request.plan_id != loaded.plan.plan_id:
            loaded = dataclasses.replace(
                loaded, plan=dataclasses.replace(loaded.plan, plan_id=request.plan_id)
            )
        plan = loaded.plan

        targets = request.targets or list(plan.targets) or list(self.default_targets)
        nodes = self.resolve_nodes(plan.plan_id, targets)

        self.orchestrator = self.build_orchestrator(loaded, nodes)
        result = await self.orchestrator.run(resume_from=request.resume_from)
        logger.info("Plan %s finished invocation in state %s", plan.plan_id, result)
        return RunDeploymentResponse(
            plan_id=plan.plan_id,
            state=str(result),
            exit_code=result.exit_code,
            instructions=result.instructions,
            nodes=result.nodes,
        )

    def request_abort(self) -> None:
        if self.orchestrator is not None:
            self.orchestrator.request_abort()
