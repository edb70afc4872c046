"""
Fleet Coordinator

Architectural Intent:
- Fans one stage out across the node set and joins on all results
- Nodes are independent targets: executions run concurrently with no locking;
  the join after every node reports (or times out) is the only sync point
- Applies the stage's barrier policy to decide whether the plan advances

Resume Behaviour:
- A node whose latest persisted result for the stage is SUCCESS or SKIPPED is
  not executed again; that result is carried into the barrier decision
- Every other node (no result, FAILED, REBOOT_PENDING) is handed to the
  node executor together with its latest result

Timeouts:
- A per-node timeout bounds the wait; a timed-out node is classified FAILED
  with failure_kind TIMEOUT and a distinguishable error detail
- The wait cannot stop a worker thread, so command-backed operations carry
  the same bound to the SSH call (see PlanLoader)
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from stagecoach.application.orchestration.node_executor import NodeExecutor
from stagecoach.domain.entities.deployment_state import (
    FailureKind,
    NodeOutcome,
    NodeResult,
)
from stagecoach.domain.entities.stage import StageDefinition
from stagecoach.domain.services.barrier import BarrierDecision, evaluate_barrier
from stagecoach.domain.value_objects.context import ExecutionContext
from stagecoach.domain.value_objects.node import Node

logger = logging.getLogger(__name__)

DEFAULT_NODE_TIMEOUT_SECONDS = 1800.0


@dataclass(frozen=True)
class StageOutcome:
    stage_id: str
    per_node: tuple[NodeResult, ...]
    decision: BarrierDecision
    new_results: tuple[NodeResult, ...] = ()
    reused: tuple[str, ...] = field(default=())

    @property
    def advance(self) -> bool:
        return self.decision.advance

    @property
    def paused_for_reboot(self) -> bool:
        return self.decision.paused_for_reboot

    @property
    def halted(self) -> bool:
        return self.decision.halted

    def summary(self) -> dict[str, str]:
        return {r.node: r.outcome.value for r in self.per_node}


class FleetCoordinator:
    def __init__(
        self,
        node_executor: NodeExecutor,
        node_timeout_seconds: float = DEFAULT_NODE_TIMEOUT_SECONDS,
        max_parallel: Optional[int] = None,
    ):
        if node_timeout_seconds <= 0:
            raise ValueError("node_timeout_seconds must be > 0")
        if max_parallel is not None and max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        self.node_executor = node_executor
        self.node_timeout_seconds = node_timeout_seconds
        self.max_parallel = max_parallel

    async def run_stage(
        self,
        stage: StageDefinition,
        nodes: Sequence[Node],
        context: ExecutionContext,
        previous: Optional[Mapping[str, NodeResult]] = None,
    ) -> StageOutcome:
        previous = previous or {}
        timeout = stage.timeout_seconds or self.node_timeout_seconds
        semaphore = asyncio.Semaphore(self.max_parallel) if self.max_parallel else None

        reused: list[NodeResult] = []
        pending: list[Node] = []
        for node in nodes:
            prior = previous.get(node.node_id)
            if prior is not None and prior.outcome.counts_as_success:
                reused.append(prior)
            else:
                pending.append(node)

        if reused:
            logger.info(
                "Stage %s: reusing results for %s",
                stage.id, ", ".join(r.node for r in reused),
            )
        logger.info(
            "Stage %s: dispatching to %d node(s) (%s)",
            stage.id, len(pending), stage.barrier_policy.value,
        )

        async def run_node(node: Node) -> NodeResult:
            prior = previous.get(node.node_id)
            if semaphore is None:
                return await self._run_with_timeout(stage, node, context, prior, timeout)
            async with semaphore:
                return await self._run_with_timeout(stage, node, context, prior, timeout)

        outcomes = await asyncio.gather(
            *(run_node(node) for node in pending), return_exceptions=True
        )

        new_results: list[NodeResult] = []
        for node, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                prior = previous.get(node.node_id)
                outcome = NodeResult(
                    node=node.node_id,
                    stage_id=stage.id,
                    outcome=NodeOutcome.FAILED,
                    attempt=(prior.attempt if prior else 0) + 1,
                    error_detail=f"{type(outcome).__name__}: {outcome}",
                    failure_kind=FailureKind.EXCEPTION,
                )
            new_results.append(outcome)
            self._log_result(outcome)

        by_node = {r.node: r for r in reused + new_results}
        per_node = tuple(by_node[n.node_id] for n in nodes)
        decision = evaluate_barrier(stage.barrier_policy, per_node)

        return StageOutcome(
            stage_id=stage.id,
            per_node=per_node,
            decision=decision,
            new_results=tuple(new_results),
            reused=tuple(r.node for r in reused),
        )

    async def _run_with_timeout(
        self,
        stage: StageDefinition,
        node: Node,
        context: ExecutionContext,
        prior: Optional[NodeResult],
        timeout: float,
    ) -> NodeResult:
        try:
            return await asyncio.wait_for(
                self.node_executor.execute(stage, node, context, prior), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "Stage %s timed out on %s after %.1fs", stage.id, node.node_id, timeout
            )
            return NodeResult(
                node=node.node_id,
                stage_id=stage.id,
                outcome=NodeOutcome.FAILED,
                attempt=(prior.attempt if prior else 0) + 1,
                error_detail=f"timeout: no response within {timeout:g}s",
                failure_kind=FailureKind.TIMEOUT,
            )

    @staticmethod
    def _log_result(result: NodeResult) -> None:
        if result.outcome == NodeOutcome.FAILED:
            logger.warning(
                "Stage %s failed on %s (attempt %d): %s",
                result.stage_id, result.node, result.attempt, result.error_detail,
            )
        else:
            logger.info(
                "Stage %s on %s: %s", result.stage_id, result.node, result.outcome.value
            )
