"""
Node Executor

Architectural Intent:
- Performs one stage's work on one node and classifies the result into
  exactly one NodeOutcome; never raises for node-local failures
- Applicability probe (satisfied_when) runs first: an already-satisfied node
  is SKIPPED without calling the operation
- Nodes paused for reboot are re-validated before anything is re-applied
- Post-condition checks confirm the operation took effect, independent of
  its own return code

Classification:
- SUCCESS: operation succeeded and post-conditions (if any) passed
- REBOOT_PENDING: operation (or a failed post-condition) signals a reboot,
  or the stage is declared reboot-inducing
- FAILED: operation error, exception, or failed blocking post-condition
- SKIPPED: stage already satisfied on the node

Retries:
- Only idempotent stages retry, up to stage.max_retries, with exponential backoff
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Optional

from stagecoach.domain.entities.deployment_state import (
    FailureKind,
    NodeOutcome,
    NodeResult,
)
from stagecoach.domain.entities.stage import OperationResult, StageDefinition
from stagecoach.domain.services.validation_engine import ValidationEngine
from stagecoach.domain.value_objects.context import ExecutionContext, Phase
from stagecoach.domain.value_objects.node import Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def backoff(self, attempt: int) -> float:
        return min((2 ** (attempt - 1)) * self.base_delay_seconds, self.max_delay_seconds)


class NodeExecutor:
    def __init__(
        self,
        validation_engine: ValidationEngine,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.validation_engine = validation_engine
        self.retry_policy = retry_policy or RetryPolicy()

    async def execute(
        self,
        stage: StageDefinition,
        node: Node,
        context: ExecutionContext,
        previous: Optional[NodeResult] = None,
    ) -> NodeResult:
        """Run the stage on one node. `previous` is the node's latest persisted result."""
        attempt = (previous.attempt if previous else 0) + 1
        context = context.for_stage(stage.id)

        try:
            if previous and previous.outcome == NodeOutcome.REBOOT_PENDING:
                confirmed = await self._confirm_after_reboot(stage, node, context)
                if confirmed is not None:
                    return self._result(stage, node, NodeOutcome.SKIPPED, attempt, confirmed)

            if stage.satisfied_when:
                reports = await self.validation_engine.run(
                    stage.satisfied_when, [node], context.in_phase(Phase.SATISFIED)
                )
                if ValidationEngine.all_passed(reports):
                    logger.info("Stage %s already satisfied on %s", stage.id, node.node_id)
                    return self._result(
                        stage, node, NodeOutcome.SKIPPED, attempt, "already satisfied"
                    )

            return await self._apply_with_retries(stage, node, context, attempt)
        except Exception as e:
            logger.exception("Stage %s crashed on %s", stage.id, node.node_id)
            return self._result(
                stage, node, NodeOutcome.FAILED, attempt,
                f"{type(e).__name__}: {e}", FailureKind.EXCEPTION,
            )

    async def _confirm_after_reboot(
        self, stage: StageDefinition, node: Node, context: ExecutionContext
    ) -> Optional[str]:
        """Returns a detail string if the node is confirmed consistent after its reboot."""
        checks = stage.satisfied_when + stage.post_validation
        if not checks:
            logger.info(
                "Stage %s has no checks to confirm %s after reboot; accepting reboot",
                stage.id, node.node_id,
            )
            return "reboot acknowledged"

        reports = await self.validation_engine.run(
            checks, [node], context.in_phase(Phase.POST)
        )
        if not ValidationEngine.is_blocked(reports) and not any(
            r.requires_reboot and not r.passed for r in reports
        ):
            return "confirmed after reboot"

        logger.warning(
            "Stage %s not confirmed on %s after reboot; re-applying", stage.id, node.node_id
        )
        return None

    async def _apply_with_retries(
        self,
        stage: StageDefinition,
        node: Node,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        max_tries = stage.retry_bound + 1
        last: Optional[NodeResult] = None

        for n in range(1, max_tries + 1):
            last = await self._apply_once(stage, node, context, attempt)
            if last.outcome != NodeOutcome.FAILED or n == max_tries:
                break
            delay = self.retry_policy.backoff(n)
            logger.warning(
                "Stage %s attempt %d/%d failed on %s (%s); retrying in %.1fs",
                stage.id, n, max_tries, node.node_id, last.error_detail, delay,
            )
            await asyncio.sleep(delay)

        assert last is not None
        if last.outcome == NodeOutcome.FAILED and max_tries > 1:
            return self._result(
                stage, node, NodeOutcome.FAILED, attempt,
                f"retry bound exceeded after {max_tries} tries: {last.error_detail}",
                last.failure_kind,
            )
        return last

    async def _apply_once(
        self,
        stage: StageDefinition,
        node: Node,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        try:
            op_result = await self._call_operation(stage, node, context)
        except Exception as e:
            logger.error("Stage %s operation raised on %s: %s", stage.id, node.node_id, e)
            return self._result(
                stage, node, NodeOutcome.FAILED, attempt,
                f"{type(e).__name__}: {e}", FailureKind.EXCEPTION,
            )

        if not op_result.success:
            return self._result(
                stage, node, NodeOutcome.FAILED, attempt,
                op_result.detail or "operation reported failure", FailureKind.OPERATION,
            )

        if op_result.reboot_required or stage.requires_reboot:
            return self._result(
                stage, node, NodeOutcome.REBOOT_PENDING, attempt,
                op_result.detail or "reboot required",
            )

        if stage.post_validation:
            reports = await self.validation_engine.run(
                stage.post_validation, [node], context.in_phase(Phase.POST)
            )
            if any(r.requires_reboot and not r.passed for r in reports):
                return self._result(
                    stage, node, NodeOutcome.REBOOT_PENDING, attempt,
                    "post-condition reports pending reboot",
                )
            blocking = ValidationEngine.blocking_failures(reports)
            if blocking:
                detail = "; ".join(f"{r.check_id}: {r.detail}" for r in blocking)
                return self._result(
                    stage, node, NodeOutcome.FAILED, attempt,
                    f"post-condition failed: {detail}", FailureKind.POST_CONDITION,
                )

        return self._result(stage, node, NodeOutcome.SUCCESS, attempt)

    async def _call_operation(
        self, stage: StageDefinition, node: Node, context: ExecutionContext
    ) -> OperationResult:
        snapshot = context.config_snapshot
        operation = stage.operation
        if inspect.iscoroutinefunction(operation):
            result = await operation(node, snapshot)
        else:
            result = await asyncio.to_thread(operation, node, snapshot)
            if inspect.isawaitable(result):
                result = await result
        if not isinstance(result, OperationResult):
            raise TypeError(
                f"operation returned {type(result).__name__}, expected OperationResult"
            )
        return result

    @staticmethod
    def _result(
        stage: StageDefinition,
        node: Node,
        outcome: NodeOutcome,
        attempt: int,
        detail: Optional[str] = None,
        failure_kind: Optional[FailureKind] = None,
    ) -> NodeResult:
        return NodeResult(
            node=node.node_id,
            stage_id=stage.id,
            outcome=outcome,
            attempt=attempt,
            error_detail=detail,
            failure_kind=failure_kind,
        )
