"""
Barrier Policy Service

Architectural Intent:
- Pure decision function: per-node outcomes of one stage -> advance / pause / halt
- No I/O, no state; the fleet coordinator and tests call it directly

Decision Order:
1. Halt if the policy cannot be met even if every reboot-pending node later
   succeeds (a pending reboot would not rescue the stage)
2. Pause for reboot if any node is RebootPending
3. Otherwise advance; MAJORITY_MUST_SUCCEED failures are flagged for remediation
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable

from stagecoach.domain.entities.deployment_state import NodeOutcome, NodeResult
from stagecoach.domain.entities.stage import BarrierPolicy


@dataclass(frozen=True)
class BarrierDecision:
    advance: bool
    paused_for_reboot: bool = False
    halted: bool = False
    reason: str = ""
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    reboot_pending: tuple[str, ...] = ()
    remediation: tuple[str, ...] = field(default=())


def _majority(count: int, total: int) -> bool:
    return 2 * count > total


def evaluate_barrier(policy: BarrierPolicy, results: Iterable[NodeResult]) -> BarrierDecision:
    results = list(results)
    succeeded = tuple(r.node for r in results if r.outcome.counts_as_success)
    failed = tuple(r.node for r in results if r.outcome == NodeOutcome.FAILED)
    reboot = tuple(r.node for r in results if r.outcome == NodeOutcome.REBOOT_PENDING)
    total = len(results)
    buckets = dict(succeeded=succeeded, failed=failed, reboot_pending=reboot)

    if total == 0:
        return BarrierDecision(
            advance=False, halted=True, reason="no active nodes to run the stage on", **buckets
        )

    if policy == BarrierPolicy.ALL_MUST_SUCCEED and failed:
        return BarrierDecision(
            advance=False, halted=True, reason=f"{', '.join(failed)} failed", **buckets
        )

    if policy == BarrierPolicy.MAJORITY_MUST_SUCCEED and not _majority(
        len(succeeded) + len(reboot), total
    ):
        return BarrierDecision(
            advance=False,
            halted=True,
            reason=(
                f"majority not reached ({len(succeeded)}/{total} succeeded); "
                f"{', '.join(failed)} failed"
            ),
            **buckets,
        )

    if reboot:
        return BarrierDecision(
            advance=False,
            paused_for_reboot=True,
            reason=f"reboot required on {', '.join(reboot)}",
            **buckets,
        )

    remediation = failed if policy == BarrierPolicy.MAJORITY_MUST_SUCCEED else ()
    if failed:
        reason = f"advanced with failures on {', '.join(failed)}"
    else:
        reason = ""
    return BarrierDecision(advance=True, reason=reason, remediation=remediation, **buckets)
