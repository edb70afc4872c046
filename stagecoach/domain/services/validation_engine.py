"""
Validation Engine

Architectural Intent:
- Runs named checks against nodes and returns structured ValidationReports
- Gates stage entry (pre-validation) and confirms stages took effect
  (post-condition validation), independent of an operation's own return code
- Reports are advisory data; they are never persisted as authoritative state

Design Decisions:
- Checks are resolved by name through a CheckRegistry
- Checks for all (check, node) pairs run concurrently; each is a pure observation
- A check that raises becomes a failed BLOCKING report instead of an exception
- Sync checks run in a worker thread so SSH-backed checks do not block the loop
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from typing import Iterable, Iterator

from stagecoach.domain.errors import PlanDefinitionError
from stagecoach.domain.ports.check_port import ValidationCheck
from stagecoach.domain.value_objects.context import ExecutionContext
from stagecoach.domain.value_objects.node import Node
from stagecoach.domain.value_objects.validation_report import (
    Severity,
    ValidationReport,
)

logger = logging.getLogger(__name__)


class CheckRegistry:
    """Name -> check callable."""

    def __init__(self) -> None:
        self._checks: dict[str, ValidationCheck] = {}

    def register(self, check_id: str, check: ValidationCheck) -> None:
        if check_id in self._checks:
            raise PlanDefinitionError(f"Check already registered: {check_id}")
        self._checks[check_id] = check

    def get(self, check_id: str) -> ValidationCheck:
        try:
            return self._checks[check_id]
        except KeyError:
            raise PlanDefinitionError(f"Unknown check: {check_id}") from None

    def __contains__(self, check_id: object) -> bool:
        return check_id in self._checks

    def __iter__(self) -> Iterator[str]:
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)


class ValidationEngine:

    def __init__(self, registry: CheckRegistry):
        self.registry = registry

    async def run(
        self,
        checks: Iterable[str],
        nodes: Iterable[Node],
        context: ExecutionContext,
    ) -> list[ValidationReport]:
        check_ids = list(checks)
        nodes = list(nodes)
        if not check_ids or not nodes:
            return []

        # resolve everything up front so an unknown check fails before any runs
        resolved = [(cid, self.registry.get(cid)) for cid in check_ids]

        reports = await asyncio.gather(
            *(
                self._run_one(cid, check, node, context)
                for cid, check in resolved
                for node in nodes
            )
        )
        for report in reports:
            if report.is_blocking_failure:
                logger.warning(
                    "Blocking check %s failed on %s: %s",
                    report.check_id, report.node, report.detail,
                )
            elif report.is_warning:
                logger.warning(
                    "Check %s warned on %s: %s", report.check_id, report.node, report.detail
                )
        return list(reports)

    async def _run_one(
        self,
        check_id: str,
        check: ValidationCheck,
        node: Node,
        context: ExecutionContext,
    ) -> ValidationReport:
        try:
            if inspect.iscoroutinefunction(check) or inspect.iscoroutinefunction(
                getattr(check, "__call__", None)
            ):
                report = await check(node, context)
            else:
                report = await asyncio.to_thread(check, node, context)
                if inspect.isawaitable(report):
                    report = await report
        except Exception as e:
            logger.error("Check %s raised on %s: %s", check_id, node.node_id, e)
            return ValidationReport(
                check_id=check_id,
                severity=Severity.BLOCKING,
                passed=False,
                detail=f"check raised {type(e).__name__}: {e}",
                node=node.node_id,
            )

        if not isinstance(report, ValidationReport):
            return ValidationReport(
                check_id=check_id,
                severity=Severity.BLOCKING,
                passed=False,
                detail=f"check returned {type(report).__name__}, expected ValidationReport",
                node=node.node_id,
            )
        return report.for_node(node.node_id)

    @staticmethod
    def is_blocked(reports: Iterable[ValidationReport]) -> bool:
        return any(r.is_blocking_failure for r in reports)

    @staticmethod
    def blocking_failures(reports: Iterable[ValidationReport]) -> list[ValidationReport]:
        return [r for r in reports if r.is_blocking_failure]

    @staticmethod
    def warnings(reports: Iterable[ValidationReport]) -> list[ValidationReport]:
        return [r for r in reports if r.is_warning]

    @staticmethod
    def all_passed(reports: Iterable[ValidationReport]) -> bool:
        reports = list(reports)
        return bool(reports) and all(r.passed for r in reports)
