"""
Command-backed Stage Operations and Checks

Architectural Intent:
- Bind StageDefinitions and named checks to shell commands run on each node
- Commands are templates: $name placeholders are filled from the plan's
  config snapshot plus $node_id, $host, $user and $port

Reboot Signalling:
- An operation whose exit code is in reboot_exit_codes (default 3010 and 194,
  the Windows "success, reboot required" codes) or whose stdout contains the
  REBOOT_REQUIRED marker reports success with reboot_required=True
- A check whose exit code is in reboot_exit_codes fails with requires_reboot
"""

from __future__ import annotations
import logging
from string import Template
from typing import Any, Mapping, Optional

from stagecoach.domain.entities.stage import OperationResult
from stagecoach.domain.ports.remote_executor_port import RemoteExecutorPort
from stagecoach.domain.value_objects.context import ExecutionContext
from stagecoach.domain.value_objects.node import Node
from stagecoach.domain.value_objects.validation_report import (
    Severity,
    ValidationReport,
)

logger = logging.getLogger(__name__)

DEFAULT_REBOOT_EXIT_CODES = (3010, 194)
REBOOT_MARKER = "REBOOT_REQUIRED"
_DETAIL_LIMIT = 500


def render_command(template: str, node: Node, values: Mapping[str, Any]) -> str:
    substitutions = {str(k): v for k, v in values.items()}
    substitutions.update(
        node_id=node.node_id, host=node.host, user=node.user, port=node.port
    )
    return Template(template).safe_substitute(substitutions)


def _tail(text: str) -> str:
    text = text.strip()
    return text[-_DETAIL_LIMIT:]


class CommandOperation:
    def __init__(
        self,
        remote: RemoteExecutorPort,
        command: str,
        reboot_exit_codes: tuple[int, ...] = DEFAULT_REBOOT_EXIT_CODES,
        timeout: Optional[float] = None,
    ):
        if not command.strip():
            raise ValueError("command cannot be empty")
        self.remote = remote
        self.command = command
        self.reboot_exit_codes = tuple(reboot_exit_codes)
        self.timeout = timeout

    def __call__(self, node: Node, config_snapshot: Mapping[str, Any]) -> OperationResult:
        command = render_command(self.command, node, config_snapshot)
        result = self.remote.run(node, command, timeout=self.timeout)

        if result.exit_code in self.reboot_exit_codes:
            return OperationResult(
                success=True,
                reboot_required=True,
                detail=f"exit code {result.exit_code} signals reboot",
            )
        if not result.ok:
            return OperationResult(
                success=False,
                detail=f"exit code {result.exit_code}: {_tail(result.stderr or result.stdout)}",
            )
        if REBOOT_MARKER in result.stdout:
            return OperationResult(success=True, reboot_required=True, detail="reboot requested")
        return OperationResult(success=True, detail=_tail(result.stdout))


class CommandCheck:
    def __init__(
        self,
        remote: RemoteExecutorPort,
        check_id: str,
        command: str,
        severity: Severity = Severity.BLOCKING,
        reboot_exit_codes: tuple[int, ...] = (),
        timeout: Optional[float] = 60.0,
    ):
        self.remote = remote
        self.check_id = check_id
        self.command = command
        self.severity = severity
        self.reboot_exit_codes = tuple(reboot_exit_codes)
        self.timeout = timeout

    def __call__(self, node: Node, context: ExecutionContext) -> ValidationReport:
        command = render_command(self.command, node, context.config_snapshot)
        result = self.remote.run(node, command, timeout=self.timeout)
        if result.ok:
            return ValidationReport.ok(self.check_id, _tail(result.stdout), self.severity)
        return ValidationReport.fail(
            self.check_id,
            f"exit code {result.exit_code}: {_tail(result.stderr or result.stdout)}",
            self.severity,
            requires_reboot=result.exit_code in self.reboot_exit_codes,
        )
