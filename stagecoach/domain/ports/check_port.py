"""
Validation Check Port

Architectural Intent:
- Contract for externally supplied named checks: check(node, context) -> ValidationReport
- Checks are pure observations of system state; they must not mutate anything
- Sync and async implementations are both accepted
"""

from typing import Awaitable, Protocol, Union, runtime_checkable

from stagecoach.domain.value_objects.context import ExecutionContext
from stagecoach.domain.value_objects.node import Node
from stagecoach.domain.value_objects.validation_report import ValidationReport


@runtime_checkable
class ValidationCheck(Protocol):
    def __call__(
        self, node: Node, context: ExecutionContext
    ) -> Union[ValidationReport, Awaitable[ValidationReport]]: ...
