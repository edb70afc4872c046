from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    BLOCKING = "blocking"


@dataclass(frozen=True)
class ValidationReport:
    """
    Advisory result of one named check against one node.

    Produced fresh on every validation run and never persisted as state.
    Only a failed BLOCKING report gates a stage.
    """
    check_id: str
    severity: Severity
    passed: bool
    detail: str = ""
    node: Optional[str] = None
    requires_reboot: bool = False

    @property
    def is_blocking_failure(self) -> bool:
        return not self.passed and self.severity == Severity.BLOCKING

    @property
    def is_warning(self) -> bool:
        return not self.passed and self.severity == Severity.WARNING

    @staticmethod
    def ok(check_id: str, detail: str = "", severity: Severity = Severity.BLOCKING) -> "ValidationReport":
        return ValidationReport(check_id=check_id, severity=severity, passed=True, detail=detail)

    @staticmethod
    def fail(
        check_id: str,
        detail: str,
        severity: Severity = Severity.BLOCKING,
        requires_reboot: bool = False,
    ) -> "ValidationReport":
        return ValidationReport(
            check_id=check_id,
            severity=severity,
            passed=False,
            detail=detail,
            requires_reboot=requires_reboot,
        )

    def for_node(self, node_id: str) -> "ValidationReport":
        if self.node == node_id:
            return self
        return ValidationReport(
            check_id=self.check_id,
            severity=self.severity,
            passed=self.passed,
            detail=self.detail,
            node=node_id,
            requires_reboot=self.requires_reboot,
        )
