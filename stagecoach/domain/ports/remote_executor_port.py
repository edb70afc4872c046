"""
Remote Executor Port

Architectural Intent:
- Port for running a shell command on one node
- Used by command-backed stage operations and checks
- Implemented by the Fabric/SSH adapter
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from stagecoach.domain.value_objects.node import Node


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteExecutorPort(ABC):

    @abstractmethod
    def run(self, node: Node, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Runs a command on the node and returns its exit code and output.
        Non-zero exit codes are returned, not raised; connection failures raise.
        """
