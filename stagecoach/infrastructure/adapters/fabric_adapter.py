"""
Fabric Adapter

Architectural Intent:
- Infrastructure adapter implementing RemoteExecutorPort via Fabric/SSH
- One short-lived connection per command; nodes are independent targets
- Blocking by nature: callers run it in a worker thread

Security:
- SSH connections use connect_timeout, allow_agent, look_for_keys
- Commands are passed as given; templating and quoting happen in the
  command-backed operations before they reach this adapter
"""

import logging
from typing import Optional

from fabric import Connection

from stagecoach.domain.ports.remote_executor_port import CommandResult, RemoteExecutorPort
from stagecoach.domain.value_objects.node import Node

logger = logging.getLogger(__name__)


class FabricAdapter(RemoteExecutorPort):
    """Adapter implementing RemoteExecutorPort via Fabric/SSH."""

    def __init__(self, connect_timeout: int = 30):
        self.connect_timeout = connect_timeout

    def _get_connection(self, node: Node) -> Connection:
        return Connection(
            host=node.host,
            user=node.user,
            port=node.port,
            connect_timeout=self.connect_timeout,
            connect_kwargs={
                "allow_agent": True,
                "look_for_keys": True,
            },
        )

    def run(self, node: Node, command: str, timeout: Optional[float] = None) -> CommandResult:
        logger.debug("Running on %s: %s", node, command)
        with self._get_connection(node) as conn:
            result = conn.run(command, hide=True, warn=True, timeout=timeout)

        if result.failed:
            logger.info(
                "Command exited %d on %s: %s",
                result.return_code, node.node_id, result.stderr.strip(),
            )
        return CommandResult(
            exit_code=result.return_code,
            stdout=result.stdout,
            stderr=result.stderr,
        )
