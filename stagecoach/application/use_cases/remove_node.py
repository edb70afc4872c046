"""
Remove Node Use Case

Architectural Intent:
- The only way a node leaves a running plan: explicit, logged and persisted
- The node's recorded results stay in the state file for audit
"""

import logging

from stagecoach.application.dtos.deployment_dtos import RemoveNodeRequest
from stagecoach.domain.entities.deployment_state import DeploymentState
from stagecoach.domain.errors import NodeSetMismatchError, PersistenceError
from stagecoach.domain.ports.state_store_port import StateStorePort

logger = logging.getLogger(__name__)


class RemoveNode:
    def __init__(self, state_store: StateStorePort):
        self.state_store = state_store

    def execute(self, request: RemoveNodeRequest) -> DeploymentState:
        state = self.state_store.load(request.plan_id)
        if state is None:
            raise PersistenceError(f"No persisted state for plan {request.plan_id}")
        try:
            new_state = state.without_node(request.node_id, request.reason)
        except ValueError as e:
            raise NodeSetMismatchError(str(e)) from e
        self.state_store.save(new_state)
        logger.warning(
            "Removed node %s from plan %s: %s",
            request.node_id, request.plan_id, request.reason,
        )
        return new_state
