"""
Inspect Deployment Use Case

Architectural Intent:
- Read-only queries over persisted deployment state (status, list)
- Explicit audit cleanup: state files are only ever deleted on request
"""

import logging

from stagecoach.application.dtos.deployment_dtos import DeploymentStatusResponse
from stagecoach.domain.entities.deployment_state import RunStatus
from stagecoach.domain.errors import PersistenceError
from stagecoach.domain.ports.state_store_port import StateStorePort

logger = logging.getLogger(__name__)


class InspectDeployment:
    def __init__(self, state_store: StateStorePort):
        self.state_store = state_store

    def status(self, plan_id: str) -> DeploymentStatusResponse:
        state = self.state_store.load(plan_id)
        if state is None:
            raise PersistenceError(f"No persisted state for plan {plan_id}")
        return DeploymentStatusResponse.from_state(state)

    def list_plans(self) -> list[str]:
        return self.state_store.list_plans()

    def cleanup(self, plan_id: str, force: bool = False) -> bool:
        """Delete a plan's state file. Unfinished plans need force=True."""
        state = self.state_store.load(plan_id)
        if state is None:
            return False
        if state.status != RunStatus.COMPLETED and not force:
            raise PersistenceError(
                f"Plan {plan_id} is {state.status.value}; deleting its state would "
                "restart it from the first stage (use force to delete anyway)"
            )
        return self.state_store.delete(plan_id)
