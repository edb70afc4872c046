"""
State Store Port

Architectural Intent:
- Durable record of deployment progress, one record per plan id
- save() must be atomic: a crash mid-write leaves either the old or the new
  version visible, never a mix
- Only the orchestrator calls save(), synchronously from its single thread
"""

from abc import ABC, abstractmethod
from typing import Optional

from stagecoach.domain.entities.deployment_state import DeploymentState


class StateStorePort(ABC):

    @abstractmethod
    def load(self, plan_id: str) -> Optional[DeploymentState]:
        """
        Returns the persisted state, or None when the plan has never been started.
        Raises PersistenceError if the record exists but cannot be read.
        """

    @abstractmethod
    def save(self, state: DeploymentState) -> None:
        """
        Atomically replaces the persisted record for state.plan_id.
        Raises PersistenceError on any failure; callers must treat it as fatal.
        """

    @abstractmethod
    def list_plans(self) -> list[str]:
        """Plan ids with a persisted record."""

    @abstractmethod
    def delete(self, plan_id: str) -> bool:
        """Explicit audit cleanup. Returns True if a record was removed."""
