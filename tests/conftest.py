"""Shared fixtures."""

from typing import Optional

import pytest

from stagecoach.domain.entities.deployment_state import DeploymentState
from stagecoach.domain.ports.state_store_port import StateStorePort
from stagecoach.domain.value_objects.node import Node


class InMemoryStateStore(StateStorePort):
    """StateStorePort double that keeps every saved version."""

    def __init__(self) -> None:
        self.records: dict[str, DeploymentState] = {}
        self.saves: list[DeploymentState] = []

    def load(self, plan_id: str) -> Optional[DeploymentState]:
        return self.records.get(plan_id)

    def save(self, state: DeploymentState) -> None:
        self.records[state.plan_id] = state
        self.saves.append(state)

    def list_plans(self) -> list[str]:
        return sorted(self.records)

    def delete(self, plan_id: str) -> bool:
        return self.records.pop(plan_id, None) is not None


@pytest.fixture
def state_store():
    return InMemoryStateStore()


@pytest.fixture
def nodes():
    return [Node(host="node1"), Node(host="node2"), Node(host="node3")]
