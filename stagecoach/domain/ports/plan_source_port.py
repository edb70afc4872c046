"""
Plan Source Port

Architectural Intent:
- Where plans come from: a document on disk today, anything else tomorrow
- A loaded plan always arrives with the registry its check references resolve in
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from stagecoach.domain.entities.plan import DeploymentPlan
from stagecoach.domain.services.validation_engine import CheckRegistry


@dataclass(frozen=True)
class LoadedPlan:
    plan: DeploymentPlan
    checks: CheckRegistry


class PlanSourcePort(ABC):

    @abstractmethod
    def load(self, path: str | Path) -> LoadedPlan:
        """Raises PlanDefinitionError if the plan or its check references are invalid."""
