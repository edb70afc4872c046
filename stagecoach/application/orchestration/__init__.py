"""
Application Orchestration Package

Architectural Intent:
- Contains the staged deployment workflow components
- Orchestrator (plan-level state machine) over FleetCoordinator (one stage
  across all nodes) over NodeExecutor (one stage on one node)
"""

from stagecoach.application.orchestration.fleet_coordinator import (
    FleetCoordinator,
    StageOutcome,
)
from stagecoach.application.orchestration.node_executor import NodeExecutor, RetryPolicy
from stagecoach.application.orchestration.orchestrator import (
    Orchestrator,
    OrchestratorState,
)

__all__ = [
    "Orchestrator",
    "OrchestratorState",
    "FleetCoordinator",
    "StageOutcome",
    "NodeExecutor",
    "RetryPolicy",
]
