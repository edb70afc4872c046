"""
Domain Ports Package

Architectural Intent:
- Port interfaces (abstract contracts) for everything outside the core
- Ports define what orchestration needs, adapters implement how
"""

from stagecoach.domain.ports.state_store_port import StateStorePort
from stagecoach.domain.ports.check_port import ValidationCheck
from stagecoach.domain.ports.event_bus_port import EventBusPort
from stagecoach.domain.ports.remote_executor_port import RemoteExecutorPort, CommandResult

__all__ = [
    "StateStorePort",
    "ValidationCheck",
    "EventBusPort",
    "RemoteExecutorPort",
    "CommandResult",
]
