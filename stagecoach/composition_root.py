"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the Stagecoach application
- Single place where all adapters and use cases are wired together
- No adapter instantiation should occur outside this module (except CLI)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- Factory function creates and wires all dependencies from StagecoachConfig
- History and telemetry are event bus subscribers; either can be disabled
  without affecting orchestration
"""

from dataclasses import dataclass
from typing import Optional
import logging

from stagecoach.application.orchestration.node_executor import RetryPolicy
from stagecoach.application.use_cases.inspect_deployment import InspectDeployment
from stagecoach.application.use_cases.remove_node import RemoveNode
from stagecoach.application.use_cases.run_deployment import RunDeployment
from stagecoach.domain.events.transition import StageTransitionEvent
from stagecoach.infrastructure.adapters.fabric_adapter import FabricAdapter
from stagecoach.infrastructure.config import StagecoachConfig
from stagecoach.infrastructure.event_bus import EventBus
from stagecoach.infrastructure.plan_loader import PlanLoader
from stagecoach.infrastructure.repositories.history_repository import (
    TransitionHistoryRepository,
)
from stagecoach.infrastructure.repositories.json_state_store import JsonStateStore
from stagecoach.infrastructure.telemetry.otel_exporter import OTELConfig, OTELExporter

logger = logging.getLogger(__name__)


@dataclass
class StagecoachContainer:
    """DI container holding all wired dependencies."""

    config: StagecoachConfig
    fabric_adapter: FabricAdapter
    state_store: JsonStateStore
    event_bus: EventBus
    plan_loader: PlanLoader
    telemetry: OTELExporter
    history: Optional[TransitionHistoryRepository]
    run_deployment: RunDeployment
    inspect: InspectDeployment
    remove_node: RemoveNode

    def close(self) -> None:
        if self.history is not None:
            self.history.close()
        self.telemetry.shutdown()


def create_container(
    config: Optional[StagecoachConfig] = None,
    with_history: bool = True,
) -> StagecoachContainer:
    """Create and wire all dependencies."""
    config = config or StagecoachConfig()

    fabric_adapter = FabricAdapter(connect_timeout=config.ssh.connect_timeout)
    state_store = JsonStateStore(config.state.directory)
    event_bus = EventBus()
    plan_loader = PlanLoader(
        fabric_adapter, default_timeout=config.fleet.node_timeout_seconds
    )

    telemetry = OTELExporter(
        OTELConfig(endpoint=config.telemetry.endpoint, insecure=config.telemetry.insecure)
    )
    telemetry.initialize()
    event_bus.subscribe(StageTransitionEvent, telemetry.handle)

    history = None
    if with_history and config.history.db_path:
        history = TransitionHistoryRepository(config.history.db_path)
        history.connect()
        event_bus.subscribe(StageTransitionEvent, history.handle)

    run_deployment = RunDeployment(
        plan_loader,
        state_store,
        event_bus=event_bus,
        retry_policy=RetryPolicy(
            base_delay_seconds=config.retry.base_delay_seconds,
            max_delay_seconds=config.retry.max_delay_seconds,
        ),
        node_timeout_seconds=config.fleet.node_timeout_seconds,
        max_parallel=config.fleet.max_parallel or None,
        default_targets=config.fleet.targets,
        default_user=config.ssh.user,
    )

    return StagecoachContainer(
        config=config,
        fabric_adapter=fabric_adapter,
        state_store=state_store,
        event_bus=event_bus,
        plan_loader=plan_loader,
        telemetry=telemetry,
        history=history,
        run_deployment=run_deployment,
        inspect=InspectDeployment(state_store),
        remove_node=RemoveNode(state_store),
    )
