"""
Event Bus Infrastructure

Architectural Intent:
- In-memory event bus publishing StageTransitionEvents to subscribers
- Subscribers (history, telemetry, console reporting) are async handlers
- A failing handler is logged and skipped; the others still receive the event
"""

import logging
from typing import Callable, Awaitable
from stagecoach.domain.events.event_base import DomainEvent

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[DomainEvent], Awaitable[None]]]] = {}

    async def publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            for event_type, handlers in self._handlers.items():
                if not isinstance(event, event_type):
                    continue
                for handler in handlers:
                    try:
                        await handler(event)
                    except Exception:
                        logger.exception(
                            "Handler %s failed for %s", getattr(handler, "__qualname__", handler),
                            event.event_type,
                        )

    def subscribe(
        self, event_type: type, handler: Callable[[DomainEvent], Awaitable[None]]
    ) -> None:
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))
