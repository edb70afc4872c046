"""
Stagecoach Telemetry Infrastructure

Architectural Intent:
- OpenTelemetry integration for deployment observability
- Stage transitions and per-node outcomes exported as metrics and spans
"""

from stagecoach.infrastructure.telemetry.otel_exporter import (
    OTELExporter,
    OTELConfig,
    create_exporter,
)

__all__ = [
    "OTELExporter",
    "OTELConfig",
    "create_exporter",
]
