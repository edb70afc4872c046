"""
OpenTelemetry Exporter for Stagecoach

Architectural Intent:
- Exports deployment telemetry to OTLP-compatible backends
- Subscribed to the event bus: every stage transition becomes a span event
  and a counter increment, every per-node outcome a counter increment
- Telemetry is observational only; a disabled exporter still buffers
  locally so callers and tests see what would have been sent

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
- Validation in __post_init__ prevents accidental plaintext export
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from urllib.parse import urlparse
import logging
from datetime import datetime, UTC

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from stagecoach.domain.events.transition import StageTransitionEvent

logger = logging.getLogger(__name__)


@dataclass
class OTELConfig:
    endpoint: str = ""
    service_name: str = "stagecoach"
    environment: str = "development"
    enable_traces: bool = True
    enable_metrics: bool = True
    insecure: bool = False

    def __post_init__(self) -> None:
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
            if parsed.scheme == "http" and not is_localhost and not self.insecure:
                raise ValueError(
                    f"Non-localhost HTTP endpoint '{self.endpoint}' requires "
                    "insecure=True or use https://. "
                    "Set insecure=True to explicitly allow plaintext export."
                )


class OTELExporter:
    """OpenTelemetry exporter for stage transitions and node outcomes."""

    def __init__(self, config: OTELConfig):
        self.config = config
        self._initialized = False
        self._metrics_buffer: list[dict[str, Any]] = []
        self._meter: Any = None
        self._counters: dict[str, Any] = {}
        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Initialize OpenTelemetry SDK and exporters."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        resource = Resource(
            attributes={
                SERVICE_NAME: self.config.service_name,
                "environment": self.config.environment,
            }
        )

        if self.config.enable_traces:
            self._tracer_provider = TracerProvider(resource=resource)
            self._tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=self.config.endpoint, insecure=self.config.insecure
                    )
                )
            )
            trace.set_tracer_provider(self._tracer_provider)

        if self.config.enable_metrics:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=self.config.endpoint, insecure=self.config.insecure
                )
            )
            self._meter_provider = MeterProvider(
                resource=resource, metric_readers=[metric_reader]
            )
            metrics.set_meter_provider(self._meter_provider)
            self._meter = metrics.get_meter(__name__)

        self._initialized = True
        logger.info("OTEL export enabled to %s", self.config.endpoint)

    def _get_counter(self, name: str, unit: str = "") -> Any:
        if name not in self._counters and self._meter:
            self._counters[name] = self._meter.create_counter(name, unit=unit)
        return self._counters.get(name)

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        """Record a counter increment."""
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "unit": unit,
                "attributes": attributes or {},
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        if self._initialized:
            counter = self._get_counter(name, unit)
            if counter:
                counter.add(value, attributes=attributes or {})

    def record_transition(self, event: StageTransitionEvent) -> None:
        attributes = {
            "plan_id": event.plan_id,
            "stage_id": event.stage_id or "",
            "to_state": event.to_state.split("(", 1)[0],
        }
        self.record_metric("stagecoach.stage.transitions", 1.0, attributes=attributes)
        for node_id, outcome in event.per_node_summary.items():
            self.record_metric(
                "stagecoach.node.outcomes",
                1.0,
                attributes={
                    "plan_id": event.plan_id,
                    "stage_id": event.stage_id or "",
                    "node_id": node_id,
                    "outcome": outcome,
                },
            )

        if self._initialized and self._tracer_provider is not None:
            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(
                "stagecoach.transition", attributes=attributes
            ) as span:
                span.add_event(
                    f"{event.from_state} -> {event.to_state}",
                    attributes={"reason": event.reason},
                )

    async def handle(self, event: StageTransitionEvent) -> None:
        """Event bus subscriber."""
        self.record_transition(event)

    def buffered(self, name: Optional[str] = None) -> list[dict[str, Any]]:
        if name is None:
            return list(self._metrics_buffer)
        return [m for m in self._metrics_buffer if m["name"] == name]

    def shutdown(self) -> None:
        """Flush and stop the SDK providers."""
        if self._tracer_provider is not None:
            self._tracer_provider.shutdown()
        if self._meter_provider is not None:
            self._meter_provider.shutdown()
        self._metrics_buffer.clear()
        self._initialized = False


def create_exporter(
    endpoint: Optional[str] = None,
    service_name: str = "stagecoach",
    insecure: bool = False,
) -> OTELExporter:
    """Factory function to create OTEL exporter."""
    config = OTELConfig(
        endpoint=endpoint or "",
        service_name=service_name,
        insecure=insecure,
    )
    exporter = OTELExporter(config)
    exporter.initialize()
    return exporter
