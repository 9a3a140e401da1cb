"""
OpenTelemetry-based tracer for journey orchestration.

Each Orchestrator.run becomes one span carrying the service id, the state
before and after reconciliation, the prompt hash and the loop outcome.
Transitions, tool calls, malformed model output and handoffs are recorded as
span events. Traces can be exported to any OTLP-compatible backend, or to the
console for local debugging.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Status, StatusCode

from govjourney.config.settings import OTelConfig

logger = logging.getLogger(__name__)


def _attr(value: Any) -> Any:
    """Coerce a value into something OTEL accepts as an attribute."""
    if isinstance(value, (str, bool, int, float)):
        return value
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


class JourneyTracer:
    """
    OpenTelemetry tracer for journey runs.

    When tracing is disabled every method is a no-op and ``run_span`` yields
    None, so callers never need to check.

    Args:
        config: Exporter settings
        exporter: Explicit span exporter (spans are exported synchronously);
            overrides ``config.exporter_type``
    """

    def __init__(self, config: Optional[OTelConfig] = None, exporter: Optional[SpanExporter] = None):
        self.config = config or OTelConfig()
        self._tracer = None
        self._provider: Optional[TracerProvider] = None
        self._enabled = exporter is not None or (
            self.config.enabled and self.config.exporter_type != "none"
        )

        if not self._enabled:
            logger.info("JourneyTracer disabled")
            return

        resource = Resource.create({SERVICE_NAME: self.config.service_name})
        provider = TracerProvider(resource=resource)

        if exporter is not None:
            provider.add_span_processor(SimpleSpanProcessor(exporter))
            logger.info(f"JourneyTracer using {type(exporter).__name__}")
        elif self.config.exporter_type == "console":
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("JourneyTracer using console exporter")
        else:
            provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(endpoint=self.config.endpoint, insecure=self.config.insecure)
                )
            )
            logger.info(f"JourneyTracer using OTLP gRPC exporter (endpoint={self.config.endpoint})")

        self._provider = provider
        self._tracer = provider.get_tracer("govjourney")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @contextmanager
    def run_span(self, service_id: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
        """Span covering one orchestrator run."""
        if not self._enabled or self._tracer is None:
            yield None
            return

        span_attrs = {"journey.service_id": service_id}
        for key, value in (attributes or {}).items():
            span_attrs[key] = _attr(value)

        with self._tracer.start_as_current_span("journey.run", attributes=span_attrs) as span:
            yield span

    def set_attributes(self, span: Any, attributes: Dict[str, Any]) -> None:
        if span is None:
            return
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, _attr(value))

    def add_event(self, span: Any, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        if span is None:
            return
        clean = {k: _attr(v) for k, v in (attributes or {}).items() if v is not None}
        span.add_event(name, attributes=clean)

    def log_transition(self, span: Any, from_state: str, to_state: str, trigger: str, source: str) -> None:
        self.add_event(
            span,
            "state_transition",
            {"from": from_state, "to": to_state, "trigger": trigger, "source": source},
        )

    def log_tool_call(self, span: Any, name: str, iteration: int) -> None:
        self.add_event(span, "tool_call", {"tool": name, "iteration": iteration})

    def log_malformed_output(self, span: Any, reason: str, snippet: str) -> None:
        self.add_event(span, "malformed_model_output", {"reason": reason, "snippet": snippet})

    def log_handoff(self, span: Any, reason: str, description: str, urgency: str) -> None:
        self.add_event(
            span, "handoff", {"reason": reason, "description": description, "urgency": urgency}
        )

    def log_loop_exhausted(self, span: Any, iterations: int) -> None:
        self.add_event(span, "loop_exhausted", {"iterations": iterations})
        if span is not None:
            span.set_status(Status(StatusCode.ERROR, "tool loop exhausted"))

    def flush(self) -> None:
        """Force flush any pending spans."""
        if self._provider is not None:
            self._provider.force_flush()

    def shutdown(self) -> None:
        if self._provider is not None:
            self._provider.shutdown()
        logger.info("JourneyTracer shut down")
