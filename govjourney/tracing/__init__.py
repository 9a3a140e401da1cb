"""Tracing for GovJourney using OpenTelemetry."""

from govjourney.tracing.otel_tracer import JourneyTracer

__all__ = ["JourneyTracer"]
