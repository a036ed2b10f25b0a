"""OpenTelemetry export for relay_agents traces.

Usage:
    from relay_agents.tracing import add_trace_processor
    from relay_agents.extensions.tracing import OpenTelemetryTracingProcessor

    add_trace_processor(OpenTelemetryTracingProcessor())

Requirements:
    pip install relay-agents[opentelemetry]
"""

from .opentelemetry_processor import OpenTelemetryTracingProcessor

__all__ = ["OpenTelemetryTracingProcessor"]
