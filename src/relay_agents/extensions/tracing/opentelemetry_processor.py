"""Bridges relay_agents traces to OpenTelemetry.

Each trace becomes a root OTel span named after the workflow; agent, generation, function,
handoff, guardrail and custom spans become its descendants. Generation spans follow the
OpenTelemetry semantic conventions for generative AI where they apply.

See: https://opentelemetry.io/docs/specs/semconv/gen-ai/
"""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING, Any

from ...logger import logger
from ...tracing import TracingProcessor

if TYPE_CHECKING:
    from ...tracing.spans import Span as AgentSpan
    from ...tracing.traces import Trace as AgentTrace

DEFAULT_TRACER_NAME = "relay_agents"

_ATTR_PREFIX_GEN_AI = "gen_ai"
_ATTR_PREFIX_AGENT = "agent"


def _try_import_opentelemetry() -> tuple[Any, Any, Any, Any]:
    """Returns (trace module, SpanKind, Status, StatusCode).

    Raises:
        ImportError: If opentelemetry-api is not installed.
    """
    try:
        from opentelemetry import trace
        from opentelemetry.trace import SpanKind, Status, StatusCode
    except ImportError as e:
        raise ImportError(
            "OpenTelemetry packages are required for OpenTelemetryTracingProcessor. "
            "Install them with: pip install relay-agents[opentelemetry]"
        ) from e
    return trace, SpanKind, Status, StatusCode


class OpenTelemetryTracingProcessor(TracingProcessor):
    """A TracingProcessor that exports traces to OpenTelemetry.

    OTel spans are never attached to the global OTel context: parents are looked up by span ID.
    Function spans of parallel tool calls overlap, and attaching would require them to end in
    reverse order. The processor is thread-safe.
    """

    def __init__(self, tracer_name: str = DEFAULT_TRACER_NAME) -> None:
        trace, SpanKind, Status, StatusCode = _try_import_opentelemetry()

        self._trace = trace
        self._SpanKind = SpanKind
        self._Status = Status
        self._StatusCode = StatusCode

        self._tracer_name = tracer_name
        self._tracer = trace.get_tracer(tracer_name)

        self._lock = threading.Lock()
        self._active_spans: dict[str, Any] = {}
        self._trace_root_spans: dict[str, Any] = {}

    def on_trace_start(self, trace: AgentTrace) -> None:
        try:
            trace_id = trace.trace_id
            workflow_name = trace.name

            span = self._tracer.start_span(
                name=f"workflow: {workflow_name}",
                kind=self._SpanKind.INTERNAL,
                attributes={
                    f"{_ATTR_PREFIX_AGENT}.workflow.name": workflow_name,
                    f"{_ATTR_PREFIX_AGENT}.trace_id": trace_id,
                },
            )

            group_id = getattr(trace, "group_id", None)
            if group_id:
                span.set_attribute(f"{_ATTR_PREFIX_AGENT}.group_id", group_id)

            metadata = getattr(trace, "metadata", None)
            if metadata and isinstance(metadata, dict):
                for key, value in metadata.items():
                    span.set_attribute(
                        f"{_ATTR_PREFIX_AGENT}.metadata.{key}", _safe_attribute_value(value)
                    )

            with self._lock:
                self._trace_root_spans[trace_id] = span
            logger.debug(f"Started OTel span for trace: {trace_id} ({workflow_name})")
        except Exception as e:
            logger.error(f"Failed to create OTel span for trace start: {e}")

    def on_trace_end(self, trace: AgentTrace) -> None:
        with self._lock:
            otel_span = self._trace_root_spans.pop(trace.trace_id, None)

        if otel_span is None:
            logger.warning(f"No OTel span found for trace end: {trace.trace_id}")
            return

        try:
            otel_span.set_status(self._Status(self._StatusCode.OK))
        finally:
            otel_span.end()

    def on_span_start(self, span: AgentSpan[Any]) -> None:
        try:
            parent_context = None
            with self._lock:
                parent = self._active_spans.get(span.parent_id or "") or self._trace_root_spans.get(
                    span.trace_id
                )
            if parent is not None:
                parent_context = self._trace.set_span_in_context(parent)

            name, attributes, kind = self._map_span_data(span.span_data)
            attributes[f"{_ATTR_PREFIX_AGENT}.span_id"] = span.span_id
            attributes[f"{_ATTR_PREFIX_AGENT}.trace_id"] = span.trace_id
            if span.parent_id:
                attributes[f"{_ATTR_PREFIX_AGENT}.parent_span_id"] = span.parent_id

            otel_span = self._tracer.start_span(
                name=name, context=parent_context, kind=kind, attributes=attributes
            )
            with self._lock:
                self._active_spans[span.span_id] = otel_span
        except Exception as e:
            logger.error(f"Failed to create OTel span for span start: {e}")

    def on_span_end(self, span: AgentSpan[Any]) -> None:
        with self._lock:
            otel_span = self._active_spans.pop(span.span_id, None)

        if otel_span is None:
            logger.warning(f"No OTel span found for span end: {span.span_id}")
            return

        try:
            self._update_span_with_final_data(otel_span, span.span_data)

            error = span.error
            if error:
                message = error.get("message", "Unknown error")
                otel_span.set_status(self._Status(self._StatusCode.ERROR, message))
                otel_span.set_attribute("error.message", message)
                if error.get("data"):
                    otel_span.set_attribute("error.data", _safe_attribute_value(error["data"]))
            else:
                otel_span.set_status(self._Status(self._StatusCode.OK))
        except Exception as e:
            logger.error(f"Failed to process OTel span end: {e}")
        finally:
            otel_span.end()

    def shutdown(self) -> None:
        """Ends any OTel span whose relay_agents span or trace never finished."""
        with self._lock:
            leftovers = [
                *(("Span", span) for span in self._active_spans.values()),
                *(("Trace", span) for span in self._trace_root_spans.values()),
            ]
            self._active_spans.clear()
            self._trace_root_spans.clear()

        for kind, otel_span in leftovers:
            otel_span.set_status(
                self._Status(self._StatusCode.ERROR, f"{kind} not properly closed at shutdown")
            )
            otel_span.end()
        logger.debug("OpenTelemetry tracing processor shutdown complete")

    def force_flush(self) -> None:
        """Delegates to the tracer provider, which owns export."""
        provider = self._trace.get_tracer_provider()
        if hasattr(provider, "force_flush"):
            provider.force_flush()

    def _map_span_data(self, span_data: Any) -> tuple[str, dict[str, Any], Any]:
        span_type = span_data.type
        attributes: dict[str, Any] = {f"{_ATTR_PREFIX_AGENT}.span.type": span_type}
        kind = self._SpanKind.INTERNAL

        if span_type == "agent":
            name = f"agent: {span_data.name}"
            attributes[f"{_ATTR_PREFIX_AGENT}.name"] = span_data.name
            if span_data.handoffs:
                attributes[f"{_ATTR_PREFIX_AGENT}.handoffs"] = json.dumps(span_data.handoffs)
            if span_data.tools:
                attributes[f"{_ATTR_PREFIX_AGENT}.tools"] = json.dumps(span_data.tools)
            if span_data.output_type:
                attributes[f"{_ATTR_PREFIX_AGENT}.output_type"] = span_data.output_type
        elif span_type == "generation":
            # The model call is an outbound request.
            kind = self._SpanKind.CLIENT
            name = "gen_ai.completion"
            if span_data.model:
                attributes[f"{_ATTR_PREFIX_GEN_AI}.request.model"] = span_data.model
                name = f"gen_ai.completion: {span_data.model}"
            for key, value in (span_data.model_config or {}).items():
                if value is not None and value != "":
                    attributes[f"{_ATTR_PREFIX_GEN_AI}.request.{key}"] = _safe_attribute_value(
                        value
                    )
        elif span_type == "function":
            name = f"tool: {span_data.name}"
            attributes["tool.name"] = span_data.name
            if span_data.input:
                attributes["tool.input"] = _truncate_string(span_data.input, 4096)
        elif span_type == "handoff":
            from_agent = span_data.from_agent or "unknown"
            to_agent = span_data.to_agent or "unknown"
            name = f"handoff: {from_agent} -> {to_agent}"
            attributes[f"{_ATTR_PREFIX_AGENT}.handoff.from"] = from_agent
            attributes[f"{_ATTR_PREFIX_AGENT}.handoff.to"] = to_agent
            if span_data.reason:
                attributes[f"{_ATTR_PREFIX_AGENT}.handoff.reason"] = span_data.reason
        elif span_type == "guardrail":
            name = f"guardrail: {span_data.name}"
            attributes[f"{_ATTR_PREFIX_AGENT}.guardrail.name"] = span_data.name
            if span_data.direction:
                attributes[f"{_ATTR_PREFIX_AGENT}.guardrail.direction"] = span_data.direction
        elif span_type == "custom":
            name = f"custom: {span_data.name}"
            attributes["custom.name"] = span_data.name
            for key, value in (span_data.data or {}).items():
                attributes[f"custom.data.{key}"] = _safe_attribute_value(value)
        else:
            name = f"agent.{span_type}"
            for key, value in span_data.to_dict().items():
                if key != "type":
                    attributes[f"span.{key}"] = _safe_attribute_value(value)

        return name, attributes, kind

    def _update_span_with_final_data(self, otel_span: Any, span_data: Any) -> None:
        """Sets the attributes only known once the span ends."""
        span_type = span_data.type

        if span_type == "agent":
            otel_span.set_attribute(f"{_ATTR_PREFIX_AGENT}.step_count", span_data.step_count)
            otel_span.set_attribute(
                f"{_ATTR_PREFIX_AGENT}.tool_call_count", span_data.tool_call_count
            )
            for key, value in (span_data.usage or {}).items():
                otel_span.set_attribute(f"{_ATTR_PREFIX_AGENT}.usage.{key}", value)
            if span_data.handoff_to:
                otel_span.set_attribute(f"{_ATTR_PREFIX_AGENT}.handoff_to", span_data.handoff_to)
        elif span_type == "generation":
            for key in ("input_tokens", "output_tokens", "total_tokens"):
                if span_data.usage and key in span_data.usage:
                    otel_span.set_attribute(
                        f"{_ATTR_PREFIX_GEN_AI}.usage.{key}", span_data.usage[key]
                    )
            for key in ("input", "output"):
                messages = getattr(span_data, key, None)
                if messages:
                    preview = json.dumps(list(messages)[:3], default=str)
                    otel_span.set_attribute(
                        f"{_ATTR_PREFIX_GEN_AI}.{key}.preview", _truncate_string(preview, 1024)
                    )
        elif span_type == "function":
            if span_data.output is not None:
                otel_span.set_attribute("tool.output", _truncate_string(str(span_data.output)))
        elif span_type == "guardrail":
            otel_span.set_attribute(
                f"{_ATTR_PREFIX_AGENT}.guardrail.triggered", span_data.triggered
            )


def _safe_attribute_value(value: Any) -> str | int | float | bool:
    """OTel attributes must be primitives; anything else is sent as JSON."""
    if isinstance(value, (str, int, float, bool)):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def _truncate_string(value: str, max_length: int = 4096) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."
