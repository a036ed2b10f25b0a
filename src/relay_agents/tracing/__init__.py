"""
Tracing for relay_agents runs.

Every run opens a trace (unless one is already current) and, inside it, agent, generation,
function, handoff and guardrail spans. Nothing is recorded until a processor is registered.

Configuration:
  - RELAY_AGENTS_DISABLE_TRACING: set to "1" or "true" to turn tracing off globally.

Runtime APIs:
  - add_trace_processor(span_processor: TracingProcessor)
  - set_trace_processors(processors: list[TracingProcessor])
  - set_tracing_disabled(disabled: bool)
"""

import atexit

from .create import (
    agent_span,
    custom_span,
    function_span,
    generation_span,
    get_current_span,
    get_current_trace,
    guardrail_span,
    handoff_span,
    trace,
)
from .processor_interface import TracingProcessor
from .processors import FileTraceExporter
from .setup import TraceProvider, get_trace_provider, set_trace_provider
from .span_data import (
    AgentSpanData,
    CustomSpanData,
    FunctionSpanData,
    GenerationSpanData,
    GuardrailSpanData,
    HandoffSpanData,
    SpanData,
)
from .spans import NoOpSpan, Span, SpanError
from .traces import NoOpTrace, Trace
from .util import gen_span_id, gen_trace_id

__all__ = [
    "add_trace_processor",
    "agent_span",
    "custom_span",
    "function_span",
    "generation_span",
    "get_current_span",
    "get_current_trace",
    "get_trace_provider",
    "guardrail_span",
    "handoff_span",
    "set_trace_processors",
    "set_trace_provider",
    "set_tracing_disabled",
    "trace",
    "Trace",
    "NoOpTrace",
    "Span",
    "NoOpSpan",
    "SpanError",
    "SpanData",
    "AgentSpanData",
    "CustomSpanData",
    "FunctionSpanData",
    "GenerationSpanData",
    "GuardrailSpanData",
    "HandoffSpanData",
    "TraceProvider",
    "TracingProcessor",
    "FileTraceExporter",
    "gen_trace_id",
    "gen_span_id",
]


def add_trace_processor(span_processor: TracingProcessor) -> None:
    """
    Adds a new trace processor. This processor will receive all traces/spans.
    """
    get_trace_provider().register_processor(span_processor)


def set_trace_processors(processors: list[TracingProcessor]) -> None:
    """
    Set the list of trace processors. This will replace the current list of processors.
    """
    get_trace_provider().set_processors(processors)


def set_tracing_disabled(disabled: bool) -> None:
    """
    Set whether tracing is globally disabled.
    """
    get_trace_provider().set_disabled(disabled)


atexit.register(lambda: get_trace_provider().shutdown())
