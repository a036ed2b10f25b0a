import logging
import sys

from openai import AsyncOpenAI

from .agent import DEFAULT_MAX_STEPS, Agent
from .agent_output import AgentOutputSchema
from .approvals import (
    DEFAULT_APPROVAL_TIMEOUT,
    ApprovalManager,
    ApprovalResponse,
    PendingApproval,
    auto_approve_handler,
    auto_reject_handler,
)
from .exceptions import (
    AgentsException,
    ApprovalTimeout,
    GuardrailFailed,
    HandoffUnresolved,
    InputGuardrailTripwireTriggered,
    MaxTurnsExceeded,
    ModelBehaviorError,
    OutputGuardrailTripwireTriggered,
    OutputSchemaMismatch,
    RaceAllFailed,
    RunErrorDetails,
    ToolExecutionFailed,
    UserError,
)
from .guardrail import (
    Guardrail,
    GuardrailResult,
    input_guardrail,
    output_guardrail,
    run_input_guardrails,
    run_output_guardrails,
)
from .handoffs import (
    Handoff,
    HandoffInputData,
    HandoffInputFilter,
    HandoffMarker,
    extend_handoff_chain,
    handoff,
    resolve_handoff,
)
from .items import (
    HandoffOutputItem,
    ItemHelpers,
    MessageOutputItem,
    MessagePart,
    RunItem,
    StepResult,
    TextPart,
    TMessage,
    ToolCallItem,
    ToolCallOutputItem,
    ToolCallPart,
    ToolCallRecord,
    ToolResultPart,
)
from .lifecycle import AgentHooks, RunHooks
from .memory import (
    HybridSession,
    InMemorySession,
    MongoDBSession,
    RedisSession,
    Session,
    SessionABC,
    SessionInputCallback,
    SessionManager,
    SessionManagerConfig,
    SummarizationConfig,
    create_session,
)
from .model_settings import ModelSettings
from .models import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelRetrySettings,
    ModelTracing,
    OpenAIChatCompletionsModel,
)
from .models._openai_shared import set_default_openai_client as _set_default_openai_client
from .models._openai_shared import set_default_openai_key as _set_default_openai_key
from .race import race_agents
from .result import RaceResult, RunMetadata, RunResult, RunResultStreaming
from .run import RunConfig, Runner
from .run_context import RunContextWrapper, TContext
from .run_state import DEFAULT_MAX_TURNS, AgentMetric, RunState
from .stream_events import (
    AgentUpdatedEvent,
    FinishEvent,
    StepFinishEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from .tool import FunctionTool, function_tool
from .tool_context import ToolContext
from .tracing import (
    AgentSpanData,
    CustomSpanData,
    FunctionSpanData,
    GenerationSpanData,
    GuardrailSpanData,
    HandoffSpanData,
    Span,
    SpanData,
    SpanError,
    Trace,
    TracingProcessor,
    add_trace_processor,
    agent_span,
    custom_span,
    function_span,
    gen_span_id,
    gen_trace_id,
    generation_span,
    get_current_span,
    get_current_trace,
    guardrail_span,
    handoff_span,
    set_trace_processors,
    set_tracing_disabled,
    trace,
)
from .usage import Usage


def set_default_openai_key(key: str) -> None:
    """Set the default OpenAI API key to use for model requests. Only needed if the
    OPENAI_API_KEY environment variable is not already set.
    """
    _set_default_openai_key(key)


def set_default_openai_client(client: AsyncOpenAI) -> None:
    """Set the default OpenAI client used by `OpenAIChatCompletionsModel` when none is passed
    explicitly.
    """
    _set_default_openai_client(client)


def enable_verbose_stdout_logging():
    """Enables verbose logging to stdout. This is useful for debugging."""
    logger = logging.getLogger("relay_agents")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(logging.StreamHandler(sys.stdout))


__all__ = [
    "Agent",
    "AgentHooks",
    "AgentMetric",
    "AgentOutputSchema",
    "AgentSpanData",
    "AgentUpdatedEvent",
    "AgentsException",
    "ApprovalManager",
    "ApprovalResponse",
    "ApprovalTimeout",
    "CustomSpanData",
    "DEFAULT_APPROVAL_TIMEOUT",
    "DEFAULT_MAX_STEPS",
    "DEFAULT_MAX_TURNS",
    "FinishEvent",
    "FunctionSpanData",
    "FunctionTool",
    "GenerationSpanData",
    "Guardrail",
    "GuardrailFailed",
    "GuardrailResult",
    "GuardrailSpanData",
    "Handoff",
    "HandoffInputData",
    "HandoffInputFilter",
    "HandoffMarker",
    "HandoffOutputItem",
    "HandoffSpanData",
    "HandoffUnresolved",
    "HybridSession",
    "InMemorySession",
    "InputGuardrailTripwireTriggered",
    "ItemHelpers",
    "MaxTurnsExceeded",
    "MessageOutputItem",
    "MessagePart",
    "Model",
    "ModelBehaviorError",
    "ModelRequest",
    "ModelResponse",
    "ModelRetrySettings",
    "ModelSettings",
    "ModelTracing",
    "MongoDBSession",
    "OpenAIChatCompletionsModel",
    "OutputGuardrailTripwireTriggered",
    "OutputSchemaMismatch",
    "PendingApproval",
    "RaceAllFailed",
    "RaceResult",
    "RedisSession",
    "RunConfig",
    "RunContextWrapper",
    "RunErrorDetails",
    "RunHooks",
    "RunItem",
    "RunMetadata",
    "RunResult",
    "RunResultStreaming",
    "RunState",
    "Runner",
    "Session",
    "SessionABC",
    "SessionInputCallback",
    "SessionManager",
    "SessionManagerConfig",
    "Span",
    "SpanData",
    "SpanError",
    "StepFinishEvent",
    "StepResult",
    "StreamEvent",
    "SummarizationConfig",
    "TContext",
    "TMessage",
    "TextDeltaEvent",
    "TextPart",
    "ToolCallEvent",
    "ToolCallItem",
    "ToolCallOutputItem",
    "ToolCallPart",
    "ToolCallRecord",
    "ToolContext",
    "ToolExecutionFailed",
    "ToolResultEvent",
    "ToolResultPart",
    "Trace",
    "TracingProcessor",
    "Usage",
    "UserError",
    "add_trace_processor",
    "agent_span",
    "auto_approve_handler",
    "auto_reject_handler",
    "create_session",
    "custom_span",
    "enable_verbose_stdout_logging",
    "extend_handoff_chain",
    "function_span",
    "function_tool",
    "gen_span_id",
    "gen_trace_id",
    "generation_span",
    "get_current_span",
    "get_current_trace",
    "guardrail_span",
    "handoff",
    "handoff_span",
    "input_guardrail",
    "output_guardrail",
    "race_agents",
    "resolve_handoff",
    "run_input_guardrails",
    "run_output_guardrails",
    "set_default_openai_client",
    "set_default_openai_key",
    "set_trace_processors",
    "set_tracing_disabled",
    "trace",
]
