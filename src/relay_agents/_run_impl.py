from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from . import _debug
from .agent import Agent
from .agent_output import AgentOutputSchema
from .exceptions import ModelBehaviorError, UserError
from .guardrail import run_output_guardrails
from .handoffs import (
    Handoff,
    HandoffInputData,
    HandoffInputFilter,
    HandoffMarker,
    extend_handoff_chain,
)
from .items import (
    HandoffOutputItem,
    ItemHelpers,
    MessageOutputItem,
    RunItem,
    TMessage,
    ToolCallItem,
    ToolCallOutputItem,
    ToolCallRecord,
)
from .logger import logger
from .models.interface import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelTracing,
    ResponseCompletedStreamEvent,
    TextDeltaStreamEvent,
    ToolCallStreamEvent,
    ToolResultStreamEvent,
)
from .run_context import RunContextWrapper
from .run_state import RunState
from .stream_events import TextDeltaEvent, ToolCallEvent, ToolResultEvent
from .tracing import (
    AgentSpanData,
    Span,
    SpanError,
    Trace,
    generation_span,
    get_current_trace,
    handoff_span,
    trace,
)
from .util import _coro, _error_tracing

if TYPE_CHECKING:
    from .result import RunResultStreaming
    from .run import RunConfig
    from .tool_wrapper import ContextBoundTool


class QueueCompleteSentinel:
    pass


QUEUE_COMPLETE_SENTINEL = QueueCompleteSentinel()


def get_model_tracing_impl(
    tracing_disabled: bool, trace_include_sensitive_data: bool
) -> ModelTracing:
    if tracing_disabled:
        return ModelTracing.DISABLED
    elif trace_include_sensitive_data:
        return ModelTracing.ENABLED
    else:
        return ModelTracing.ENABLED_WITHOUT_DATA


@dataclass
class AgentSpanBaseline:
    """Counters at the moment an agent span opened, so the span can report what happened while
    it was open."""

    steps: int
    tool_calls: int
    input_tokens: int
    output_tokens: int
    total_tokens: int

    @classmethod
    def capture(cls, state: RunState[Any]) -> AgentSpanBaseline:
        return cls(
            steps=len(state.steps),
            tool_calls=state.total_tool_calls,
            input_tokens=state.usage.input_tokens,
            output_tokens=state.usage.output_tokens,
            total_tokens=state.usage.total_tokens,
        )

    def apply(self, span_data: AgentSpanData, state: RunState[Any]) -> None:
        span_data.step_count = len(state.steps) - self.steps
        span_data.tool_call_count = state.total_tool_calls - self.tool_calls
        span_data.usage = {
            "input_tokens": state.usage.input_tokens - self.input_tokens,
            "output_tokens": state.usage.output_tokens - self.output_tokens,
            "total_tokens": state.usage.total_tokens - self.total_tokens,
        }


class RunImpl:
    @classmethod
    def get_model(cls, agent: Agent[Any], run_config: RunConfig) -> Model:
        if agent.model is not None:
            return agent.model
        if run_config.model is not None:
            return run_config.model
        raise UserError(
            f"Agent {agent.name} has no model. Set Agent.model or pass RunConfig(model=...)."
        )

    @classmethod
    def get_output_schema(cls, agent: Agent[Any]) -> AgentOutputSchema | None:
        if agent.output_type is None or agent.output_type is str:
            return None
        return AgentOutputSchema(agent.output_type)

    @classmethod
    def close_agent_span(
        cls,
        span: Span[AgentSpanData],
        baseline: AgentSpanBaseline,
        state: RunState[Any],
        *,
        handoff_to: str | None = None,
        output: str | None = None,
    ) -> None:
        if span.finished:
            return
        baseline.apply(span.span_data, state)
        span.span_data.handoff_to = handoff_to
        if output is not None:
            span.span_data.output = output
        span.finish(reset_current=True)

    @classmethod
    async def call_model(
        cls,
        *,
        agent: Agent[Any],
        model: Model,
        request: ModelRequest,
        state: RunState[Any],
        run_config: RunConfig,
        streamed_result: RunResultStreaming | None = None,
    ) -> ModelResponse:
        """One model call inside a generation span. Usage goes to the run total (shared with the
        context wrapper) and to the agent's metric."""
        include_data = run_config.trace_include_sensitive_data
        metric = state.metric_for(agent.name)
        started = time.monotonic()

        with generation_span(
            model=model.model_name,
            model_config=request.model_settings.to_json_dict(),
            input=list(request.messages) if include_data else None,
            disabled=run_config.tracing_disabled,
        ) as span_generation:
            if streamed_result is None:
                response = await model.get_response(request)
            else:
                response = await cls._consume_stream(agent, model, request, streamed_result)

            state.usage.add(response.usage)
            metric.add_usage(response.usage)
            metric.turns += 1
            metric.duration += time.monotonic() - started

            if include_data:
                span_generation.span_data.output = list(response.messages)
            span_generation.span_data.usage = response.usage.to_dict()

        if _debug.DONT_LOG_MODEL_DATA:
            logger.debug(f"Model call for {agent.name} finished: {response.finish_reason}")
        else:
            logger.debug(f"Model call for {agent.name} finished: {response}")
        return response

    @classmethod
    async def _consume_stream(
        cls,
        agent: Agent[Any],
        model: Model,
        request: ModelRequest,
        streamed_result: RunResultStreaming,
    ) -> ModelResponse:
        streamed_result.text = ""
        calls: dict[str, ToolCallStreamEvent] = {}
        results: dict[str, ToolResultStreamEvent] = {}
        response: ModelResponse | None = None

        async for event in model.stream_response(request):
            if isinstance(event, TextDeltaStreamEvent):
                streamed_result._push(TextDeltaEvent(delta=event.delta, agent=agent))
            elif isinstance(event, ToolCallStreamEvent):
                calls[event.tool_call_id] = event
                streamed_result._push(
                    ToolCallEvent(
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        args=event.args,
                        agent=agent,
                    )
                )
            elif isinstance(event, ToolResultStreamEvent):
                results[event.tool_call_id] = event
                streamed_result._push(
                    ToolResultEvent(
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        result=event.result,
                        agent=agent,
                    )
                )
            elif isinstance(event, ResponseCompletedStreamEvent):
                response = event.response

        if response is None:
            raise ModelBehaviorError("Model stream ended without a completed response")
        if not response.messages and calls:
            response.messages = cls._messages_from_tool_events(response.text, calls, results)
        return response

    @classmethod
    def _messages_from_tool_events(
        cls,
        text: str,
        calls: dict[str, ToolCallStreamEvent],
        results: dict[str, ToolResultStreamEvent],
    ) -> list[TMessage]:
        """Rebuilds the turn's messages from streamed tool events, pairing them by call id."""
        messages: list[TMessage] = [
            {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool-call",
                        "tool_call_id": call.tool_call_id,
                        "tool_name": call.tool_name,
                        "args": call.args,
                    }
                    for call in calls.values()
                ],
            }
        ]
        paired = [results[call_id] for call_id in calls if call_id in results]
        if paired:
            messages.append(
                {
                    "role": "tool",
                    "content": [
                        {
                            "type": "tool-result",
                            "tool_call_id": result.tool_call_id,
                            "tool_name": result.tool_name,
                            "result": result.result,
                        }
                        for result in paired
                    ],
                }
            )
        if text:
            messages.append(ItemHelpers.assistant_message(text))
        return messages

    @classmethod
    def response_messages(cls, response: ModelResponse) -> list[TMessage]:
        """The messages a turn adds to the transcript. Providers that report no messages get
        their text appended as one assistant message."""
        if response.messages:
            return list(response.messages)
        if response.text:
            return [ItemHelpers.assistant_message(response.text)]
        return []

    @classmethod
    def items_for(cls, agent: Agent[Any], messages: list[TMessage]) -> list[RunItem]:
        items: list[RunItem] = []
        for message in messages:
            role = message.get("role")
            if role == "assistant":
                calls = ItemHelpers.tool_call_parts(message)
                if ItemHelpers.text_of(message) or not calls:
                    items.append(MessageOutputItem(agent=agent, raw_item=message))
                items.extend(ToolCallItem(agent=agent, raw_item=part) for part in calls)
            elif role == "tool":
                items.extend(
                    ToolCallOutputItem(agent=agent, raw_item=part, output=part["result"])
                    for part in ItemHelpers.tool_result_parts(message)
                )
        return items

    @classmethod
    async def enabled_tools(
        cls,
        agent: Agent[Any],
        tools: dict[str, ContextBoundTool],
        context_wrapper: RunContextWrapper[Any],
    ) -> dict[str, ContextBoundTool]:
        """Drops the delegate tools of handoffs whose `is_enabled` function says no this turn."""
        disabled: set[str] = set()
        for target in agent.handoffs:
            handoff = Handoff.of(target)
            if callable(handoff.is_enabled) and not await handoff.check_enabled(
                context_wrapper, agent
            ):
                disabled.add(handoff.tool_name)
        if not disabled:
            return tools
        logger.debug(f"Handoff tools disabled for {agent.name}: {sorted(disabled)}")
        return {name: tool for name, tool in tools.items() if name not in disabled}

    @classmethod
    async def execute_handoff(
        cls,
        *,
        state: RunState[Any],
        from_agent: Agent[Any],
        handoff: Handoff,
        marker: HandoffMarker,
        context_wrapper: RunContextWrapper[Any],
        run_config: RunConfig,
    ) -> None:
        """Records a resolved handoff and applies its input filter. Does not switch the current
        agent."""
        to_agent = handoff.agent
        extend_handoff_chain(state.handoff_chain, from_agent.name, to_agent.name)

        with handoff_span(
            from_agent=from_agent.name,
            to_agent=to_agent.name,
            reason=marker.reason if run_config.trace_include_sensitive_data else None,
            disabled=run_config.tracing_disabled,
        ) as span_handoff:
            message: TMessage = ItemHelpers.assistant_message(
                f"Handing off to {to_agent.name}. Reason: {marker.reason}"
            )
            state.messages.append(message)
            state.items.append(
                HandoffOutputItem(
                    agent=from_agent,
                    raw_item=message,
                    source_agent=from_agent,
                    target_agent=to_agent,
                )
            )

            if handoff.input_filter is not None:
                logger.debug("Filtering inputs for handoff")
                await cls._apply_input_filter(
                    state, handoff.input_filter, context_wrapper, span_handoff
                )
        logger.debug(f"Handoff from {from_agent.name} to {to_agent.name}: {marker.reason}")

    @classmethod
    async def _apply_input_filter(
        cls,
        state: RunState[Any],
        input_filter: HandoffInputFilter,
        context_wrapper: RunContextWrapper[Any],
        span_handoff: Span[Any],
    ) -> None:
        """Replaces the transcript with the filtered one. The typed items are left as they are."""
        if not callable(input_filter):
            _error_tracing.attach_error_to_span(
                span_handoff,
                SpanError(message="Invalid input filter", data={"details": "not callable()"}),
            )
            raise UserError(f"Invalid input filter: {input_filter}")

        # The handoff message is the last one.
        input_end = min(state.input_length, len(state.messages) - 1)
        data = HandoffInputData(
            input_history=tuple(state.messages[:input_end]),
            pre_handoff_messages=tuple(state.messages[input_end:-1]),
            new_messages=tuple(state.messages[-1:]),
            run_context=context_wrapper,
        )
        filtered = await _coro.maybe_await(input_filter(data))
        if not isinstance(filtered, HandoffInputData):
            _error_tracing.attach_error_to_span(
                span_handoff,
                SpanError(
                    message="Invalid input filter result",
                    data={"details": "not a HandoffInputData"},
                ),
            )
            raise UserError(f"Invalid input filter result: {filtered}")

        input_count = input_end - min(state.history_length, input_end)
        was_checked = ItemHelpers.last_user_index(state.messages) <= state.checked_user_index

        state.messages[:] = [
            *filtered.input_history,
            *filtered.pre_handoff_messages,
            *filtered.new_messages,
        ]
        state.input_length = len(filtered.input_history)
        # The run's input stays at the end of the input history, after the session's messages.
        state.history_length = max(state.input_length - input_count, 0)
        state.checked_user_index = (
            ItemHelpers.last_user_index(state.messages) if was_checked else -1
        )

    @classmethod
    def is_final(
        cls,
        agent: Agent[Any],
        context_wrapper: RunContextWrapper[Any],
        response: ModelResponse,
        records: list[ToolCallRecord],
        messages: list[TMessage],
    ) -> bool:
        if agent.should_finish is not None:
            return bool(agent.should_finish(context_wrapper.context, records))
        return response.finish_reason == "stop" and not ItemHelpers.requests_more_tool_calls(
            messages
        )

    @classmethod
    async def execute_final_output(
        cls,
        *,
        agent: Agent[Any],
        text: str,
        context_wrapper: RunContextWrapper[Any],
        run_config: RunConfig,
    ) -> Any:
        """Runs the output guardrails on the final answer, then parses it against the agent's
        output type."""
        await run_output_guardrails(
            agent, text, context_wrapper, run_config.output_guardrails or ()
        )
        output_schema = cls.get_output_schema(agent)
        if output_schema is None:
            return text
        return output_schema.validate_json(text)


class TraceCtxManager:
    """Creates a trace only if there is no current trace, and manages the trace lifecycle."""

    def __init__(
        self,
        workflow_name: str,
        trace_id: str | None,
        group_id: str | None,
        metadata: dict[str, Any] | None,
        disabled: bool,
    ):
        self.trace: Trace | None = None
        self.workflow_name = workflow_name
        self.trace_id = trace_id
        self.group_id = group_id
        self.metadata = metadata
        self.disabled = disabled

    def __enter__(self) -> TraceCtxManager:
        current_trace = get_current_trace()
        if not current_trace:
            self.trace = trace(
                workflow_name=self.workflow_name,
                trace_id=self.trace_id,
                group_id=self.group_id,
                metadata=self.metadata,
                disabled=self.disabled,
            )
            self.trace.start(mark_as_current=True)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.trace:
            self.trace.finish(reset_current=True)
