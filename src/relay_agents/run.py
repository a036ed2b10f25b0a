from __future__ import annotations

import asyncio
import contextlib
import copy
import os
from dataclasses import dataclass, field
from typing import Any

from typing_extensions import NotRequired, TypedDict, Unpack

from ._run_impl import (
    AgentSpanBaseline,
    RunImpl,
    TraceCtxManager,
    get_model_tracing_impl,
)
from .agent import Agent
from .approvals import ApprovalManager
from .exceptions import AgentsException, MaxTurnsExceeded, RunErrorDetails, UserError
from .guardrail import Guardrail, run_input_guardrails
from .handoffs import Handoff, resolve_handoff
from .items import ItemHelpers, StepResult, TMessage
from .lifecycle import RunHooks, emit_hooks
from .logger import logger
from .memory.session import Session
from .memory.util import SessionInputCallback
from .model_settings import ModelSettings
from .models.interface import Model, ModelRequest
from .result import RunMetadata, RunResult, RunResultStreaming
from .run_context import RunContextWrapper, TContext
from .run_state import DEFAULT_MAX_TURNS, RunState
from .stream_events import AgentUpdatedEvent, FinishEvent, StepFinishEvent
from .tool_wrapper import ToolWrapperCache, is_coordinator
from .tracing import AgentSpanData, Span, SpanError, agent_span
from .util import _coro, _error_tracing


def _default_trace_include_sensitive_data() -> bool:
    """Returns the default value for trace_include_sensitive_data based on environment variable."""
    val = os.getenv("RELAY_AGENTS_TRACE_INCLUDE_SENSITIVE_DATA", "true")
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RunConfig:
    """Configures settings for the entire agent run."""

    model: Model | None = None
    """The model for agents that do not set one."""

    model_settings: ModelSettings | None = None
    """Configure global model settings. Any non-null values will override the agent-specific model
    settings.
    """

    input_guardrails: list[Guardrail[Any]] | None = None
    """Input guardrails to run after the starting agent's own, on the latest user message."""

    output_guardrails: list[Guardrail[Any]] | None = None
    """Output guardrails to run after the final agent's own, on the final answer."""

    approval_manager: ApprovalManager | None = None
    """Decides on calls to tools that need approval. Holds the approval handler and timeout."""

    coordinator_routing: bool = True
    """When an agent's only tools are delegate tools, force a tool call (`tool_choice="required"`)
    and allow one step, so the agent can do nothing but route."""

    tracing_disabled: bool = False
    """Whether tracing is disabled for the agent run. If disabled, we will not trace the agent run.
    """

    trace_include_sensitive_data: bool = field(
        default_factory=_default_trace_include_sensitive_data
    )
    """Whether we include potentially sensitive data (for example: inputs/outputs of tool calls or
    LLM generations) in traces. If False, we'll still create spans for these events, but the
    sensitive data will not be included.
    """

    workflow_name: str = "Agent workflow"
    """The name of the run, used for tracing. Should be a logical name for the run, like
    "Code generation workflow" or "Customer support agent".
    """

    trace_id: str | None = None
    """A custom trace ID to use for tracing. If not provided, we will generate a new trace ID."""

    group_id: str | None = None
    """
    A grouping identifier to use for tracing, to link multiple traces from the same conversation
    or process. For example, you might use a chat thread ID.
    """

    trace_metadata: dict[str, Any] | None = None
    """
    An optional dictionary of additional metadata to include with the trace.
    """


class RunOptions(TypedDict):
    """Arguments for ``AgentRunner`` methods."""

    context: NotRequired[Any]
    """The context for the run."""

    max_turns: NotRequired[int]
    """The maximum number of turns to run for."""

    hooks: NotRequired[RunHooks[Any] | None]
    """Lifecycle hooks for the run."""

    run_config: NotRequired[RunConfig | None]
    """Run configuration."""

    session: NotRequired[Session | None]
    """The session for the run."""

    session_input_callback: NotRequired[SessionInputCallback | None]
    """Combines the session history with the new input."""


class Runner:
    @classmethod
    async def run(
        cls,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        *,
        context: TContext | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        hooks: RunHooks[TContext] | None = None,
        run_config: RunConfig | None = None,
        session: Session | None = None,
        session_input_callback: SessionInputCallback | None = None,
    ) -> RunResult:
        """
        Run a workflow starting at the given agent.

        The agent will run in a loop until a final output is generated. The loop runs like so:

          1. The current agent's model is called once; it runs the agent's tools itself, for up
             to `agent.max_steps` round trips.
          2. If a tool returned a handoff to one of the agent's handoff targets, the target
             becomes the current agent and the loop runs again.
          3. Else the turn is recorded as a step. If the model stopped without pending tool calls
             (or `agent.should_finish` says so), the answer is the final output.
          4. Else the loop runs again.

        In these cases, the run raises:

          1. If the max_turns is exceeded, a MaxTurnsExceeded exception is raised.
          2. If a guardrail fails, a GuardrailFailed exception is raised.
          3. If a tool raises, a ToolExecutionFailed exception is raised.

        Every `AgentsException` raised by a run carries `run_data`, which holds the partial
        `RunState`.

        Note:
            Input guardrails run once per user message: at the start of a run, and again when a
            resumed `RunState` has a user message that was not checked yet.

        Args:
            starting_agent: The starting agent to run.
            input: The initial input to the agent. You can pass a single string for a
                user message, a list of messages, or a `RunState` to resume.
            context: The context to run the agent with.
            max_turns: The maximum number of turns to run the agent for. A turn is
                defined as one AI invocation (including any tool calls that might occur).
            hooks: Callbacks on lifecycle events of every agent in the run.
            run_config: Global settings for the entire agent run.
            session: A session for automatic conversation history management.
            session_input_callback: Combines the session history with the new input into the
                transcript the run starts from. Defaults to appending the input to the history.
                Only the new input and what the run produces are saved back to the session.

        Returns:
            A run result containing the final output, the transcript, the recorded steps and
            summary metadata.
        """
        runner = DEFAULT_AGENT_RUNNER
        return await runner.run(
            starting_agent,
            input,
            context=context,
            max_turns=max_turns,
            hooks=hooks,
            run_config=run_config,
            session=session,
            session_input_callback=session_input_callback,
        )

    @classmethod
    def run_sync(
        cls,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        *,
        context: TContext | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        hooks: RunHooks[TContext] | None = None,
        run_config: RunConfig | None = None,
        session: Session | None = None,
        session_input_callback: SessionInputCallback | None = None,
    ) -> RunResult:
        """
        Run a workflow synchronously, starting at the given agent.

        Note:
            This just wraps the `run` method, so it will not work if there's already an
            event loop (e.g. inside an async function, or in a Jupyter notebook or async
            context like FastAPI). For those cases, use the `run` method instead.
        """
        runner = DEFAULT_AGENT_RUNNER
        return runner.run_sync(
            starting_agent,
            input,
            context=context,
            max_turns=max_turns,
            hooks=hooks,
            run_config=run_config,
            session=session,
            session_input_callback=session_input_callback,
        )

    @classmethod
    def run_streamed(
        cls,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        context: TContext | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        hooks: RunHooks[TContext] | None = None,
        run_config: RunConfig | None = None,
        session: Session | None = None,
        session_input_callback: SessionInputCallback | None = None,
    ) -> RunResultStreaming:
        """
        Run a workflow starting at the given agent in streaming mode. Must be called from a
        running event loop.

        The returned result object is available immediately; the run itself happens in a
        background task. Read it with `stream_text()` or `stream_events()`, await `completed` for
        the final `RunResult`, or `cancel()` it.

        Args:
            starting_agent: The starting agent to run.
            input: The initial input to the agent. You can pass a single string for a
                user message, a list of messages, or a `RunState` to resume.
            context: The context to run the agent with.
            max_turns: The maximum number of turns to run the agent for.
            hooks: Callbacks on lifecycle events of every agent in the run.
            run_config: Global settings for the entire agent run.
            session: A session for automatic conversation history management.

        Returns:
            A result object that streams the run's events.
        """
        runner = DEFAULT_AGENT_RUNNER
        return runner.run_streamed(
            starting_agent,
            input,
            context=context,
            max_turns=max_turns,
            hooks=hooks,
            run_config=run_config,
            session=session,
            session_input_callback=session_input_callback,
        )


class AgentRunner:
    """
    WARNING: this class is experimental and not part of the public API
    It should not be used directly or subclassed.
    """

    async def run(
        self,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        **kwargs: Unpack[RunOptions],
    ) -> RunResult:
        run_config = kwargs.get("run_config") or RunConfig()
        session = kwargs.get("session")

        with TraceCtxManager(
            workflow_name=run_config.workflow_name,
            trace_id=run_config.trace_id,
            group_id=run_config.group_id,
            metadata=run_config.trace_metadata,
            disabled=run_config.tracing_disabled,
        ):
            state, context_wrapper = await self._prepare_state(
                starting_agent,
                input,
                context=kwargs.get("context"),
                max_turns=kwargs.get("max_turns", DEFAULT_MAX_TURNS),
                session=session,
                session_input_callback=kwargs.get("session_input_callback"),
            )
            return await self._run_loop(
                state=state,
                context_wrapper=context_wrapper,
                hooks=kwargs.get("hooks"),
                run_config=run_config,
                session=session,
            )

    def run_sync(
        self,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        **kwargs: Unpack[RunOptions],
    ) -> RunResult:
        try:
            already_running_loop = asyncio.get_running_loop()
        except RuntimeError:
            already_running_loop = None

        if already_running_loop is not None:
            raise RuntimeError(
                "AgentRunner.run_sync() cannot be called when an event loop is already running."
            )

        loop = asyncio.new_event_loop()
        task = loop.create_task(self.run(starting_agent, input, **kwargs))
        try:
            return loop.run_until_complete(task)
        except BaseException:
            # Don't leave the run behind on the loop if the caller aborts.
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    loop.run_until_complete(task)
            raise
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def run_streamed(
        self,
        starting_agent: Agent[TContext],
        input: str | list[TMessage] | RunState[TContext],
        **kwargs: Unpack[RunOptions],
    ) -> RunResultStreaming:
        run_config = kwargs.get("run_config") or RunConfig()
        current_agent = input.current_agent if isinstance(input, RunState) else starting_agent
        streamed_result = RunResultStreaming(current_agent=current_agent)

        # Kick off the actual agent loop in the background and return the streamed result object.
        streamed_result._run_impl_task = asyncio.create_task(
            self._start_streaming(
                starting_agent,
                input,
                streamed_result=streamed_result,
                context=kwargs.get("context"),
                max_turns=kwargs.get("max_turns", DEFAULT_MAX_TURNS),
                hooks=kwargs.get("hooks"),
                run_config=run_config,
                session=kwargs.get("session"),
                session_input_callback=kwargs.get("session_input_callback"),
            )
        )
        return streamed_result

    async def _start_streaming(
        self,
        starting_agent: Agent[Any],
        input: str | list[TMessage] | RunState[Any],
        *,
        streamed_result: RunResultStreaming,
        context: Any,
        max_turns: int,
        hooks: RunHooks[Any] | None,
        run_config: RunConfig,
        session: Session | None,
        session_input_callback: SessionInputCallback | None,
    ) -> None:
        # The trace is entered inside the task so it is current for the whole background run.
        with TraceCtxManager(
            workflow_name=run_config.workflow_name,
            trace_id=run_config.trace_id,
            group_id=run_config.group_id,
            metadata=run_config.trace_metadata,
            disabled=run_config.tracing_disabled,
        ):
            try:
                state, context_wrapper = await self._prepare_state(
                    starting_agent,
                    input,
                    context=context,
                    max_turns=max_turns,
                    session=session,
                    session_input_callback=session_input_callback,
                )
                streamed_result.state = state
                result = await self._run_loop(
                    state=state,
                    context_wrapper=context_wrapper,
                    hooks=hooks,
                    run_config=run_config,
                    session=session,
                    streamed_result=streamed_result,
                )
            except asyncio.CancelledError:
                if not streamed_result.cancelled:
                    raise
                return
            except Exception as e:
                logger.debug(f"Streamed run failed: {e}")
                streamed_result._finish(error=e)
                return

            streamed_result._finish(result=result)

    async def _prepare_state(
        self,
        starting_agent: Agent[Any],
        input: str | list[TMessage] | RunState[Any],
        *,
        context: Any,
        max_turns: int,
        session: Session | None,
        session_input_callback: SessionInputCallback | None = None,
    ) -> tuple[RunState[Any], RunContextWrapper[Any]]:
        if isinstance(input, RunState):
            state = input
            state.max_turns = max_turns
            logger.debug(
                f"Resuming run at turn {state.current_turn} with agent {state.current_agent.name}"
            )
        else:
            new_input = ItemHelpers.input_to_new_input_list(input)
            messages, history_length = await self._merge_session_history(
                session, session_input_callback, new_input
            )
            state = RunState(
                current_agent=starting_agent,
                original_input=_copy_str_or_list(input),
                max_turns=max_turns,
                messages=messages,
                history_length=history_length,
                input_length=len(messages),
            )

        # The wrapper shares the state's usage and transcript.
        context_wrapper: RunContextWrapper[Any] = RunContextWrapper(
            context=context,
            usage=state.usage,
            agent=state.current_agent,
            messages=state.messages,
        )
        return state, context_wrapper

    @classmethod
    async def _merge_session_history(
        cls,
        session: Session | None,
        session_input_callback: SessionInputCallback | None,
        new_input: list[TMessage],
    ) -> tuple[list[TMessage], int]:
        """Returns the starting transcript and how many of its leading messages are not saved
        back to the session."""
        if session is None:
            return new_input, 0

        history = await session.get_history()
        if session_input_callback is None:
            return [*history, *new_input], len(history)

        if not callable(session_input_callback):
            raise UserError(
                f"Invalid `session_input_callback` value: {session_input_callback}. "
                "Choose between `None` or a custom callable function."
            )
        combined = await _coro.maybe_await(
            session_input_callback(copy.deepcopy(history), copy.deepcopy(new_input))
        )
        if not isinstance(combined, list):
            raise UserError("Session input callback must return a list of messages.")

        # Only the new input is saved, and only if the callback kept it at the end.
        kept = len(combined) - len(new_input)
        if kept >= 0 and combined[kept:] == new_input:
            return combined, kept
        logger.debug("Session input callback dropped the new input; it will not be saved")
        return combined, len(combined)

    async def _run_loop(
        self,
        *,
        state: RunState[Any],
        context_wrapper: RunContextWrapper[Any],
        hooks: RunHooks[Any] | None,
        run_config: RunConfig,
        session: Session | None,
        streamed_result: RunResultStreaming | None = None,
    ) -> RunResult:
        tool_cache = ToolWrapperCache(
            hooks=hooks,
            approval_manager=run_config.approval_manager,
            trace_include_sensitive_data=run_config.trace_include_sensitive_data,
        )
        model_tracing = get_model_tracing_impl(
            run_config.tracing_disabled, run_config.trace_include_sensitive_data
        )
        latest_user_index = ItemHelpers.last_user_index(state.messages)
        should_run_input_guardrails = latest_user_index > state.checked_user_index

        current_span: Span[AgentSpanData] | None = None
        span_agent: Agent[Any] | None = None
        baseline: AgentSpanBaseline | None = None

        try:
            while True:
                agent = state.current_agent

                if state.current_turn >= state.max_turns:
                    raise MaxTurnsExceeded(state.max_turns)
                state.current_turn += 1
                logger.debug(
                    f"Running agent {agent.name} (turn {state.current_turn}/{state.max_turns})"
                )

                tools = await RunImpl.enabled_tools(
                    agent, tool_cache.get_tools(agent, context_wrapper), context_wrapper
                )

                if current_span is None or span_agent is not agent:
                    if current_span is not None and baseline is not None:
                        RunImpl.close_agent_span(current_span, baseline, state)
                    output_schema = RunImpl.get_output_schema(agent)
                    current_span = agent_span(
                        name=agent.name,
                        handoffs=[Handoff.of(target).agent_name for target in agent.handoffs],
                        tools=list(tools),
                        output_type=output_schema.name() if output_schema else "str",
                        disabled=run_config.tracing_disabled,
                    )
                    current_span.start(mark_as_current=True)
                    baseline = AgentSpanBaseline.capture(state)
                    previous_agent = span_agent
                    span_agent = agent
                    context_wrapper.agent = agent

                    if streamed_result is not None:
                        streamed_result.current_agent = agent
                        streamed_result._push(
                            AgentUpdatedEvent(new_agent=agent, previous_agent=previous_agent)
                        )
                    await emit_hooks(hooks, agent, "agent_start", context_wrapper, agent)

                if should_run_input_guardrails:
                    should_run_input_guardrails = False
                    await run_input_guardrails(
                        agent, state.messages, context_wrapper, run_config.input_guardrails or ()
                    )
                    state.checked_user_index = latest_user_index

                model = RunImpl.get_model(agent, run_config)
                instructions = await agent.get_instructions(context_wrapper)
                coordinator = run_config.coordinator_routing and is_coordinator(tools)
                model_settings = agent.model_settings.resolve(run_config.model_settings)

                request = ModelRequest(
                    system_instructions=instructions or None,
                    messages=list(state.messages),
                    tools=tools,
                    model_settings=model_settings,
                    tool_choice="required" if coordinator else model_settings.tool_choice,
                    max_steps=1 if coordinator else agent.max_steps,
                    output_schema=RunImpl.get_output_schema(agent),
                    tracing=model_tracing,
                )
                response = await RunImpl.call_model(
                    agent=agent,
                    model=model,
                    request=request,
                    state=state,
                    run_config=run_config,
                    streamed_result=streamed_result,
                )

                new_messages = RunImpl.response_messages(response)
                records = ItemHelpers.extract_tool_calls(new_messages)
                state.metric_for(agent.name).tool_calls += len(records)

                resolved = resolve_handoff(records, agent)
                if resolved is not None:
                    handoff, marker = resolved
                    target = handoff.agent
                    await RunImpl.execute_handoff(
                        state=state,
                        from_agent=agent,
                        handoff=handoff,
                        marker=marker,
                        context_wrapper=context_wrapper,
                        run_config=run_config,
                    )
                    if current_span is not None and baseline is not None:
                        RunImpl.close_agent_span(
                            current_span, baseline, state, handoff_to=target.name
                        )
                    await emit_hooks(hooks, agent, "handoff", context_wrapper, agent, target)
                    state.current_agent = target
                    continue

                step = StepResult(
                    step_number=len(state.steps) + 1,
                    tool_calls=records,
                    text=response.text,
                    finish_reason=response.finish_reason,
                    agent_name=agent.name,
                )
                state.steps.append(step)
                if agent.on_step_finish is not None:
                    await _coro.maybe_await(agent.on_step_finish(step))

                state.messages.extend(new_messages)
                state.items.extend(RunImpl.items_for(agent, new_messages))
                if streamed_result is not None:
                    streamed_result._push(StepFinishEvent(step=step))

                if not RunImpl.is_final(agent, context_wrapper, response, records, new_messages):
                    continue

                final_output = await RunImpl.execute_final_output(
                    agent=agent,
                    text=response.text,
                    context_wrapper=context_wrapper,
                    run_config=run_config,
                )

                if session is not None:
                    await session.add_messages(state.new_messages)
                    state.history_length = len(state.messages)

                if current_span is not None and baseline is not None:
                    RunImpl.close_agent_span(
                        current_span,
                        baseline,
                        state,
                        output=response.text if run_config.trace_include_sensitive_data else None,
                    )
                await emit_hooks(hooks, agent, "agent_end", context_wrapper, agent, final_output)

                result = RunResult(
                    final_output=final_output,
                    messages=list(state.messages),
                    steps=list(state.steps),
                    metadata=RunMetadata.from_state(state, response.finish_reason),
                    state=state,
                )
                if streamed_result is not None:
                    streamed_result._push(FinishEvent(result=result))
                return result
        except AgentsException as exc:
            if current_span is not None:
                _error_tracing.attach_error_to_span(
                    current_span,
                    SpanError(message=str(exc), data={"error_type": type(exc).__name__}),
                )
            exc.run_data = RunErrorDetails(
                input=state.original_input,
                last_agent=state.current_agent,
                context_wrapper=context_wrapper,
                state=state,
            )
            raise
        finally:
            if current_span is not None and baseline is not None:
                RunImpl.close_agent_span(current_span, baseline, state)


DEFAULT_AGENT_RUNNER = AgentRunner()


def _copy_str_or_list(input: str | list[TMessage]) -> str | list[TMessage]:
    if isinstance(input, str):
        return input
    return ItemHelpers.input_to_new_input_list(input)
