from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from . import _debug
from .approvals import ApprovalManager
from .exceptions import AgentsException, ModelBehaviorError, ToolExecutionFailed, UserError
from .items import ToolResultPart, to_jsonable
from .lifecycle import RunHooks, emit_hooks
from .logger import logger
from .run_context import RunContextWrapper
from .tool import FunctionTool
from .tool_context import ToolContext
from .tracing import SpanError, function_span
from .util import _error_tracing

if TYPE_CHECKING:
    from .agent import Agent


class ContextBoundTool:
    """A tool bound to the live context of a run.

    Models call `invoke()`; the wrapper opens the function span, asks for approval when the tool
    needs it, fires the tool hooks and turns executor exceptions into `ToolExecutionFailed`.
    """

    def __init__(
        self,
        tool: FunctionTool,
        agent: Agent[Any],
        context_wrapper: RunContextWrapper[Any],
        hooks: RunHooks[Any] | None = None,
        approval_manager: ApprovalManager | None = None,
        trace_include_sensitive_data: bool = True,
    ):
        self.tool = tool
        self.agent = agent
        self.context_wrapper = context_wrapper
        self.hooks = hooks
        self.approval_manager = approval_manager
        self.trace_include_sensitive_data = trace_include_sensitive_data

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def description(self) -> str:
        return self.tool.description

    @property
    def params_json_schema(self) -> dict[str, Any]:
        return self.tool.params_json_schema

    @property
    def is_handoff(self) -> bool:
        return self.tool.is_handoff

    def bind(self, context_wrapper: RunContextWrapper[Any]) -> None:
        self.context_wrapper = context_wrapper

    async def invoke(self, tool_call_id: str, args: dict[str, Any]) -> Any:
        ctx = self.context_wrapper
        await emit_hooks(self.hooks, self.agent, "tool_start", ctx, self.agent, self.name, args)

        with function_span(
            self.name,
            input=json.dumps(args, default=str) if self.trace_include_sensitive_data else None,
        ) as span_fn:
            if self.tool.needs_approval:
                rejection = await self._request_approval(args)
                if rejection is not None:
                    span_fn.span_data.output = rejection
                    await emit_hooks(
                        self.hooks, self.agent, "tool_end", ctx, self.agent, self.name, args,
                        rejection,
                    )
                    return rejection

            if _debug.DONT_LOG_TOOL_DATA:
                logger.debug(f"Invoking tool {self.name}")
            else:
                logger.debug(f"Invoking tool {self.name} with input {args}")

            tool_ctx = ToolContext.from_agent_context(ctx, self.name, tool_call_id, args)
            try:
                result = await self.tool.on_invoke_tool(tool_ctx, args)
            except AgentsException as e:
                _error_tracing.attach_error_to_span(
                    span_fn,
                    SpanError(message="Error running tool", data={"error": str(e)}),
                )
                raise
            except Exception as e:
                _error_tracing.attach_error_to_span(
                    span_fn,
                    SpanError(
                        message="Error running tool",
                        data={"tool_name": self.name, "error": str(e)},
                    ),
                )
                raise ToolExecutionFailed(self.name, e) from e

            if _debug.DONT_LOG_TOOL_DATA:
                logger.debug(f"Tool {self.name} completed.")
            else:
                logger.debug(f"Tool {self.name} returned {result}")

            if self.trace_include_sensitive_data:
                span_fn.span_data.output = result

        await emit_hooks(
            self.hooks, self.agent, "tool_end", ctx, self.agent, self.name, args, result
        )
        return result

    async def _request_approval(self, args: dict[str, Any]) -> str | None:
        if self.approval_manager is None:
            raise UserError(
                f"Tool {self.name} needs approval but the run has no approval manager. "
                "Pass one with RunConfig(approval_manager=...)."
            )
        response = await self.approval_manager.request_approval(self.name, args)
        if response.approved:
            return None
        return f"Tool call rejected: {response.reason or 'no reason given'}"


class ToolWrapperCache:
    """Bound tool sets for one run, keyed by agent name. Built the first time an agent becomes
    active; on later turns only the context reference is refreshed."""

    def __init__(
        self,
        hooks: RunHooks[Any] | None = None,
        approval_manager: ApprovalManager | None = None,
        trace_include_sensitive_data: bool = True,
    ):
        self._hooks = hooks
        self._approval_manager = approval_manager
        self._trace_include_sensitive_data = trace_include_sensitive_data
        self._cache: dict[str, dict[str, ContextBoundTool]] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def get_tools(
        self, agent: Agent[Any], context_wrapper: RunContextWrapper[Any]
    ) -> dict[str, ContextBoundTool]:
        tools = self._cache.get(agent.name)
        if tools is not None:
            for tool in tools.values():
                tool.bind(context_wrapper)
            return tools

        tools = {
            tool.name: ContextBoundTool(
                tool,
                agent,
                context_wrapper,
                hooks=self._hooks,
                approval_manager=self._approval_manager,
                trace_include_sensitive_data=self._trace_include_sensitive_data,
            )
            for tool in agent.all_tools
        }
        self._cache[agent.name] = tools
        return tools


def is_coordinator(tools: Mapping[str, ContextBoundTool]) -> bool:
    """An agent whose only tools are delegate tools can do nothing but route."""
    return bool(tools) and all(tool.is_handoff for tool in tools.values())


async def invoke_tool_calls(
    tools: Mapping[str, ContextBoundTool],
    calls: Sequence[tuple[str, str, dict[str, Any]]],
) -> list[ToolResultPart]:
    """Runs `(tool_call_id, tool_name, args)` calls concurrently and returns result parts in
    call order. Used by models to execute the tool calls of one inner step.

    Raises:
        ModelBehaviorError: If the model called a tool the agent does not have.
    """
    for _, tool_name, _ in calls:
        if tool_name not in tools:
            raise ModelBehaviorError(f"Tool {tool_name} not found in agent tools")

    results = await asyncio.gather(
        *(tools[tool_name].invoke(call_id, args) for call_id, tool_name, args in calls)
    )
    return [
        {
            "type": "tool-result",
            "tool_call_id": call_id,
            "tool_name": tool_name,
            "result": to_jsonable(result),
        }
        for (call_id, tool_name, _), result in zip(calls, results)
    ]
