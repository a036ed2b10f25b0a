from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Callable, Generic, Literal

from .run_context import RunContextWrapper, TContext

if TYPE_CHECKING:
    from .agent import Agent

HookEvent = Literal["agent_start", "agent_end", "handoff", "tool_start", "tool_end"]

HOOK_EVENTS: tuple[HookEvent, ...] = (
    "agent_start",
    "agent_end",
    "handoff",
    "tool_start",
    "tool_end",
)


class _HookRegistry(Generic[TContext]):
    """Callback lists keyed by event. Callbacks may be sync or async and run in registration
    order; an exception raised by a callback propagates to the run.

    Callback signatures:
        agent_start(ctx, agent)
        agent_end(ctx, agent, output)
        handoff(ctx, from_agent, to_agent)
        tool_start(ctx, agent, tool_name, args)
        tool_end(ctx, agent, tool_name, args, result)
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[Callable[..., Any]]] = {event: [] for event in HOOK_EVENTS}

    def on(self, event: HookEvent, callback: Callable[..., Any]) -> Callable[..., Any]:
        if event not in self._callbacks:
            raise ValueError(f"Unknown hook event {event!r}, expected one of {HOOK_EVENTS}")
        self._callbacks[event].append(callback)
        return callback

    def off(self, event: HookEvent, callback: Callable[..., Any]) -> None:
        if callback in self._callbacks.get(event, []):
            self._callbacks[event].remove(callback)

    def on_agent_start(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.on("agent_start", callback)

    def on_agent_end(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.on("agent_end", callback)

    def on_handoff(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.on("handoff", callback)

    def on_tool_start(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.on("tool_start", callback)

    def on_tool_end(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.on("tool_end", callback)

    async def emit(self, event: HookEvent, *args: Any) -> None:
        for callback in list(self._callbacks[event]):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result


class RunHooks(_HookRegistry[TContext]):
    """Callbacks for every agent in a run. Pass to `Runner.run(hooks=...)`."""


class AgentHooks(_HookRegistry[TContext]):
    """Callbacks for a single agent, set as `Agent.hooks`. They fire after the run-level hooks."""


async def emit_hooks(
    run_hooks: RunHooks[Any] | None,
    agent: Agent[Any],
    event: HookEvent,
    ctx: RunContextWrapper[Any],
    *args: Any,
) -> None:
    if run_hooks is not None:
        await run_hooks.emit(event, ctx, *args)
    if agent.hooks is not None:
        await agent.hooks.emit(event, ctx, *args)
