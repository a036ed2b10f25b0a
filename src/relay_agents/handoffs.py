from __future__ import annotations

import json
import warnings
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Union

from typing_extensions import TypeAlias

from .exceptions import HandoffUnresolved
from .logger import logger
from .tool import FunctionTool
from .tool_context import ToolContext
from .util import _coro, _transforms
from .util._types import MaybeAwaitable

if TYPE_CHECKING:
    from .agent import Agent
    from .items import TMessage, ToolCallRecord
    from .run_context import RunContextWrapper


@dataclass(frozen=True)
class HandoffMarker:
    """The reserved tool result that asks the runner to switch the active agent.

    Delegate tools return one of these. Only the target's name travels in the marker; the runner
    resolves it against the live handoff list of the agent that made the call.
    """

    agent_name: str
    """The name of the agent to hand off to."""

    reason: str
    """Why the model decided to hand off."""

    context: str | None = None
    """Optional extra context for the receiving agent."""

    handoff = True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "handoff": True,
            "agent_name": self.agent_name,
            "reason": self.reason,
        }
        if self.context is not None:
            data["context"] = self.context
        return data

    @classmethod
    def from_result(cls, result: Any) -> HandoffMarker | None:
        """Parses a tool result into a marker. Returns None for ordinary results."""
        if isinstance(result, HandoffMarker):
            return result
        if isinstance(result, str) and result.lstrip().startswith("{"):
            try:
                result = json.loads(result)
            except ValueError:
                return None
        if not isinstance(result, dict) or result.get("handoff") is not True:
            return None

        agent_name = result.get("agent_name")
        if not isinstance(agent_name, str):
            return None
        context = result.get("context")
        return cls(
            agent_name=agent_name,
            reason=str(result.get("reason") or ""),
            context=context if isinstance(context, str) else None,
        )


@dataclass(frozen=True)
class HandoffInputData:
    """The transcript at a handoff, split in three, as passed to a handoff's input filter."""

    input_history: tuple[TMessage, ...]
    """The transcript the run started from: session history, then the run's input. Keep the
    input at the end for it to still be saved to the session."""

    pre_handoff_messages: tuple[TMessage, ...]
    """Messages produced by the run before the turn that handed off."""

    new_messages: tuple[TMessage, ...]
    """The messages of the handoff itself."""

    run_context: RunContextWrapper[Any] | None = None

    def clone(self, **kwargs: Any) -> HandoffInputData:
        """Make a copy of the handoff input data, with the given arguments changed. For example:
        ```
        new_handoff_input_data = handoff_input_data.clone(new_messages=())
        ```
        """
        return replace(self, **kwargs)


HandoffInputFilter: TypeAlias = Callable[[HandoffInputData], MaybeAwaitable[HandoffInputData]]
"""A function that filters the transcript the receiving agent sees."""

HandoffEnabled: TypeAlias = Union[
    bool, Callable[["RunContextWrapper[Any]", "Agent[Any]"], MaybeAwaitable[bool]]
]


@dataclass
class Handoff:
    """A handoff target, with the options of its delegate tool.

    An agent with `handoffs=[billing_agent]` is given a tool named `handoff_to_billing_agent`.
    Calling it does no work; it returns a `HandoffMarker` and the runner makes the switch. Wrap the
    target with `handoff()` to filter what it sees or to enable it conditionally.
    """

    agent: Agent[Any]
    """The agent to hand off to."""

    tool_name_override: str | None = None

    tool_description_override: str | None = None

    input_filter: HandoffInputFilter | None = None
    """Rewrites the transcript when this handoff happens. The filtered transcript is what the
    receiving agent sees, what the run result holds and what is saved to the session. See
    `relay_agents.extensions.handoff_filters` for ready-made filters."""

    is_enabled: HandoffEnabled = True
    """Whether the delegate tool is offered. A function is called with the run context and the
    agent that would hand off, before each of that agent's turns."""

    @classmethod
    def of(cls, target: Agent[Any] | Handoff) -> Handoff:
        return target if isinstance(target, Handoff) else cls(agent=target)

    @property
    def agent_name(self) -> str:
        return self.agent.name

    @property
    def tool_name(self) -> str:
        return self.tool_name_override or self.default_tool_name(self.agent)

    @property
    def tool_description(self) -> str:
        return self.tool_description_override or self.default_tool_description(self.agent)

    async def check_enabled(
        self, context_wrapper: RunContextWrapper[Any], from_agent: Agent[Any]
    ) -> bool:
        if not callable(self.is_enabled):
            return bool(self.is_enabled)
        return bool(await _coro.maybe_await(self.is_enabled(context_wrapper, from_agent)))

    @classmethod
    def default_tool_name(cls, agent: Agent[Any]) -> str:
        return _transforms.transform_string_function_style(f"handoff_to_{agent.name}")

    @classmethod
    def default_tool_description(cls, agent: Agent[Any]) -> str:
        if agent.handoff_description:
            return f"Hand off to {agent.name}: {agent.handoff_description}"
        return f"Hand off the conversation to the {agent.name} agent."

    @classmethod
    def input_json_schema(cls) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": "Why the conversation is being handed off",
                },
                "context": {
                    "type": "string",
                    "description": "Additional context for the receiving agent",
                },
            },
            "required": ["reason"],
            "additionalProperties": False,
        }

    @classmethod
    def to_tool(cls, target: Agent[Any] | Handoff) -> FunctionTool:
        wrapped = cls.of(target)
        target_name = wrapped.agent_name

        async def _on_invoke_handoff(ctx: ToolContext[Any], args: dict[str, Any]) -> HandoffMarker:
            context = args.get("context")
            return HandoffMarker(
                agent_name=target_name,
                reason=str(args.get("reason") or ""),
                context=context if isinstance(context, str) else None,
            )

        return FunctionTool(
            name=wrapped.tool_name,
            description=wrapped.tool_description,
            params_json_schema=cls.input_json_schema(),
            on_invoke_tool=_on_invoke_handoff,
            is_handoff=True,
        )


def handoff(
    agent: Agent[Any],
    *,
    tool_name_override: str | None = None,
    tool_description_override: str | None = None,
    input_filter: HandoffInputFilter | None = None,
    is_enabled: HandoffEnabled = True,
) -> Handoff:
    """Create a handoff to `agent`, for an agent's `handoffs` list.

    Args:
        agent: The agent to hand off to.
        tool_name_override: Optional override for the name of the delegate tool.
        tool_description_override: Optional override for the description of the delegate tool.
        input_filter: A function that filters the transcript the receiving agent sees.
        is_enabled: Whether the handoff is offered. Either a bool or a function that takes the
            run context and the agent that would hand off, and returns whether it is offered.
    """
    return Handoff(
        agent=agent,
        tool_name_override=tool_name_override,
        tool_description_override=tool_description_override,
        input_filter=input_filter,
        is_enabled=is_enabled,
    )


def resolve_handoff(
    records: Sequence[ToolCallRecord], current_agent: Agent[Any]
) -> tuple[Handoff, HandoffMarker] | None:
    """Finds the first handoff marker among the tool results of a turn and resolves its target
    within `current_agent.handoffs`.

    An unknown target is not an error: a `HandoffUnresolved` warning is emitted and None is
    returned, so the turn is processed as an ordinary step.
    """
    marker = next((record.handoff for record in records if record.handoff is not None), None)
    if marker is None:
        return None

    for target in current_agent.handoffs:
        candidate = Handoff.of(target)
        if candidate.agent_name == marker.agent_name:
            return candidate, marker

    logger.warning(
        f"Handoff target {marker.agent_name} not found in {current_agent.name}'s handoffs"
    )
    warnings.warn(HandoffUnresolved(current_agent.name, marker.agent_name), stacklevel=2)
    return None


def extend_handoff_chain(chain: list[str], from_agent: str, to_agent: str) -> list[str]:
    """Appends a handoff to the chain, skipping names equal to the chain's last entry."""
    for name in (from_agent, to_agent):
        if not chain or chain[-1] != name:
            chain.append(name)
    return chain
