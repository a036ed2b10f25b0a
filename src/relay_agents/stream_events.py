from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Union

from typing_extensions import TypeAlias

from .items import StepResult

if TYPE_CHECKING:
    from .agent import Agent
    from .result import RunResult


@dataclass
class TextDeltaEvent:
    """A chunk of assistant text, forwarded as the model produces it."""

    delta: str
    agent: Agent[Any]
    type: Literal["text_delta"] = "text_delta"


@dataclass
class ToolCallEvent:
    """The model called a tool."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    agent: Agent[Any]
    type: Literal["tool_call"] = "tool_call"


@dataclass
class ToolResultEvent:
    """A tool returned."""

    tool_call_id: str
    tool_name: str
    result: Any
    agent: Agent[Any]
    type: Literal["tool_result"] = "tool_result"


@dataclass
class StepFinishEvent:
    """A turn finished without a handoff and was recorded as a step."""

    step: StepResult
    type: Literal["step_finish"] = "step_finish"


@dataclass
class AgentUpdatedEvent:
    """Event that notifies that there is a new agent running."""

    new_agent: Agent[Any]
    """The new agent."""

    previous_agent: Agent[Any] | None = None
    """The agent that handed off, or None for the starting agent."""

    type: Literal["agent_updated"] = "agent_updated"


@dataclass
class FinishEvent:
    """The run completed. Always the last event of a run that was not cancelled."""

    result: RunResult
    type: Literal["finish"] = "finish"


StreamEvent: TypeAlias = Union[
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    StepFinishEvent,
    AgentUpdatedEvent,
    FinishEvent,
]
"""A streaming event from an agent."""
