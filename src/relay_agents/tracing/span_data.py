from __future__ import annotations

import abc
from collections.abc import Mapping, Sequence
from typing import Any


class SpanData(abc.ABC):
    """
    Represents span data in the trace.
    """

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Export the span data as a dictionary."""
        pass

    @property
    @abc.abstractmethod
    def type(self) -> str:
        """Return the type of the span."""
        pass


class AgentSpanData(SpanData):
    """
    Represents an Agent Span in the trace.
    Includes name, handoffs, tools and output type, plus what the agent did while it was
    active: steps recorded, tool calls made, tokens used and where control went next.
    """

    __slots__ = (
        "name",
        "handoffs",
        "tools",
        "output_type",
        "step_count",
        "tool_call_count",
        "usage",
        "handoff_to",
        "output",
    )

    def __init__(
        self,
        name: str,
        handoffs: list[str] | None = None,
        tools: list[str] | None = None,
        output_type: str | None = None,
    ):
        self.name = name
        self.handoffs: list[str] | None = handoffs
        self.tools: list[str] | None = tools
        self.output_type: str | None = output_type
        self.step_count = 0
        self.tool_call_count = 0
        self.usage: dict[str, Any] | None = None
        self.handoff_to: str | None = None
        self.output: str | None = None

    @property
    def type(self) -> str:
        return "agent"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "handoffs": self.handoffs,
            "tools": self.tools,
            "output_type": self.output_type,
            "step_count": self.step_count,
            "tool_call_count": self.tool_call_count,
            "usage": self.usage,
            "handoff_to": self.handoff_to,
            "output": self.output,
        }


class FunctionSpanData(SpanData):
    """
    Represents a Function Span in the trace.
    Includes input and output.
    """

    __slots__ = ("name", "input", "output")

    def __init__(self, name: str, input: str | None, output: Any | None):
        self.name = name
        self.input = input
        self.output = output

    @property
    def type(self) -> str:
        return "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "input": self.input,
            "output": str(self.output) if self.output is not None else None,
        }


class GenerationSpanData(SpanData):
    """
    Represents a Generation Span in the trace.
    Includes input, output, model, model configuration, and usage.
    """

    __slots__ = (
        "input",
        "output",
        "model",
        "model_config",
        "usage",
    )

    def __init__(
        self,
        input: Sequence[Mapping[str, Any]] | None = None,
        output: Sequence[Mapping[str, Any]] | None = None,
        model: str | None = None,
        model_config: Mapping[str, Any] | None = None,
        usage: dict[str, Any] | None = None,
    ):
        self.input = input
        self.output = output
        self.model = model
        self.model_config = model_config
        self.usage = usage

    @property
    def type(self) -> str:
        return "generation"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "input": self.input,
            "output": self.output,
            "model": self.model,
            "model_config": self.model_config,
            "usage": self.usage,
        }


class HandoffSpanData(SpanData):
    """
    Represents a Handoff Span in the trace.
    Includes source and destination agents.
    """

    __slots__ = ("from_agent", "to_agent", "reason")

    def __init__(self, from_agent: str | None, to_agent: str | None, reason: str | None = None):
        self.from_agent = from_agent
        self.to_agent = to_agent
        self.reason = reason

    @property
    def type(self) -> str:
        return "handoff"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "from_agent": self.from_agent,
            "to_agent": self.to_agent,
            "reason": self.reason,
        }


class GuardrailSpanData(SpanData):
    """
    Represents a Guardrail Span in the trace.
    Includes name and triggered status.
    """

    __slots__ = ("name", "direction", "triggered")

    def __init__(self, name: str, direction: str | None = None, triggered: bool = False):
        self.name = name
        self.direction = direction
        self.triggered = triggered

    @property
    def type(self) -> str:
        return "guardrail"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "direction": self.direction,
            "triggered": self.triggered,
        }


class CustomSpanData(SpanData):
    """
    Represents a Custom Span in the trace.
    Includes name and data property bag.
    """

    __slots__ = ("name", "data")

    def __init__(self, name: str, data: dict[str, Any]):
        self.name = name
        self.data = data

    @property
    def type(self) -> str:
        return "custom"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "data": self.data,
        }
