from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from .run_context import RunContextWrapper, TContext


def _assert_must_pass_tool_name() -> str:
    raise ValueError("Tool name must be passed")


def _assert_must_pass_tool_call_id() -> str:
    raise ValueError("Tool call ID must be passed")


@dataclass
class ToolContext(RunContextWrapper[TContext]):
    """The context of a tool call."""

    tool_name: str = field(default_factory=_assert_must_pass_tool_name)
    """The name of the tool being invoked."""

    tool_call_id: str = field(default_factory=_assert_must_pass_tool_call_id)
    """The ID of the tool call."""

    arguments: dict[str, Any] | None = None
    """The arguments the model sent for this tool call, if available."""

    @classmethod
    def from_agent_context(
        cls,
        context: RunContextWrapper[TContext],
        tool_name: str,
        tool_call_id: str,
        arguments: dict[str, Any] | None = None,
    ) -> ToolContext[TContext]:
        """Create a ToolContext sharing the usage, agent and transcript of a RunContextWrapper."""
        base_values: dict[str, Any] = {
            f.name: getattr(context, f.name) for f in fields(RunContextWrapper) if f.init
        }
        return cls(
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            arguments=arguments,
            **base_values,
        )
