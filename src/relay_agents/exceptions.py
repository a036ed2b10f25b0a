from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .agent import Agent
    from .items import TMessage
    from .run_context import RunContextWrapper
    from .run_state import RunState


@dataclass
class RunErrorDetails:
    """Data collected from an agent run when an exception occurs."""

    input: str | list[TMessage]
    last_agent: Agent[Any]
    context_wrapper: RunContextWrapper[Any]
    state: RunState
    """The partial run state at the time of the failure. Can be passed back to
    `Runner.run` to resume."""

    def __str__(self) -> str:
        return (
            f"RunErrorDetails:\n"
            f"- Last agent: Agent(name={self.last_agent.name!r}, ...)\n"
            f"- Turns: {self.state.current_turn}/{self.state.max_turns}\n"
            f"- {len(self.state.messages)} message(s)\n"
            f"- {len(self.state.steps)} step(s)\n"
            f"- Handoff chain: {self.state.handoff_chain}\n"
            f"(See `RunErrorDetails` for more details)"
        )


class AgentsException(Exception):
    """Base class for all exceptions raised by relay_agents."""

    run_data: RunErrorDetails | None

    def __init__(self, *args: object) -> None:
        super().__init__(*args)
        self.run_data = None


class MaxTurnsExceeded(AgentsException):
    """Exception raised when the maximum number of turns is exceeded."""

    message: str
    max_turns: int

    def __init__(self, max_turns: int, message: str | None = None):
        self.max_turns = max_turns
        self.message = message or f"Max turns ({max_turns}) exceeded"
        super().__init__(self.message)


class ModelBehaviorError(AgentsException):
    """Exception raised when the model does something unexpected, e.g. calling a tool that doesn't
    exist, or providing malformed JSON.
    """

    message: str

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UserError(AgentsException):
    """Exception raised when the user makes an error using the SDK."""

    message: str

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class GuardrailFailed(AgentsException):
    """Exception raised when a guardrail rejects content. Always fatal for the run."""

    guardrail_name: str
    """The name of the guardrail that failed."""

    message: str | None
    """The message returned by the guardrail."""

    direction: str
    """Either "input" or "output"."""

    def __init__(self, guardrail_name: str, message: str | None, direction: str):
        self.guardrail_name = guardrail_name
        self.message = message
        self.direction = direction
        super().__init__(
            f"{direction.capitalize()} guardrail {guardrail_name!r} failed: {message}"
        )


class InputGuardrailTripwireTriggered(GuardrailFailed):
    """Exception raised when an input guardrail rejects the latest user message."""

    def __init__(self, guardrail_name: str, message: str | None):
        super().__init__(guardrail_name, message, "input")


class OutputGuardrailTripwireTriggered(GuardrailFailed):
    """Exception raised when an output guardrail rejects the candidate final answer."""

    def __init__(self, guardrail_name: str, message: str | None):
        super().__init__(guardrail_name, message, "output")


class ToolExecutionFailed(AgentsException):
    """Exception raised when a tool executor raises. Tool errors are fatal; retrying is the
    tool author's responsibility."""

    tool_name: str
    cause: BaseException

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"Tool {tool_name!r} failed: {cause}")


class OutputSchemaMismatch(AgentsException):
    """Exception raised when the final answer fails validation against the agent's
    `output_type`."""

    message: str
    raw_output: str

    def __init__(self, message: str, raw_output: str):
        self.message = message
        self.raw_output = raw_output
        super().__init__(message)


class ApprovalTimeout(AgentsException):
    """Exception raised when a human approval for a tool call was not given in time."""

    tool_name: str
    timeout: float

    def __init__(self, tool_name: str, timeout: float):
        self.tool_name = tool_name
        self.timeout = timeout
        super().__init__(f"Approval timeout for tool {tool_name!r} after {timeout}s")


class RaceAllFailed(AgentsException):
    """Exception raised when every agent in a race failed."""

    errors: dict[str, BaseException]
    """Maps agent name to the error that agent's run raised."""

    def __init__(self, errors: dict[str, BaseException]):
        self.errors = errors
        details = "\n".join(f"  {name}: {error}" for name, error in errors.items())
        super().__init__(f"All agents failed in race:\n{details}")


class HandoffUnresolved(UserWarning):
    """Warning emitted when a tool result names a handoff target that is not in the current
    agent's handoff list. The run continues as if no handoff was requested."""

    def __init__(self, agent_name: str, target_name: str):
        self.agent_name = agent_name
        self.target_name = target_name
        super().__init__(
            f"Handoff target {target_name!r} not found in {agent_name!r}'s handoffs"
        )
