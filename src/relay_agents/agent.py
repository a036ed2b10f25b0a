from __future__ import annotations

import dataclasses
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, cast

from .exceptions import UserError
from .guardrail import Guardrail
from .handoffs import Handoff
from .items import StepResult, ToolCallRecord
from .logger import logger
from .model_settings import ModelSettings
from .models.interface import Model
from .run_context import RunContextWrapper, TContext
from .tool import FunctionTool, function_tool
from .util import _transforms
from .util._types import MaybeAwaitable

if TYPE_CHECKING:
    from .lifecycle import AgentHooks
    from .run import RunConfig

DEFAULT_MAX_STEPS = 10


@dataclass
class Agent(Generic[TContext]):
    """An agent is an AI model configured with instructions, tools, guardrails, handoffs and more.

    We strongly recommend passing `instructions`, which is the "system prompt" for the agent. In
    addition, you can pass `handoff_description`, which is a human-readable description of the
    agent, used when the agent is a handoff target.

    Agents are generic on the context type. The context is a (mutable) object you create. It is
    passed to tool functions, guardrails, hooks, etc.
    """

    name: str
    """The name of the agent. Handoff markers refer to agents by name, so names must be unique
    among the agents reachable from a run's starting agent."""

    instructions: (
        str
        | Callable[
            [RunContextWrapper[TContext], Agent[TContext]],
            MaybeAwaitable[str],
        ]
        | None
    ) = None
    """The instructions for the agent. Will be used as the "system prompt" when this agent is
    invoked. Describes what the agent should do, and how it responds.

    Can either be a string, or a function that dynamically generates instructions for the agent. If
    you provide a function, it will be called with the context and the agent instance. It must
    return a string.
    """

    handoff_description: str | None = None
    """A description of the agent. This is used when the agent is used as a handoff, so that an
    LLM knows what it does and when to invoke it.
    """

    model: Model | None = None
    """The model implementation to use when invoking the LLM. When unset, `RunConfig.model` is
    used; a run with neither fails with `UserError`."""

    model_settings: ModelSettings = field(default_factory=ModelSettings)
    """Configures model-specific tuning parameters (e.g. temperature, top_p)."""

    tools: list[FunctionTool] = field(default_factory=list)
    """A list of tools that the agent can use."""

    handoffs: list[Agent[Any] | Handoff] = field(default_factory=list)
    """Agents this agent can delegate to. Each one becomes a `handoff_to_<name>` tool. Wrap a
    target with `handoff()` to filter what it sees or to enable it conditionally."""

    guardrails: list[Guardrail[TContext]] = field(default_factory=list)
    """Input guardrails run on the latest user message when this agent starts a run. Output
    guardrails run on the final answer when this agent produces it."""

    output_type: type[Any] | None = None
    """The type of the output object. If not provided, the output will be `str`. Otherwise the
    final answer is parsed as JSON and validated with pydantic."""

    max_steps: int = DEFAULT_MAX_STEPS
    """How many model/tool round trips the model may make within one turn."""

    on_step_finish: Callable[[StepResult], MaybeAwaitable[None]] | None = None
    """Called after every recorded step of this agent."""

    should_finish: Callable[[TContext, list[ToolCallRecord]], bool] | None = None
    """Decides whether the run is complete after a turn, given the run context object and the
    turn's tool results. Replaces the default check (finish reason "stop" and no pending tool
    calls)."""

    hooks: AgentHooks[TContext] | None = None
    """Callbacks on lifecycle events for this agent."""

    _handoff_tools: list[FunctionTool] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        _transforms.validate_agent_name(self.name)

        self._handoff_tools = [
            Handoff.to_tool(target)
            for target in self.handoffs
            if Handoff.of(target).is_enabled is not False
        ]

        seen: set[str] = set()
        for tool in self.all_tools:
            if tool.name in seen:
                raise UserError(f"Agent {self.name} has more than one tool named {tool.name}")
            seen.add(tool.name)

    @property
    def all_tools(self) -> list[FunctionTool]:
        """The agent's own tools followed by one delegate tool per enabled handoff target. Handoffs
        whose `is_enabled` is a function are included; the runner checks them each turn."""
        return [*self.tools, *self._handoff_tools]

    def clone(self, **kwargs: Any) -> Agent[TContext]:
        """Make a copy of the agent, with the given arguments changed. List fields are copied, so
        the clone shares no mutable state with the original. For example:
        ```
        new_agent = agent.clone(instructions="New instructions")
        ```
        """
        for list_field in ("tools", "handoffs", "guardrails"):
            if list_field not in kwargs:
                kwargs[list_field] = list(getattr(self, list_field))
        return dataclasses.replace(self, **kwargs)

    def as_tool(
        self,
        tool_name: str | None = None,
        tool_description: str | None = None,
        run_config: RunConfig | None = None,
    ) -> FunctionTool:
        """Transform this agent into a tool, callable by other agents.

        This is different from handoffs in two ways:
        1. In handoffs, the new agent receives the conversation history. In this tool, the new agent
           receives generated input.
        2. In handoffs, the new agent takes over the conversation. In this tool, the new agent is
           called as a tool, and the conversation is continued by the original agent.

        Args:
            tool_name: The name of the tool. If not provided, the agent's name will be used.
            tool_description: The description of the tool, which should indicate what it does and
                when to use it.
            run_config: Run configuration for the nested run, e.g. a fallback model.
        """

        @function_tool(
            name_override=tool_name or _transforms.transform_string_function_style(self.name),
            description_override=tool_description or self.handoff_description or "",
        )
        async def run_agent(context: RunContextWrapper, input: str) -> str:
            from .run import Runner

            output = await Runner.run(
                starting_agent=self,
                input=input,
                context=context.context,
                run_config=run_config,
            )
            return str(output.final_output)

        return run_agent

    async def get_instructions(self, run_context: RunContextWrapper[TContext]) -> str:
        """Get the system prompt for the agent. Dynamic instructions may be sync or async."""
        if isinstance(self.instructions, str):
            return self.instructions
        elif callable(self.instructions):
            result = self.instructions(run_context, self)
            if inspect.isawaitable(result):
                return cast(str, await result)
            return cast(str, result)
        elif self.instructions is not None:
            logger.error(f"Instructions must be a string or a function, got {self.instructions}")

        return ""
