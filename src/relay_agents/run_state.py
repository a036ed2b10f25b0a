from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Generic

from .items import RunItem, StepResult, TMessage
from .run_context import TContext
from .usage import Usage

if TYPE_CHECKING:
    from .agent import Agent

DEFAULT_MAX_TURNS = 50


@dataclass
class AgentMetric:
    """What one agent did over a run. An agent that is handed control more than once keeps
    accumulating into the same metric."""

    turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    tool_calls: int = 0
    duration: float = 0.0
    """Seconds spent in the agent's model calls."""

    def add_usage(self, usage: Usage) -> None:
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.total_tokens += usage.total_tokens

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunState(Generic[TContext]):
    """Everything a run has accumulated. Raised errors carry it (`run_data.state`), and passing it
    back to `Runner.run` as the input resumes the run from the current agent."""

    current_agent: Agent[TContext]
    """The agent that runs the next turn."""

    original_input: str | list[TMessage]
    """The input the run was started with, before session history was added."""

    max_turns: int = DEFAULT_MAX_TURNS

    current_turn: int = 0
    """Turns started so far, counted across handoffs."""

    messages: list[TMessage] = field(default_factory=list)
    """The transcript: session history, the input, then every message produced by the run."""

    items: list[RunItem] = field(default_factory=list)
    """Typed log of what the run produced."""

    steps: list[StepResult] = field(default_factory=list)
    """One entry per turn that did not end in a handoff."""

    usage: Usage = field(default_factory=Usage)

    handoff_chain: list[str] = field(default_factory=list)
    """Agent names in the order control moved between them, with consecutive repeats collapsed."""

    agent_metrics: dict[str, AgentMetric] = field(default_factory=dict)

    history_length: int = 0
    """How many leading messages came from the session. The rest are saved back to it."""

    input_length: int = 0
    """How many leading messages the run started from: session history and the input."""

    checked_user_index: int = -1
    """Index in `messages` of the latest user message that passed the input guardrails. A run
    started from this state checks again only when a newer user message was added."""

    def metric_for(self, agent_name: str) -> AgentMetric:
        if agent_name not in self.agent_metrics:
            self.agent_metrics[agent_name] = AgentMetric()
        return self.agent_metrics[agent_name]

    @property
    def new_messages(self) -> list[TMessage]:
        """Messages that are not from the session's history."""
        return self.messages[self.history_length :]

    @property
    def total_tool_calls(self) -> int:
        return sum(len(step.tool_calls) for step in self.steps)
