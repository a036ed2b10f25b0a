from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar, cast

from ._run_impl import QUEUE_COMPLETE_SENTINEL, QueueCompleteSentinel
from .exceptions import AgentsException
from .items import ItemHelpers, RunItem, StepResult, TMessage
from .logger import logger
from .run_state import RunState
from .stream_events import StreamEvent, TextDeltaEvent
from .usage import Usage

if TYPE_CHECKING:
    from .agent import Agent

T = TypeVar("T")


@dataclass
class RunMetadata:
    """Summary figures of a run."""

    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: str | None = None
    total_tool_calls: int = 0
    handoff_chain: list[str] = field(default_factory=list)
    agent_metrics: dict[str, dict[str, Any]] = field(default_factory=dict)
    race_participants: list[str] | None = None
    race_winners: list[str] | None = None

    @classmethod
    def from_state(cls, state: RunState[Any], finish_reason: str | None) -> RunMetadata:
        return cls(
            total_tokens=state.usage.total_tokens,
            prompt_tokens=state.usage.input_tokens,
            completion_tokens=state.usage.output_tokens,
            finish_reason=finish_reason,
            total_tool_calls=state.total_tool_calls,
            handoff_chain=list(state.handoff_chain),
            agent_metrics={name: m.to_dict() for name, m in state.agent_metrics.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total_tokens": self.total_tokens,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "finish_reason": self.finish_reason,
            "total_tool_calls": self.total_tool_calls,
            "handoff_chain": self.handoff_chain,
            "agent_metrics": self.agent_metrics,
        }
        if self.race_participants is not None:
            data["race_participants"] = self.race_participants
            data["race_winners"] = self.race_winners or []
        return data


@dataclass
class RunResult:
    final_output: Any
    """The output of the last agent: a string, or an instance of the agent's `output_type`."""

    messages: list[TMessage]
    """The full transcript, including session history and the synthetic handoff messages."""

    steps: list[StepResult]
    """The recorded (non-handoff) turns of the run."""

    metadata: RunMetadata
    state: RunState[Any]
    """The run state at completion. Pass it back to `Runner.run` to continue the conversation."""

    @property
    def last_agent(self) -> Agent[Any]:
        """The last agent that was run."""
        return self.state.current_agent

    @property
    def usage(self) -> Usage:
        return self.state.usage

    @property
    def new_items(self) -> list[RunItem]:
        return self.state.items

    @property
    def text(self) -> str:
        """The final output as text, serialized when it is structured."""
        if isinstance(self.final_output, str):
            return self.final_output
        return ItemHelpers.text_of(self.messages[-1]) if self.messages else ""

    def final_output_as(self, cls: type[T], raise_if_incorrect_type: bool = False) -> T:
        """A convenience method to cast the final output to a specific type. By default, the cast
        is only for the typechecker. If you set `raise_if_incorrect_type` to True, we'll raise a
        TypeError if the final output is not of the given type.

        Args:
            cls: The type to cast the final output to.
            raise_if_incorrect_type: If True, we'll raise a TypeError if the final output is not of
                the given type.

        Returns:
            The final output casted to the given type.
        """
        if raise_if_incorrect_type and not isinstance(self.final_output, cls):
            raise TypeError(f"Final output is not of type {cls.__name__}")

        return cast(T, self.final_output)

    def to_input_list(self) -> list[TMessage]:
        """Creates a new input list, merging the transcript with the run's output."""
        return list(self.messages)

    def __str__(self) -> str:
        return (
            f"RunResult:\n"
            f"- Last agent: Agent(name={self.last_agent.name!r}, ...)\n"
            f"- Final output ({type(self.final_output).__name__}): {self.final_output!r}\n"
            f"- {len(self.steps)} step(s), {self.metadata.total_tool_calls} tool call(s)\n"
            f"- Handoff chain: {self.metadata.handoff_chain}\n"
            f"- Usage: {self.usage.to_dict()}"
        )


@dataclass
class RaceResult(RunResult):
    winning_agent: str = ""
    """The name of the agent whose run finished first."""


@dataclass
class RunResultStreaming:
    """The result of an agent run in streaming mode. Use `stream_text()` or `stream_events()` to
    consume the run as it happens and await `completed` for the final `RunResult`.

    Both stream methods read the same queue, so the stream can be consumed only once.
    """

    current_agent: Agent[Any]
    """The agent that is currently running."""

    text: str = ""
    """Assistant text received so far in the current turn."""

    is_complete: bool = False
    """Whether the agent has finished running."""

    state: RunState[Any] | None = None

    _event_queue: asyncio.Queue[StreamEvent | QueueCompleteSentinel] = field(
        default_factory=asyncio.Queue, repr=False
    )
    _run_impl_task: asyncio.Task[Any] | None = field(default=None, repr=False)
    _completed: asyncio.Future[RunResult] = field(init=False, repr=False)
    _cancelled: bool = field(default=False, repr=False)
    _consumed: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self._completed = asyncio.get_running_loop().create_future()
        # Mark an error as retrieved even when no one awaits `completed`.
        self._completed.add_done_callback(lambda f: f.cancelled() or f.exception())

    @property
    def completed(self) -> asyncio.Future[RunResult]:
        """Resolves to the final `RunResult`, or raises the run's error."""
        return self._completed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _push(self, event: StreamEvent) -> None:
        if self._cancelled:
            return
        if isinstance(event, TextDeltaEvent):
            self.text += event.delta
        self._event_queue.put_nowait(event)

    def _finish(self, result: RunResult | None = None, error: BaseException | None = None) -> None:
        self.is_complete = True
        if not self._completed.done():
            if error is not None:
                self._completed.set_exception(error)
            elif result is not None:
                self._completed.set_result(result)
        self._event_queue.put_nowait(QUEUE_COMPLETE_SENTINEL)

    def cancel(self) -> None:
        """Stops forwarding events and stops the run. `completed` resolves with the text received
        so far and `finish_reason` "cancelled". Tool calls already issued are not rolled back."""
        if self.is_complete:
            return
        self._cancelled = True
        logger.debug("Streamed run cancelled")

        # Before the state exists (e.g. while session history loads) the transcript is empty.
        state = self.state or RunState(current_agent=self.current_agent, original_input="")
        partial = RunResult(
            final_output=self.text,
            messages=list(state.messages),
            steps=list(state.steps),
            metadata=RunMetadata.from_state(state, "cancelled"),
            state=state,
        )
        self._finish(result=partial)

        if self._run_impl_task and not self._run_impl_task.done():
            self._run_impl_task.cancel()

    async def stream_events(self) -> AsyncIterator[StreamEvent]:
        """Stream every event of the run as it happens. The stream ends when the run completes
        or is cancelled.

        Raises:
            AgentsException: The run's error, after the events before it were delivered.
        """
        if self._consumed:
            raise AgentsException("The event stream of a run can only be consumed once")
        self._consumed = True

        while True:
            if self._cancelled:
                break
            item = await self._event_queue.get()
            if isinstance(item, QueueCompleteSentinel):
                self._event_queue.task_done()
                break
            yield item
            self._event_queue.task_done()

        if self._completed.done() and not self._completed.cancelled():
            error = self._completed.exception()
            if error is not None:
                raise error

    async def stream_text(self) -> AsyncIterator[str]:
        """Stream only the assistant text deltas."""
        async for event in self.stream_events():
            if isinstance(event, TextDeltaEvent):
                yield event.delta
