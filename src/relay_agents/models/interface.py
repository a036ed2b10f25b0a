from __future__ import annotations

import abc
import asyncio
import enum
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal, Union

from typing_extensions import TypeAlias

from ..usage import Usage

if TYPE_CHECKING:
    from ..agent_output import AgentOutputSchema
    from ..items import TMessage
    from ..model_settings import ModelSettings
    from ..tool_wrapper import ContextBoundTool


class ModelTracing(enum.Enum):
    DISABLED = 0
    """Tracing is disabled entirely."""

    ENABLED = 1
    """Tracing is enabled, and all data is included."""

    ENABLED_WITHOUT_DATA = 2
    """Tracing is enabled, but inputs/outputs are not included."""

    def is_disabled(self) -> bool:
        return self == ModelTracing.DISABLED

    def include_data(self) -> bool:
        return self == ModelTracing.ENABLED


@dataclass
class ModelRetrySettings:
    """Settings for retrying model calls on failure.

    This class helps manage backoff and retry logic when API calls fail.
    """

    max_retries: int = 3
    """Maximum number of retries to attempt."""

    initial_backoff_seconds: float = 1.0
    """Initial backoff time in seconds before the first retry."""

    max_backoff_seconds: float = 30.0
    """Maximum backoff time in seconds between retries."""

    backoff_multiplier: float = 2.0
    """Multiplier for backoff time after each retry."""

    retryable_status_codes: list[int] = field(default_factory=lambda: [429, 500, 502, 503, 504])
    """HTTP status codes that should trigger a retry."""

    async def execute_with_retry(
        self,
        operation: Callable[[], Any],
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> Any:
        """Execute an operation with retry logic.

        Args:
            operation: Async function to execute
            should_retry: Optional function to determine if an exception should trigger a retry

        Returns:
            The result of the operation if successful

        Raises:
            The last exception encountered if all retries fail
        """
        backoff = self.initial_backoff_seconds

        for attempt in range(self.max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_retries:
                    raise
                if should_retry is not None and not should_retry(e):
                    raise

                await asyncio.sleep(backoff)
                backoff = min(backoff * self.backoff_multiplier, self.max_backoff_seconds)

        raise RuntimeError("Retry logic failed in an unexpected way")


@dataclass
class ModelRequest:
    """Everything a model needs for one turn of an agent."""

    system_instructions: str | None
    """The agent's resolved instructions."""

    messages: list[TMessage]
    """The run's transcript so far."""

    tools: Mapping[str, ContextBoundTool]
    """The agent's tools, already bound to the live run context, keyed by name. The model calls
    them itself during its inner tool loop."""

    model_settings: ModelSettings
    """The agent's settings merged with the run's override."""

    tool_choice: str | None = None
    """"required" on coordinator turns, otherwise the setting's tool choice."""

    max_steps: int = 10
    """How many model/tool round trips the model may make in this turn."""

    output_schema: AgentOutputSchema | None = None
    """The structured output the final answer must match, if any."""

    tracing: ModelTracing = ModelTracing.ENABLED


@dataclass
class ModelResponse:
    text: str
    """The text of the model's last assistant message."""

    finish_reason: str
    """Why the model stopped: "stop", "tool-calls", "length", "content-filter", "error" or
    "other"."""

    usage: Usage
    """Tokens used across every inner step of the turn."""

    messages: list[TMessage] = field(default_factory=list)
    """The new messages of this turn: assistant messages (text and/or tool calls) and tool
    result messages, in order."""

    response_id: str | None = None
    """An ID for the response which can be used to refer to the response in subsequent calls to the
    model. Not supported by all model providers."""


@dataclass
class TextDeltaStreamEvent:
    delta: str
    type: Literal["text-delta"] = "text-delta"


@dataclass
class ToolCallStreamEvent:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    type: Literal["tool-call"] = "tool-call"


@dataclass
class ToolResultStreamEvent:
    tool_call_id: str
    tool_name: str
    result: Any
    type: Literal["tool-result"] = "tool-result"


@dataclass
class ResponseCompletedStreamEvent:
    response: ModelResponse
    type: Literal["response-completed"] = "response-completed"


ModelStreamEvent: TypeAlias = Union[
    TextDeltaStreamEvent,
    ToolCallStreamEvent,
    ToolResultStreamEvent,
    ResponseCompletedStreamEvent,
]
"""Events a model yields while streaming. The last event is always a
`ResponseCompletedStreamEvent`."""


class Model(abc.ABC):
    """The base interface for calling an LLM."""

    @property
    def model_name(self) -> str | None:
        """The underlying model's name, reported in generation spans."""
        return None

    @abc.abstractmethod
    async def get_response(self, request: ModelRequest) -> ModelResponse:
        """Get a response from the model.

        Args:
            request: The system instructions, transcript, bound tools and settings for the turn.

        Returns:
            The full model response.
        """
        pass

    @abc.abstractmethod
    def stream_response(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        """Stream a response from the model.

        Args:
            request: The system instructions, transcript, bound tools and settings for the turn.

        Returns:
            An iterator of stream events, ending with a `ResponseCompletedStreamEvent`.
        """
        pass
