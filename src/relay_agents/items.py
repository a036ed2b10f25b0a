from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Union

from pydantic import BaseModel
from typing_extensions import NotRequired, TypeAlias, TypedDict

from .handoffs import HandoffMarker

if TYPE_CHECKING:
    from .agent import Agent


class TextPart(TypedDict):
    type: Literal["text"]
    text: str


class ToolCallPart(TypedDict):
    type: Literal["tool-call"]
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


class ToolResultPart(TypedDict):
    type: Literal["tool-result"]
    tool_call_id: str
    tool_name: str
    result: Any


MessagePart: TypeAlias = Union[TextPart, ToolCallPart, ToolResultPart]


class TMessage(TypedDict):
    """A single transcript message. Content is either plain text or a list of parts."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[MessagePart]
    name: NotRequired[str]


@dataclass
class ToolCallRecord:
    """A tool call paired with its result by call id."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    result: Any

    handoff: HandoffMarker | None = None
    """Set when the result is a handoff marker rather than an ordinary result."""


@dataclass
class StepResult:
    """One recorded (non-handoff) turn of a run."""

    step_number: int
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    text: str | None = None
    finish_reason: str | None = None
    agent_name: str | None = None


@dataclass
class RunItemBase:
    agent: Agent[Any]
    """The agent whose run caused this item to be generated."""

    raw_item: Any
    """The raw message or part this item wraps."""


@dataclass
class MessageOutputItem(RunItemBase):
    """An assistant message produced by the model."""

    type: Literal["message_output_item"] = "message_output_item"


@dataclass
class ToolCallItem(RunItemBase):
    """A tool call requested by the model."""

    type: Literal["tool_call_item"] = "tool_call_item"


@dataclass
class ToolCallOutputItem(RunItemBase):
    """The result of a tool call."""

    output: Any = None
    type: Literal["tool_call_output_item"] = "tool_call_output_item"


@dataclass
class HandoffOutputItem(RunItemBase):
    """Control moved from `source_agent` to `target_agent`."""

    source_agent: Agent[Any] | None = None
    target_agent: Agent[Any] | None = None
    type: Literal["handoff_output_item"] = "handoff_output_item"


RunItem: TypeAlias = Union[MessageOutputItem, ToolCallItem, ToolCallOutputItem, HandoffOutputItem]
"""An item generated by an agent."""


class ItemHelpers:
    @classmethod
    def input_to_new_input_list(cls, input: str | list[TMessage]) -> list[TMessage]:
        """Converts a string or list of messages into a fresh list of messages."""
        if isinstance(input, str):
            return [cls.user_message(input)]
        return copy.deepcopy(input)

    @classmethod
    def user_message(cls, text: str) -> TMessage:
        return {"role": "user", "content": text}

    @classmethod
    def assistant_message(cls, text: str) -> TMessage:
        return {"role": "assistant", "content": text}

    @classmethod
    def text_of(cls, message: TMessage) -> str:
        """Concatenates the text content of a message, ignoring tool parts."""
        content = message.get("content")
        if isinstance(content, str):
            return content
        if not content:
            return ""
        return "".join(part["text"] for part in content if part.get("type") == "text")

    @classmethod
    def last_user_text(cls, messages: list[TMessage]) -> str | None:
        """Returns the text of the latest user message, or None if there is none."""
        for message in reversed(messages):
            if message.get("role") == "user":
                return cls.text_of(message)
        return None

    @classmethod
    def last_user_index(cls, messages: list[TMessage]) -> int:
        """Index of the latest user message, or -1 if there is none."""
        for index in range(len(messages) - 1, -1, -1):
            if messages[index].get("role") == "user":
                return index
        return -1

    @classmethod
    def tool_call_parts(cls, message: TMessage) -> list[ToolCallPart]:
        content = message.get("content")
        if not isinstance(content, list):
            return []
        return [part for part in content if part.get("type") == "tool-call"]  # type: ignore[misc]

    @classmethod
    def tool_result_parts(cls, message: TMessage) -> list[ToolResultPart]:
        content = message.get("content")
        if not isinstance(content, list):
            return []
        return [part for part in content if part.get("type") == "tool-result"]  # type: ignore[misc]

    @classmethod
    def extract_tool_calls(cls, messages: list[TMessage]) -> list[ToolCallRecord]:
        """Pairs every tool call in `messages` with its result by call id, in call order.
        Calls without a result are skipped."""
        results: dict[str, Any] = {}
        for message in messages:
            if message.get("role") == "tool":
                for result_part in cls.tool_result_parts(message):
                    results[result_part["tool_call_id"]] = result_part["result"]

        records: list[ToolCallRecord] = []
        for message in messages:
            if message.get("role") != "assistant":
                continue
            for call_part in cls.tool_call_parts(message):
                call_id = call_part["tool_call_id"]
                if call_id not in results:
                    continue
                result = results[call_id]
                records.append(
                    ToolCallRecord(
                        tool_call_id=call_id,
                        tool_name=call_part["tool_name"],
                        args=call_part.get("args") or {},
                        result=result,
                        handoff=HandoffMarker.from_result(result),
                    )
                )
        return records

    @classmethod
    def requests_more_tool_calls(cls, messages: list[TMessage]) -> bool:
        """Whether the model's last word was a tool call rather than an answer."""
        for message in reversed(messages):
            role = message.get("role")
            if role == "tool":
                return True
            if role == "assistant":
                return bool(cls.tool_call_parts(message))
        return False


def to_jsonable(value: Any) -> Any:
    """Converts a tool result into something `json.dumps` accepts."""
    if isinstance(value, HandoffMarker):
        return value.to_dict()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
