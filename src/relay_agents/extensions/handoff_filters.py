"""Contains common handoff input filters, for convenience."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Callable

from ..handoffs import HandoffInputData
from ..items import TMessage


def remove_all_tools(handoff_input_data: HandoffInputData) -> HandoffInputData:
    """Filters out all tool messages and tool call parts. Assistant messages that held nothing
    but tool calls are dropped."""
    return handoff_input_data.clone(
        input_history=_remove_tools(handoff_input_data.input_history),
        pre_handoff_messages=_remove_tools(handoff_input_data.pre_handoff_messages),
        new_messages=_remove_tools(handoff_input_data.new_messages),
    )


def _remove_tools(messages: Sequence[TMessage]) -> tuple[TMessage, ...]:
    filtered: list[TMessage] = []
    for message in messages:
        if message.get("role") == "tool":
            continue
        content = message.get("content")
        if isinstance(content, list):
            text_parts = [part for part in content if part.get("type") == "text"]
            if not text_parts:
                continue
            message = {**message, "content": text_parts}  # type: ignore[misc]
        filtered.append(message)
    return tuple(filtered)


def keep_last_messages(limit: int) -> Callable[[HandoffInputData], HandoffInputData]:
    """Keeps at most the last `limit` messages of each part of the transcript."""

    def _filter(handoff_input_data: HandoffInputData) -> HandoffInputData:
        return handoff_input_data.clone(
            input_history=_last(handoff_input_data.input_history, limit),
            pre_handoff_messages=_last(handoff_input_data.pre_handoff_messages, limit),
            new_messages=_last(handoff_input_data.new_messages, limit),
        )

    return _filter


def _last(messages: tuple[TMessage, ...], limit: int) -> tuple[TMessage, ...]:
    return messages[-limit:] if limit > 0 else ()


def keep_last_message() -> Callable[[HandoffInputData], HandoffInputData]:
    return keep_last_messages(1)


def keep_messages_only(handoff_input_data: HandoffInputData) -> HandoffInputData:
    """Keeps the transcript the run started from and drops everything the run produced."""
    return handoff_input_data.clone(pre_handoff_messages=(), new_messages=())


def create_handoff_prompt(agents: Sequence[Any]) -> str:
    """Lists handoff targets and their descriptions, for an agent's instructions. Accepts
    agents or `Handoff` objects."""
    if not agents:
        return ""

    lines = []
    for target in agents:
        agent = getattr(target, "agent", target)
        description = agent.handoff_description or "No description available"
        lines.append(f"- {agent.name}: {description}")
    return "Available specialists to handoff to:\n" + "\n".join(lines)
