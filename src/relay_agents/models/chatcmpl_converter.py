from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from openai.types.chat import ChatCompletionMessageToolCall
from openai.types.completion_usage import CompletionUsage
from openai.types.responses.response_usage import InputTokensDetails, OutputTokensDetails

from ..exceptions import ModelBehaviorError
from ..items import ItemHelpers, MessagePart, TMessage, ToolCallPart, ToolResultPart
from ..usage import Usage

if TYPE_CHECKING:
    from ..agent_output import AgentOutputSchema
    from ..tool_wrapper import ContextBoundTool

_FINISH_REASONS = {
    "stop": "stop",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "length": "length",
    "content_filter": "content-filter",
}


class Converter:
    """Translates between relay_agents messages and the chat completions wire format."""

    @classmethod
    def finish_reason(cls, reason: str | None) -> str:
        if reason is None:
            return "other"
        return _FINISH_REASONS.get(reason, "other")

    @classmethod
    def usage(cls, usage: CompletionUsage | None) -> Usage:
        if usage is None:
            return Usage(requests=1)
        cached = usage.prompt_tokens_details.cached_tokens if usage.prompt_tokens_details else 0
        reasoning = (
            usage.completion_tokens_details.reasoning_tokens
            if usage.completion_tokens_details
            else 0
        )
        return Usage(
            requests=1,
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            # model_construct: newer openai releases add required fields to these details.
            input_tokens_details=InputTokensDetails.model_construct(cached_tokens=cached or 0),
            output_tokens_details=OutputTokensDetails.model_construct(
                reasoning_tokens=reasoning or 0
            ),
        )

    @classmethod
    def parse_arguments(cls, tool_name: str, arguments: str | None) -> dict[str, Any]:
        try:
            parsed = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError as e:
            raise ModelBehaviorError(
                f"Invalid JSON arguments for tool {tool_name}: {arguments}"
            ) from e
        if not isinstance(parsed, dict):
            raise ModelBehaviorError(f"Arguments for tool {tool_name} are not a JSON object")
        return parsed

    @classmethod
    def tool_call_parts(
        cls, tool_calls: list[ChatCompletionMessageToolCall] | None
    ) -> list[ToolCallPart]:
        parts: list[ToolCallPart] = []
        for tool_call in tool_calls or []:
            name = tool_call.function.name
            parts.append(
                {
                    "type": "tool-call",
                    "tool_call_id": tool_call.id,
                    "tool_name": name,
                    "args": cls.parse_arguments(name, tool_call.function.arguments),
                }
            )
        return parts

    @classmethod
    def assistant_message(cls, text: str, tool_calls: list[ToolCallPart]) -> TMessage:
        if not tool_calls:
            return ItemHelpers.assistant_message(text)
        content: list[MessagePart] = []
        if text:
            content.append({"type": "text", "text": text})
        content.extend(tool_calls)
        return {"role": "assistant", "content": content}

    @classmethod
    def to_openai_messages(
        cls, system_instructions: str | None, messages: list[TMessage]
    ) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        if system_instructions:
            result.append({"role": "system", "content": system_instructions})
        for message in messages:
            result.extend(cls.message_to_openai(message))
        return result

    @classmethod
    def message_to_openai(cls, message: TMessage) -> list[dict[str, Any]]:
        role = message["role"]
        if role == "tool":
            return [cls.tool_result_to_openai(part) for part in ItemHelpers.tool_result_parts(message)]

        text = ItemHelpers.text_of(message)
        if role != "assistant":
            converted: dict[str, Any] = {"role": role, "content": text}
            if "name" in message:
                converted["name"] = message["name"]
            return [converted]

        tool_calls = ItemHelpers.tool_call_parts(message)
        assistant: dict[str, Any] = {"role": "assistant", "content": text or None}
        if tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": part["tool_call_id"],
                    "type": "function",
                    "function": {
                        "name": part["tool_name"],
                        "arguments": json.dumps(part.get("args") or {}),
                    },
                }
                for part in tool_calls
            ]
        elif not text:
            assistant["content"] = ""
        return [assistant]

    @classmethod
    def tool_result_to_openai(cls, part: ToolResultPart) -> dict[str, Any]:
        result = part["result"]
        return {
            "role": "tool",
            "tool_call_id": part["tool_call_id"],
            "content": result if isinstance(result, str) else json.dumps(result, default=str),
        }

    @classmethod
    def tools_to_openai(cls, tools: Mapping[str, ContextBoundTool]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.params_json_schema,
                },
            }
            for tool in tools.values()
        ]

    @classmethod
    def response_format(cls, output_schema: AgentOutputSchema | None) -> dict[str, Any] | None:
        if output_schema is None or not output_schema.is_object_schema():
            return None
        return {
            "type": "json_schema",
            "json_schema": {
                "name": "final_output",
                "strict": False,
                "schema": output_schema.json_schema(),
            },
        }
