from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import NOT_GIVEN, AsyncOpenAI
from openai.types.chat import ChatCompletion, ChatCompletionChunk

from .. import _debug
from ..handoffs import HandoffMarker
from ..items import ItemHelpers, TMessage, ToolCallPart
from ..logger import logger
from ..tool_wrapper import invoke_tool_calls
from ..usage import Usage
from ._openai_shared import get_or_create_client
from .chatcmpl_converter import Converter
from .interface import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelRetrySettings,
    ModelStreamEvent,
    ResponseCompletedStreamEvent,
    TextDeltaStreamEvent,
    ToolCallStreamEvent,
    ToolResultStreamEvent,
)


@dataclass
class _StepOutput:
    text: str
    tool_calls: list[ToolCallPart]
    finish_reason: str
    usage: Usage


@dataclass
class _TurnState:
    """The inner tool loop of one `ModelRequest`."""

    openai_messages: list[dict[str, Any]]
    new_messages: list[TMessage] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    text: str = ""
    finish_reason: str = "other"
    response_id: str | None = None


class OpenAIChatCompletionsModel(Model):
    """A `Model` on the OpenAI chat completions API.

    Each call runs an inner tool loop: tool calls the model makes are executed through the
    request's bound tools and their results sent back, for up to `request.max_steps` round
    trips. The loop also stops as soon as a delegate tool returned a handoff.
    """

    def __init__(
        self,
        model: str,
        openai_client: AsyncOpenAI | None = None,
        retry_settings: ModelRetrySettings | None = None,
    ) -> None:
        self.model = model
        self._client = openai_client
        self.retry_settings = retry_settings or ModelRetrySettings()

    @property
    def model_name(self) -> str | None:
        return self.model

    # Lazy, so building a model never needs an API key.
    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_or_create_client()
        return self._client

    async def get_response(self, request: ModelRequest) -> ModelResponse:
        state = self._start_turn(request)
        for step in range(max(request.max_steps, 1)):
            completion: ChatCompletion = await self._fetch(request, state, step, stream=False)
            state.response_id = completion.id
            if not completion.choices:
                step_output = _StepOutput("", [], "other", Converter.usage(completion.usage))
            else:
                choice = completion.choices[0]
                step_output = _StepOutput(
                    text=choice.message.content or "",
                    tool_calls=Converter.tool_call_parts(choice.message.tool_calls),
                    finish_reason=Converter.finish_reason(choice.finish_reason),
                    usage=Converter.usage(completion.usage),
                )

            if _debug.DONT_LOG_MODEL_DATA:
                logger.debug("Received model response")
            else:
                logger.debug(f"LLM resp:\n{completion.model_dump_json(indent=2)}\n")

            if not await self._finish_step(request, state, step_output):
                break
        return self._response(state)

    async def stream_response(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        state = self._start_turn(request)
        for step in range(max(request.max_steps, 1)):
            stream: openai.AsyncStream[ChatCompletionChunk] = await self._fetch(
                request, state, step, stream=True
            )
            text = ""
            finish_reason: str | None = None
            usage = Usage(requests=1)
            pending: dict[int, dict[str, str]] = {}
            async for chunk in stream:
                state.response_id = chunk.id
                if chunk.usage is not None:
                    usage = Converter.usage(chunk.usage)
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                delta = choice.delta
                if delta.content:
                    text += delta.content
                    yield TextDeltaStreamEvent(delta=delta.content)
                for tc_delta in delta.tool_calls or []:
                    call = pending.setdefault(tc_delta.index, {"id": "", "name": "", "arguments": ""})
                    if tc_delta.id:
                        call["id"] = tc_delta.id
                    if tc_delta.function:
                        call["name"] += tc_delta.function.name or ""
                        call["arguments"] += tc_delta.function.arguments or ""

            tool_calls: list[ToolCallPart] = [
                {
                    "type": "tool-call",
                    "tool_call_id": call["id"],
                    "tool_name": call["name"],
                    "args": Converter.parse_arguments(call["name"], call["arguments"]),
                }
                for _, call in sorted(pending.items())
            ]
            for part in tool_calls:
                yield ToolCallStreamEvent(
                    tool_call_id=part["tool_call_id"], tool_name=part["tool_name"], args=part["args"]
                )

            step_output = _StepOutput(text, tool_calls, Converter.finish_reason(finish_reason), usage)
            keep_going = await self._finish_step(request, state, step_output)
            if tool_calls:
                for result in ItemHelpers.tool_result_parts(state.new_messages[-1]):
                    yield ToolResultStreamEvent(
                        tool_call_id=result["tool_call_id"],
                        tool_name=result["tool_name"],
                        result=result["result"],
                    )
            if not keep_going:
                break

        yield ResponseCompletedStreamEvent(response=self._response(state))

    def _start_turn(self, request: ModelRequest) -> _TurnState:
        return _TurnState(
            openai_messages=Converter.to_openai_messages(
                request.system_instructions, request.messages
            )
        )

    async def _finish_step(
        self, request: ModelRequest, state: _TurnState, step_output: _StepOutput
    ) -> bool:
        """Records one inner step and runs its tool calls. Returns whether to call the model
        again."""
        state.usage.add(step_output.usage)
        state.text = step_output.text
        state.finish_reason = step_output.finish_reason

        assistant = Converter.assistant_message(step_output.text, step_output.tool_calls)
        state.new_messages.append(assistant)
        state.openai_messages.extend(Converter.message_to_openai(assistant))
        if not step_output.tool_calls:
            return False

        state.finish_reason = "tool-calls"
        results = await invoke_tool_calls(
            request.tools,
            [(p["tool_call_id"], p["tool_name"], p["args"]) for p in step_output.tool_calls],
        )
        state.new_messages.append({"role": "tool", "content": list(results)})
        state.openai_messages.extend(Converter.tool_result_to_openai(r) for r in results)
        return not any(HandoffMarker.from_result(r["result"]) for r in results)

    def _response(self, state: _TurnState) -> ModelResponse:
        return ModelResponse(
            text=state.text,
            finish_reason=state.finish_reason,
            usage=state.usage,
            messages=state.new_messages,
            response_id=state.response_id,
        )

    async def _fetch(
        self, request: ModelRequest, state: _TurnState, step: int, stream: bool
    ) -> Any:
        settings = request.model_settings
        tools = Converter.tools_to_openai(request.tools)
        tool_choice = request.tool_choice or settings.tool_choice
        # Forcing a tool call again after the first step would never let the model answer.
        if step > 0 and tool_choice == "required":
            tool_choice = None
        response_format = Converter.response_format(request.output_schema)

        if _debug.DONT_LOG_MODEL_DATA:
            logger.debug("Calling LLM")
        else:
            logger.debug(
                f"{json.dumps(state.openai_messages, indent=2, default=str)}\n"
                f"Tools:\n{json.dumps(tools, indent=2)}\n"
                f"Stream: {stream}\n"
                f"Tool choice: {tool_choice}\n"
                f"Response format: {response_format}\n"
            )

        client = self._get_client()

        async def _create() -> Any:
            return await client.chat.completions.create(
                model=self.model,
                messages=state.openai_messages,  # type: ignore[arg-type]
                tools=tools or NOT_GIVEN,  # type: ignore[arg-type]
                tool_choice=tool_choice if tools and tool_choice else NOT_GIVEN,  # type: ignore[arg-type]
                parallel_tool_calls=(
                    settings.parallel_tool_calls
                    if tools and settings.parallel_tool_calls is not None
                    else NOT_GIVEN
                ),
                temperature=_or_not_given(settings.temperature),
                top_p=_or_not_given(settings.top_p),
                frequency_penalty=_or_not_given(settings.frequency_penalty),
                presence_penalty=_or_not_given(settings.presence_penalty),
                max_tokens=_or_not_given(settings.max_tokens),
                seed=_or_not_given(settings.seed),
                response_format=response_format or NOT_GIVEN,  # type: ignore[arg-type]
                stream=stream,
                stream_options={"include_usage": True} if stream else NOT_GIVEN,
            )

        return await self.retry_settings.execute_with_retry(_create, self._should_retry)

    def _should_retry(self, error: Exception) -> bool:
        if isinstance(error, (openai.APIConnectionError, openai.APITimeoutError)):
            return True
        if isinstance(error, openai.APIStatusError):
            return error.status_code in self.retry_settings.retryable_status_codes
        return False


def _or_not_given(value: Any) -> Any:
    return value if value is not None else NOT_GIVEN
