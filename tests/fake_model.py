from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from relay_agents.handoffs import Handoff, HandoffMarker
from relay_agents.items import MessagePart, TMessage, ToolCallPart
from relay_agents.models.interface import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelStreamEvent,
    ResponseCompletedStreamEvent,
    TextDeltaStreamEvent,
    ToolCallStreamEvent,
    ToolResultStreamEvent,
)
from relay_agents.tool_wrapper import invoke_tool_calls
from relay_agents.usage import Usage


@dataclass
class FakeStep:
    """One inner step of a scripted turn: either text, or tool calls (optionally with text)."""

    text: str = ""
    tool_calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    finish_reason: str | None = None


TurnOutput = list[FakeStep]


def get_text_message(text: str, finish_reason: str = "stop") -> FakeStep:
    return FakeStep(text=text, finish_reason=finish_reason)


def get_function_tool_call(name: str, args: dict[str, Any] | None = None) -> FakeStep:
    return FakeStep(tool_calls=[(name, args or {})])


def get_handoff_tool_call(to_agent: Any, reason: str = "routing") -> FakeStep:
    return FakeStep(tool_calls=[(Handoff.default_tool_name(to_agent), {"reason": reason})])


def _chunks(text: str, size: int = 5) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class FakeModel(Model):
    """A scripted model. Each call consumes the next turn output and plays its steps, running
    tool calls through the request's bound tools the way a real model does."""

    def __init__(
        self,
        initial_output: TurnOutput | Exception | None = None,
        *,
        name: str = "fake-model",
        delay: float = 0.0,
        step_usage: tuple[int, int] = (10, 5),
    ):
        self.turn_outputs: list[TurnOutput | Exception] = []
        if initial_output is not None:
            self.turn_outputs.append(initial_output)
        self.name = name
        self.delay = delay
        self.step_usage = step_usage
        self.requests: list[ModelRequest] = []
        self._call_count = 0

    @property
    def model_name(self) -> str | None:
        return self.name

    @property
    def last_request(self) -> ModelRequest | None:
        return self.requests[-1] if self.requests else None

    def set_next_output(self, output: TurnOutput | Exception) -> None:
        self.turn_outputs.append(output)

    def add_multiple_turn_outputs(self, outputs: list[TurnOutput | Exception]) -> None:
        self.turn_outputs.extend(outputs)

    def get_next_output(self) -> TurnOutput | Exception:
        if not self.turn_outputs:
            return []
        return self.turn_outputs.pop(0)

    def _usage(self) -> Usage:
        input_tokens, output_tokens = self.step_usage
        return Usage(
            requests=1,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

    async def get_response(self, request: ModelRequest) -> ModelResponse:
        response: ModelResponse | None = None
        async for event in self._play(request):
            if isinstance(event, ResponseCompletedStreamEvent):
                response = event.response
        assert response is not None
        return response

    async def stream_response(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        async for event in self._play(request):
            yield event

    async def _play(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        self.requests.append(request)
        output = self.get_next_output()
        if isinstance(output, Exception):
            raise output

        messages: list[TMessage] = []
        usage = Usage()
        text = ""
        finish_reason = "stop"

        for step in output[: max(request.max_steps, 1)]:
            if self.delay:
                await asyncio.sleep(self.delay)
            usage.add(self._usage())
            text = step.text
            for chunk in _chunks(step.text):
                yield TextDeltaStreamEvent(delta=chunk)

            if not step.tool_calls:
                messages.append({"role": "assistant", "content": step.text})
                finish_reason = step.finish_reason or "stop"
                continue

            calls: list[ToolCallPart] = []
            for tool_name, args in step.tool_calls:
                self._call_count += 1
                calls.append(
                    {
                        "type": "tool-call",
                        "tool_call_id": f"call_{self._call_count}",
                        "tool_name": tool_name,
                        "args": args,
                    }
                )
            content: list[MessagePart] = [{"type": "text", "text": step.text}] if step.text else []
            content.extend(calls)
            messages.append({"role": "assistant", "content": content})
            for call in calls:
                yield ToolCallStreamEvent(
                    tool_call_id=call["tool_call_id"],
                    tool_name=call["tool_name"],
                    args=call["args"],
                )

            results = await invoke_tool_calls(
                request.tools, [(c["tool_call_id"], c["tool_name"], c["args"]) for c in calls]
            )
            messages.append({"role": "tool", "content": list(results)})
            for result in results:
                yield ToolResultStreamEvent(
                    tool_call_id=result["tool_call_id"],
                    tool_name=result["tool_name"],
                    result=result["result"],
                )
            finish_reason = step.finish_reason or "tool-calls"
            if any(HandoffMarker.from_result(r["result"]) for r in results):
                break

        yield ResponseCompletedStreamEvent(
            response=ModelResponse(
                text=text, finish_reason=finish_reason, usage=usage, messages=messages
            )
        )
