from __future__ import annotations

import asyncio

import pytest

from relay_agents import (
    Agent,
    AgentsException,
    AgentUpdatedEvent,
    FinishEvent,
    InMemorySession,
    ModelBehaviorError,
    Runner,
    StepFinishEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    function_tool,
)

from .fake_model import FakeModel, get_function_tool_call, get_handoff_tool_call, get_text_message


@function_tool
def get_weather(city: str) -> str:
    """Returns the weather in a city."""
    return f"Sunny in {city}"


@pytest.mark.asyncio
async def test_simple_stream_events():
    model = FakeModel(initial_output=[get_text_message("hello world")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "hi")
    events = [event async for event in result.stream_events()]

    assert [event.type for event in events] == [
        "agent_updated",
        "text_delta",
        "text_delta",
        "text_delta",
        "step_finish",
        "finish",
    ]
    assert "".join(e.delta for e in events if isinstance(e, TextDeltaEvent)) == "hello world"
    assert isinstance(events[0], AgentUpdatedEvent)
    assert events[0].new_agent is agent
    assert events[0].previous_agent is None

    final = events[-1]
    assert isinstance(final, FinishEvent)
    assert final.result.final_output == "hello world"

    completed = await result.completed
    assert completed is final.result
    assert result.is_complete
    assert result.text == "hello world"


@pytest.mark.asyncio
async def test_stream_text():
    model = FakeModel(initial_output=[get_text_message("The quick brown fox")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "tell me something")
    chunks = [chunk async for chunk in result.stream_text()]

    assert chunks == ["The q", "uick ", "brown", " fox"]
    assert (await result.completed).final_output == "The quick brown fox"


@pytest.mark.asyncio
async def test_stream_tool_events():
    model = FakeModel(
        initial_output=[get_function_tool_call("get_weather", {"city": "Paris"}), get_text_message("Sunny")]
    )
    agent = Agent(name="weather", model=model, tools=[get_weather])

    result = Runner.run_streamed(agent, "Weather in Paris?")
    events = [event async for event in result.stream_events()]

    call = next(e for e in events if isinstance(e, ToolCallEvent))
    tool_result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert call.tool_name == "get_weather"
    assert call.args == {"city": "Paris"}
    assert call.agent is agent
    assert tool_result.tool_call_id == call.tool_call_id
    assert tool_result.result == "Sunny in Paris"
    assert events.index(call) < events.index(tool_result)

    step_event = next(e for e in events if isinstance(e, StepFinishEvent))
    assert step_event.step.tool_calls[0].result == "Sunny in Paris"

    completed = await result.completed
    assert completed.metadata.total_tool_calls == 1
    assert [m["role"] for m in completed.messages] == ["user", "assistant", "tool", "assistant"]


@pytest.mark.asyncio
async def test_stream_handoff_updates_agent():
    billing = Agent(name="billing", model=FakeModel(initial_output=[get_text_message("paid")]))
    triage = Agent(
        name="triage",
        model=FakeModel(initial_output=[get_handoff_tool_call(billing, "invoice")]),
        handoffs=[billing],
    )

    result = Runner.run_streamed(triage, "invoice?")
    events = [event async for event in result.stream_events()]

    updates = [e for e in events if isinstance(e, AgentUpdatedEvent)]
    assert [(u.new_agent.name, u.previous_agent) for u in updates[:1]] == [("triage", None)]
    assert updates[1].new_agent is billing
    assert updates[1].previous_agent is triage
    assert result.current_agent is billing

    # The handoff turn is not recorded, so only billing finishes a step.
    steps = [e for e in events if isinstance(e, StepFinishEvent)]
    assert [s.step.agent_name for s in steps] == ["billing"]
    assert (await result.completed).metadata.handoff_chain == ["triage", "billing"]


@pytest.mark.asyncio
async def test_stream_error_is_raised_after_events():
    model = FakeModel(initial_output=ModelBehaviorError("broken model"))
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "hi")
    events = []
    with pytest.raises(ModelBehaviorError):
        async for event in result.stream_events():
            events.append(event)

    assert [event.type for event in events] == ["agent_updated"]
    assert result.is_complete
    with pytest.raises(ModelBehaviorError) as exc_info:
        await result.completed
    assert exc_info.value.run_data is not None


@pytest.mark.asyncio
async def test_stream_can_only_be_consumed_once():
    model = FakeModel(initial_output=[get_text_message("once")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "hi")
    async for _ in result.stream_text():
        pass

    with pytest.raises(AgentsException):
        async for _ in result.stream_events():
            pass


@pytest.mark.asyncio
async def test_cancel_resolves_with_partial_result():
    model = FakeModel(delay=0.05)
    model.add_multiple_turn_outputs(
        [
            [get_function_tool_call("get_weather", {"city": "Oslo"})],
            [get_function_tool_call("get_weather", {"city": "Rome"})],
            [get_text_message("never reached")],
        ]
    )
    agent = Agent(name="test", model=model, tools=[get_weather], max_steps=1)

    result = Runner.run_streamed(agent, "weather tour")
    seen = []
    async for event in result.stream_events():
        seen.append(event)
        if isinstance(event, StepFinishEvent):
            result.cancel()

    assert result.cancelled
    assert seen[-1].type == "step_finish"
    partial = await result.completed
    assert partial.metadata.finish_reason == "cancelled"
    assert len(partial.steps) == 1

    # The background run is gone; the third turn never starts.
    await asyncio.sleep(0.2)
    assert len(model.requests) <= 2


class SlowSession(InMemorySession):
    async def get_history(self):
        await asyncio.sleep(0.2)
        return await super().get_history()


@pytest.mark.asyncio
async def test_cancel_while_loading_session_history():
    model = FakeModel(initial_output=[get_text_message("never reached")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "hi", session=SlowSession("slow"))
    await asyncio.sleep(0.01)
    result.cancel()

    partial = await result.completed
    assert result.cancelled
    assert partial.final_output == ""
    assert partial.messages == []
    assert partial.metadata.finish_reason == "cancelled"
    assert partial.last_agent is agent
    assert model.requests == []


@pytest.mark.asyncio
async def test_cancel_after_completion_is_a_no_op():
    model = FakeModel(initial_output=[get_text_message("done")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "hi")
    final = await result.completed
    result.cancel()

    assert not result.cancelled
    assert final.final_output == "done"


@pytest.mark.asyncio
async def test_text_resets_per_model_call():
    model = FakeModel()
    model.add_multiple_turn_outputs(
        [[get_text_message("draft", finish_reason="length")], [get_text_message("final")]]
    )
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "write")
    final = await result.completed

    assert final.final_output == "final"
    assert result.text == "final"


@pytest.mark.asyncio
async def test_streamed_run_saves_session():
    session = InMemorySession("streamed")
    model = FakeModel(initial_output=[get_text_message("stored")])
    agent = Agent(name="test", model=model)

    result = Runner.run_streamed(agent, "remember this", session=session)
    async for _ in result.stream_events():
        pass

    assert await session.get_history() == [
        {"role": "user", "content": "remember this"},
        {"role": "assistant", "content": "stored"},
    ]
