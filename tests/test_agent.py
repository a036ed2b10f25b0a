from __future__ import annotations

from typing import Any

import pytest

from relay_agents import Agent, RunContextWrapper, Runner, UserError, function_tool
from relay_agents.handoffs import Handoff

from .fake_model import FakeModel, get_function_tool_call, get_text_message


@function_tool
def lookup(query: str) -> str:
    """Looks something up."""
    return query


def test_agent_exposes_one_delegate_tool_per_handoff():
    billing = Agent(name="billing", handoff_description="Handles invoices")
    support = Agent(name="Tech Support")
    triage = Agent(name="triage", tools=[lookup], handoffs=[billing, support])

    names = [tool.name for tool in triage.all_tools]
    assert names == ["lookup", "handoff_to_billing", "handoff_to_tech_support"]

    billing_tool = triage.all_tools[1]
    assert billing_tool.is_handoff
    assert billing_tool.description == "Hand off to billing: Handles invoices"
    assert billing_tool.params_json_schema["required"] == ["reason"]
    assert not triage.all_tools[0].is_handoff


def test_duplicate_tool_names_are_rejected():
    with pytest.raises(UserError):
        Agent(name="a", tools=[lookup, lookup])


@pytest.mark.parametrize("name", ["", "   ", " padded", "x" * 101])
def test_invalid_agent_names(name: str):
    with pytest.raises(ValueError):
        Agent(name=name)


def test_clone_does_not_share_lists():
    original = Agent(name="original", instructions="one", tools=[lookup])
    clone = original.clone(instructions="two")

    assert clone.instructions == "two"
    assert original.instructions == "one"
    clone.tools.append(Handoff.to_tool(original))
    assert len(original.tools) == 1


@pytest.mark.asyncio
async def test_clone_runs_like_the_original():
    model = FakeModel()
    turn = [get_function_tool_call("lookup", {"query": "tides"}), get_text_message("High at 6")]
    model.add_multiple_turn_outputs([turn, list(turn)])
    original = Agent(name="original", instructions="Be brief", model=model, tools=[lookup])
    clone = original.clone()

    first = await Runner.run(original, "When is high tide?")
    second = await Runner.run(clone, "When is high tide?")

    assert second.final_output == first.final_output == "High at 6"
    assert [m["role"] for m in second.messages] == [m["role"] for m in first.messages]
    assert second.steps[0].tool_calls[0].result == first.steps[0].tool_calls[0].result == "tides"
    assert second.usage.total_tokens == first.usage.total_tokens
    first_request, second_request = model.requests
    assert second_request.system_instructions == first_request.system_instructions
    assert list(second_request.tools) == list(first_request.tools) == ["lookup"]
    assert second_request.messages == first_request.messages


@pytest.mark.asyncio
async def test_static_and_dynamic_instructions():
    ctx = RunContextWrapper(context={"user": "ada"})

    assert await Agent(name="a", instructions="Be brief").get_instructions(ctx) == "Be brief"
    assert await Agent(name="a").get_instructions(ctx) == ""

    def sync_instructions(run_ctx: RunContextWrapper[Any], agent: Agent[Any]) -> str:
        return f"Help {run_ctx.context['user']} as {agent.name}"

    async def async_instructions(run_ctx: RunContextWrapper[Any], agent: Agent[Any]) -> str:
        return f"Async help for {run_ctx.context['user']}"

    sync_agent = Agent(name="helper", instructions=sync_instructions)
    async_agent = Agent(name="helper", instructions=async_instructions)
    assert await sync_agent.get_instructions(ctx) == "Help ada as helper"
    assert await async_agent.get_instructions(ctx) == "Async help for ada"


def test_handoff_tool_returns_marker():
    target = Agent(name="billing")
    tool = Handoff.to_tool(target)
    assert tool.name == "handoff_to_billing"


@pytest.mark.asyncio
async def test_agent_as_tool_runs_a_nested_run():
    inner_model = FakeModel(initial_output=[get_text_message("hello")])
    translator = Agent(
        name="Translator",
        handoff_description="Translates Spanish to English",
        model=inner_model,
    )
    tool = translator.as_tool()
    assert tool.name == "translator"
    assert tool.description == "Translates Spanish to English"
    assert tool.params_json_schema["required"] == ["input"]
    assert not tool.is_handoff

    orchestrator = Agent(
        name="orchestrator",
        model=FakeModel(
            initial_output=[
                get_function_tool_call("translator", {"input": "hola"}),
                get_text_message("It says hello"),
            ]
        ),
        tools=[tool],
    )
    result = await Runner.run(orchestrator, "What does hola mean?")

    assert result.final_output == "It says hello"
    assert result.last_agent is orchestrator
    assert result.steps[0].tool_calls[0].result == "hello"
    assert inner_model.last_request is not None
    assert inner_model.last_request.messages == [{"role": "user", "content": "hola"}]
