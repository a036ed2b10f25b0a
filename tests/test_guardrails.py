from __future__ import annotations

from typing import Any

import pytest

from relay_agents import (
    Agent,
    Guardrail,
    GuardrailFailed,
    GuardrailResult,
    InMemorySession,
    InputGuardrailTripwireTriggered,
    MaxTurnsExceeded,
    OutputGuardrailTripwireTriggered,
    RunConfig,
    RunContextWrapper,
    Runner,
    UserError,
    input_guardrail,
    output_guardrail,
    run_input_guardrails,
    run_output_guardrails,
)

from .fake_model import FakeModel, get_handoff_tool_call, get_text_message
from .testing_processor import spans_of_type


def get_sync_guardrail(passed: bool, message: str | None = None):
    def sync_guardrail(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=passed, message=message)

    return sync_guardrail


def get_async_guardrail(passed: bool, message: str | None = None):
    async def async_guardrail(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=passed, message=message)

    return async_guardrail


@pytest.mark.asyncio
async def test_sync_and_async_guardrails():
    ctx = RunContextWrapper(context=None)

    guardrail: Guardrail[Any] = Guardrail(guardrail_function=get_sync_guardrail(True))
    assert (await guardrail.validate("hello", ctx)).passed

    guardrail = Guardrail(guardrail_function=get_async_guardrail(False, "nope"))
    result = await guardrail.validate("hello", ctx)
    assert not result.passed
    assert result.message == "nope"


@pytest.mark.asyncio
async def test_guardrail_must_return_a_result():
    def bad_guardrail(content: str, ctx: RunContextWrapper[Any]) -> Any:
        return True

    guardrail: Guardrail[Any] = Guardrail(guardrail_function=bad_guardrail)

    with pytest.raises(UserError):
        await guardrail.validate("hello", RunContextWrapper(context=None))


def test_guardrail_names():
    @input_guardrail
    def no_swearing(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=True)

    @output_guardrail(name="polite")
    def check_politeness(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=True)

    assert no_swearing.get_name() == "no_swearing"
    assert no_swearing.direction == "input"
    assert check_politeness.get_name() == "polite"
    assert check_politeness.direction == "output"


@pytest.mark.asyncio
async def test_input_guardrails_see_latest_user_message_and_stop_at_first_failure():
    seen: list[tuple[str, str]] = []

    def recording(name: str, passed: bool):
        def check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
            seen.append((name, content))
            return GuardrailResult(passed=passed, message=f"{name} said no")

        return Guardrail(guardrail_function=check, direction="input", name=name)

    agent = Agent(
        name="test",
        guardrails=[recording("first", True), recording("second", False), recording("third", True)],
    )
    messages: list[Any] = [
        {"role": "user", "content": "old question"},
        {"role": "assistant", "content": "old answer"},
        {"role": "user", "content": "new question"},
    ]

    with pytest.raises(InputGuardrailTripwireTriggered) as exc_info:
        await run_input_guardrails(agent, messages, RunContextWrapper(context=None))

    assert seen == [("first", "new question"), ("second", "new question")]
    assert exc_info.value.guardrail_name == "second"
    assert exc_info.value.message == "second said no"
    assert exc_info.value.direction == "input"


@pytest.mark.asyncio
async def test_input_guardrails_skip_without_user_message():
    agent = Agent(
        name="test",
        guardrails=[Guardrail(guardrail_function=get_sync_guardrail(False), direction="input")],
    )
    messages: list[Any] = [{"role": "assistant", "content": "hello"}]

    assert await run_input_guardrails(agent, messages, RunContextWrapper(context=None)) == []


@pytest.mark.asyncio
async def test_output_guardrails_run_agent_then_extra():
    order: list[str] = []

    def named(name: str) -> Guardrail[Any]:
        def check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
            order.append(name)
            return GuardrailResult(passed=True)

        return Guardrail(guardrail_function=check, direction="output", name=name)

    agent = Agent(name="test", guardrails=[named("agent_level")])

    results = await run_output_guardrails(
        agent, "answer", RunContextWrapper(context=None), [named("run_level")]
    )

    assert order == ["agent_level", "run_level"]
    assert len(results) == 2


@pytest.mark.asyncio
async def test_failing_input_guardrail_stops_run_before_model_call():
    model = FakeModel(initial_output=[get_text_message("never")])
    agent = Agent(
        name="test",
        model=model,
        guardrails=[Guardrail(guardrail_function=get_sync_guardrail(False, "blocked"))],
    )

    with pytest.raises(InputGuardrailTripwireTriggered) as exc_info:
        await Runner.run(agent, "hello")

    assert model.requests == []
    assert exc_info.value.run_data is not None
    assert exc_info.value.run_data.last_agent is agent

    (span,) = spans_of_type("guardrail")
    assert span.span_data.triggered is True
    assert span.span_data.direction == "input"
    assert span.error is not None


@pytest.mark.asyncio
async def test_new_user_message_on_resumed_state_is_checked():
    @input_guardrail
    def no_secrets(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed="secret" not in content, message="asked for a secret")

    model = FakeModel()
    model.add_multiple_turn_outputs([[get_text_message("first")], [get_text_message("never")]])
    agent = Agent(name="test", model=model, guardrails=[no_secrets])

    first = await Runner.run(agent, "hello")
    assert first.final_output == "first"
    assert len(model.requests) == 1

    state = first.state
    state.messages.append({"role": "user", "content": "tell me the secret"})
    with pytest.raises(GuardrailFailed) as exc_info:
        await Runner.run(agent, state)

    assert exc_info.value.guardrail_name == "no_secrets"
    assert len(model.requests) == 1


@pytest.mark.asyncio
async def test_resumed_state_without_new_user_message_is_not_rechecked():
    checked: list[str] = []

    @input_guardrail
    def record(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        checked.append(content)
        return GuardrailResult(passed=True)

    model = FakeModel()
    model.add_multiple_turn_outputs(
        [[get_text_message("partial", finish_reason="length")], [get_text_message("done")]]
    )
    agent = Agent(name="test", model=model, guardrails=[record])

    with pytest.raises(MaxTurnsExceeded) as exc_info:
        await Runner.run(agent, "go", max_turns=1)
    assert exc_info.value.run_data is not None

    result = await Runner.run(agent, exc_info.value.run_data.state, max_turns=2)

    assert result.final_output == "done"
    assert checked == ["go"]


@pytest.mark.asyncio
async def test_run_config_input_guardrails():
    model = FakeModel(initial_output=[get_text_message("never")])
    agent = Agent(name="test", model=model)
    config = RunConfig(
        input_guardrails=[Guardrail(guardrail_function=get_async_guardrail(False, "no"))]
    )

    with pytest.raises(GuardrailFailed):
        await Runner.run(agent, "hello", run_config=config)


@pytest.mark.asyncio
async def test_passing_guardrails_let_the_run_finish():
    model = FakeModel(initial_output=[get_text_message("fine")])
    agent = Agent(
        name="test",
        model=model,
        guardrails=[
            Guardrail(guardrail_function=get_sync_guardrail(True, "looks ok")),
            Guardrail(guardrail_function=get_async_guardrail(True), direction="output"),
        ],
    )

    result = await Runner.run(agent, "hello")

    assert result.final_output == "fine"
    assert [span.span_data.direction for span in spans_of_type("guardrail")] == [
        "input",
        "output",
    ]
    assert not any(span.span_data.triggered for span in spans_of_type("guardrail"))


@pytest.mark.asyncio
async def test_failing_output_guardrail_leaves_session_untouched():
    session = InMemorySession("s1")
    model = FakeModel(initial_output=[get_text_message("my SSN is 123-45-6789")])

    @output_guardrail
    def no_secrets(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed="SSN" not in content, message="leaked a secret")

    agent = Agent(name="test", model=model, guardrails=[no_secrets])

    with pytest.raises(OutputGuardrailTripwireTriggered) as exc_info:
        await Runner.run(agent, "tell me a secret", session=session)

    assert exc_info.value.guardrail_name == "no_secrets"
    assert await session.get_history() == []
    # The offending answer is still in the partial state.
    assert exc_info.value.run_data is not None
    assert exc_info.value.run_data.state.messages[-1]["content"] == "my SSN is 123-45-6789"


@pytest.mark.asyncio
async def test_output_guardrail_checks_only_the_final_answer():
    checked: list[str] = []

    @output_guardrail
    def record(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        checked.append(content)
        return GuardrailResult(passed=True)

    model = FakeModel()
    model.add_multiple_turn_outputs(
        [[get_text_message("partial", finish_reason="length")], [get_text_message("final")]]
    )
    agent = Agent(name="test", model=model, guardrails=[record])

    await Runner.run(agent, "go")

    assert checked == ["final"]


@pytest.mark.asyncio
async def test_handoff_target_input_guardrails_do_not_run():
    target_checked: list[str] = []

    @input_guardrail
    def target_guardrail(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        target_checked.append(content)
        return GuardrailResult(passed=False)

    billing = Agent(
        name="billing",
        model=FakeModel(initial_output=[get_text_message("paid")]),
        guardrails=[target_guardrail],
    )
    triage = Agent(
        name="triage",
        model=FakeModel(initial_output=[get_handoff_tool_call(billing)]),
        handoffs=[billing],
    )

    result = await Runner.run(triage, "invoice?")

    assert result.final_output == "paid"
    assert target_checked == []


@pytest.mark.asyncio
async def test_guardrail_sees_run_context():
    @input_guardrail
    def only_admins(content: str, ctx: RunContextWrapper[dict[str, str]]) -> GuardrailResult:
        return GuardrailResult(passed=ctx.context["role"] == "admin", message="admins only")

    agent = Agent(
        name="test",
        model=FakeModel(initial_output=[get_text_message("welcome")]),
        guardrails=[only_admins],
    )

    result = await Runner.run(agent, "hi", context={"role": "admin"})
    assert result.final_output == "welcome"

    with pytest.raises(InputGuardrailTripwireTriggered):
        await Runner.run(agent, "hi", context={"role": "guest"})
