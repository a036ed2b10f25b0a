from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from relay_agents import (
    Agent,
    GuardrailResult,
    InputGuardrailTripwireTriggered,
    MaxTurnsExceeded,
    RunConfig,
    RunContextWrapper,
    Runner,
    StepFinishEvent,
    ToolExecutionFailed,
    function_tool,
    input_guardrail,
    output_guardrail,
)
from relay_agents.tracing import (
    FileTraceExporter,
    custom_span,
    get_current_trace,
    get_trace_provider,
    set_trace_processors,
    set_tracing_disabled,
    trace,
)

from .fake_model import FakeModel, get_function_tool_call, get_handoff_tool_call, get_text_message
from .testing_processor import (
    SPAN_PROCESSOR_TESTING,
    assert_no_traces,
    fetch_events,
    fetch_normalized_spans,
    fetch_traces,
    spans_of_type,
)


@function_tool
def add(a: int, b: int) -> int:
    return a + b


def _shape(nodes: list[dict[str, Any]]) -> list[Any]:
    """Span types only, nested the same way."""
    return [
        (node["type"], _shape(node["children"])) if "children" in node else node["type"]
        for node in nodes
    ]


@pytest.mark.asyncio
async def test_run_produces_span_tree():
    model = FakeModel(
        initial_output=[get_function_tool_call("add", {"a": 1, "b": 2}), get_text_message("3")]
    )
    agent = Agent(name="calc", model=model, tools=[add])

    await Runner.run(agent, "1 + 2", run_config=RunConfig(workflow_name="math"))

    (trace_tree,) = fetch_normalized_spans()
    assert trace_tree["workflow_name"] == "math"
    assert _shape(trace_tree["children"]) == [("agent", [("generation", ["function"])])]

    agent_node = trace_tree["children"][0]
    assert agent_node["data"]["name"] == "calc"
    assert agent_node["data"]["tools"] == ["add"]
    assert agent_node["data"]["output_type"] == "str"
    assert agent_node["data"]["step_count"] == 1
    assert agent_node["data"]["tool_call_count"] == 1
    assert agent_node["data"]["usage"] == {
        "input_tokens": 20,
        "output_tokens": 10,
        "total_tokens": 30,
    }
    assert agent_node["data"]["output"] == "3"

    generation = agent_node["children"][0]
    assert generation["data"]["model"] == "fake-model"
    assert generation["data"]["input"] == [{"role": "user", "content": "1 + 2"}]
    assert generation["data"]["usage"]["requests"] == 2

    function = generation["children"][0]
    assert function["data"] == {"name": "add", "input": '{"a": 1, "b": 2}', "output": "3"}

    assert fetch_events()[0] == "trace_start"
    assert fetch_events()[-1] == "trace_end"


@pytest.mark.asyncio
async def test_handoff_spans():
    billing = Agent(name="billing", model=FakeModel(initial_output=[get_text_message("paid")]))
    triage = Agent(
        name="triage",
        model=FakeModel(initial_output=[get_handoff_tool_call(billing, "invoice")]),
        handoffs=[billing],
    )

    await Runner.run(triage, "invoice?")

    (trace_tree,) = fetch_normalized_spans()
    assert _shape(trace_tree["children"]) == [
        ("agent", [("generation", ["function"]), "handoff"]),
        ("agent", ["generation"]),
    ]
    triage_node, billing_node = trace_tree["children"]
    assert triage_node["data"]["handoffs"] == ["billing"]
    assert triage_node["data"]["handoff_to"] == "billing"
    assert triage_node["data"]["step_count"] == 0
    assert triage_node["children"][1]["data"] == {
        "from_agent": "triage",
        "to_agent": "billing",
        "reason": "invoice",
    }
    assert billing_node["data"]["handoff_to"] is None
    assert billing_node["data"]["step_count"] == 1


@pytest.mark.asyncio
async def test_agent_span_per_activation():
    model = FakeModel()
    billing = Agent(name="billing", model=model)
    triage = Agent(name="triage", model=model, handoffs=[billing])
    # Handoffs resolve by name, so billing can point back at triage after construction.
    billing.handoffs.append(triage)
    billing = billing.clone()
    triage.handoffs[0] = billing
    model.add_multiple_turn_outputs(
        [
            [get_handoff_tool_call(billing)],
            [get_handoff_tool_call(triage)],
            [get_text_message("back at triage")],
        ]
    )

    result = await Runner.run(triage, "loop")

    assert result.metadata.handoff_chain == ["triage", "billing", "triage"]
    assert [span.span_data.name for span in spans_of_type("agent")] == [
        "triage",
        "billing",
        "triage",
    ]
    # Metrics accumulate across activations.
    assert result.metadata.agent_metrics["triage"]["turns"] == 2


@pytest.mark.asyncio
async def test_sensitive_data_excluded():
    model = FakeModel(
        initial_output=[get_function_tool_call("add", {"a": 1, "b": 2}), get_text_message("3")]
    )
    agent = Agent(name="calc", model=model, tools=[add])

    await Runner.run(agent, "1 + 2", run_config=RunConfig(trace_include_sensitive_data=False))

    (generation,) = spans_of_type("generation")
    assert generation.span_data.input is None
    assert generation.span_data.output is None
    assert generation.span_data.usage is not None

    (function,) = spans_of_type("function")
    assert function.span_data.input is None
    assert function.span_data.output is None

    (agent_span,) = spans_of_type("agent")
    assert agent_span.span_data.output is None


def test_sensitive_data_env_default(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RELAY_AGENTS_TRACE_INCLUDE_SENSITIVE_DATA", "false")
    assert RunConfig().trace_include_sensitive_data is False

    monkeypatch.setenv("RELAY_AGENTS_TRACE_INCLUDE_SENSITIVE_DATA", "1")
    assert RunConfig().trace_include_sensitive_data is True


@pytest.mark.asyncio
async def test_tracing_disabled_per_run():
    agent = Agent(name="test", model=FakeModel(initial_output=[get_text_message("hi")]))

    await Runner.run(agent, "hi", run_config=RunConfig(tracing_disabled=True))

    assert_no_traces()


@pytest.mark.asyncio
async def test_tracing_disabled_globally():
    agent = Agent(name="test", model=FakeModel(initial_output=[get_text_message("hi")]))

    set_tracing_disabled(True)
    try:
        await Runner.run(agent, "hi")
    finally:
        set_tracing_disabled(False)

    assert_no_traces()


@pytest.mark.asyncio
async def test_no_processors_means_no_op():
    set_trace_processors([])
    try:
        with trace("nothing") as t:
            assert get_current_trace() is t
            assert t.to_dict() is None
    finally:
        set_trace_processors([SPAN_PROCESSOR_TESTING])

    assert_no_traces()


@pytest.mark.asyncio
async def test_trace_id_group_and_metadata():
    agent = Agent(name="test", model=FakeModel(initial_output=[get_text_message("hi")]))
    config = RunConfig(
        workflow_name="support",
        trace_id="trace_123",
        group_id="thread_9",
        trace_metadata={"tenant": "acme"},
    )

    await Runner.run(agent, "hi", run_config=config)

    (t,) = fetch_traces()
    exported = t.to_dict()
    assert exported is not None
    assert exported["id"] == "trace_123"
    assert exported["workflow_name"] == "support"
    assert exported["group_id"] == "thread_9"
    assert exported["metadata"] == {"tenant": "acme"}


@pytest.mark.asyncio
async def test_runs_inside_an_outer_trace_share_it():
    agent = Agent(name="test", model=FakeModel())
    agent.model.add_multiple_turn_outputs(  # type: ignore[union-attr]
        [[get_text_message("one")], [get_text_message("two")]]
    )

    with trace("conversation"):
        with custom_span("setup", {"step": 1}):
            pass
        await Runner.run(agent, "first")
        await Runner.run(agent, "second")

    (trace_tree,) = fetch_normalized_spans()
    assert trace_tree["workflow_name"] == "conversation"
    assert _shape(trace_tree["children"]) == [
        "custom",
        ("agent", ["generation"]),
        ("agent", ["generation"]),
    ]


@pytest.mark.asyncio
async def test_tool_error_is_recorded_on_spans():
    @function_tool
    def fail() -> str:
        raise ValueError("bad input")

    agent = Agent(
        name="test", model=FakeModel(initial_output=[get_function_tool_call("fail")]), tools=[fail]
    )

    with pytest.raises(ToolExecutionFailed):
        await Runner.run(agent, "go")

    (function,) = spans_of_type("function")
    assert function.error is not None
    assert function.error["message"] == "Error running tool"
    assert function.error["data"] == {"tool_name": "fail", "error": "bad input"}

    (agent_span,) = spans_of_type("agent")
    assert agent_span.error is not None
    assert agent_span.error["data"] == {"error_type": "ToolExecutionFailed"}
    # Every span was closed even though the run failed.
    assert all(span.ended_at is not None for span in SPAN_PROCESSOR_TESTING.get_ordered_spans(True))


@pytest.mark.asyncio
async def test_guardrail_span_nested_in_agent():
    @output_guardrail
    def always_ok(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=True)

    agent = Agent(
        name="test",
        model=FakeModel(initial_output=[get_text_message("fine")]),
        guardrails=[always_ok],
    )

    await Runner.run(agent, "hi")

    (trace_tree,) = fetch_normalized_spans()
    assert _shape(trace_tree["children"]) == [("agent", ["generation", "guardrail"])]
    guardrail = trace_tree["children"][0]["children"][1]
    assert guardrail["data"] == {"name": "always_ok", "direction": "output", "triggered": False}


@pytest.mark.asyncio
async def test_file_exporter_writes_one_file_per_trace(tmp_path: Path):
    exporter = FileTraceExporter(tmp_path / "traces")
    set_trace_processors([SPAN_PROCESSOR_TESTING, exporter])
    try:
        agent = Agent(name="test", model=FakeModel(initial_output=[get_text_message("hi")]))
        await Runner.run(agent, "hi", run_config=RunConfig(trace_id="trace_file_1"))
    finally:
        set_trace_processors([SPAN_PROCESSOR_TESTING])

    written = tmp_path / "traces" / "trace_file_1.json"
    data = json.loads(written.read_text())
    assert data["object"] == "trace"
    assert data["workflow_name"] == "Agent workflow"
    assert [span["span_data"]["type"] for span in data["spans"]] == ["generation", "agent"]
    assert all(span["trace_id"] == "trace_file_1" for span in data["spans"])


def test_broken_processor_does_not_fail_tracing():
    class Broken(type(SPAN_PROCESSOR_TESTING)):  # type: ignore[misc]
        def on_trace_start(self, trace):
            raise RuntimeError("sink down")

    set_trace_processors([Broken(), SPAN_PROCESSOR_TESTING])
    try:
        with trace("resilient"):
            pass
    finally:
        set_trace_processors([SPAN_PROCESSOR_TESTING])

    assert [t.name for t in fetch_traces()] == ["resilient"]


def test_shutdown_flushes_processors():
    flushed: list[str] = []

    class Flushing(type(SPAN_PROCESSOR_TESTING)):  # type: ignore[misc]
        def shutdown(self) -> None:
            flushed.append("shutdown")

    set_trace_processors([Flushing()])
    try:
        get_trace_provider().shutdown()
    finally:
        set_trace_processors([SPAN_PROCESSOR_TESTING])

    assert flushed == ["shutdown"]


def _assert_spans_balanced() -> None:
    events = fetch_events()
    assert events.count("span_start") > 0
    assert events.count("span_start") == events.count("span_end")
    assert events.count("trace_start") == events.count("trace_end")


@pytest.mark.asyncio
async def test_spans_balanced_when_input_guardrail_fails():
    @input_guardrail
    def block(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        return GuardrailResult(passed=False, message="no")

    agent = Agent(
        name="test",
        model=FakeModel(initial_output=[get_text_message("never")]),
        guardrails=[block],
    )

    with pytest.raises(InputGuardrailTripwireTriggered):
        await Runner.run(agent, "hi")

    _assert_spans_balanced()


@pytest.mark.asyncio
async def test_spans_balanced_when_max_turns_exceeded():
    model = FakeModel()
    model.add_multiple_turn_outputs(
        [[get_function_tool_call("add", {"a": 1, "b": 1})] for _ in range(3)]
    )
    agent = Agent(name="calc", model=model, tools=[add])

    with pytest.raises(MaxTurnsExceeded):
        await Runner.run(agent, "keep adding", max_turns=2)

    _assert_spans_balanced()


@pytest.mark.asyncio
async def test_spans_balanced_when_tool_fails():
    @function_tool
    def fail() -> str:
        raise ValueError("bad input")

    agent = Agent(
        name="test", model=FakeModel(initial_output=[get_function_tool_call("fail")]), tools=[fail]
    )

    with pytest.raises(ToolExecutionFailed):
        await Runner.run(agent, "go")

    _assert_spans_balanced()


@pytest.mark.asyncio
async def test_spans_balanced_when_stream_is_cancelled():
    model = FakeModel(delay=0.05)
    model.add_multiple_turn_outputs(
        [
            [get_function_tool_call("add", {"a": 1, "b": 2})],
            [get_function_tool_call("add", {"a": 3, "b": 4})],
            [get_text_message("never reached")],
        ]
    )
    agent = Agent(name="calc", model=model, tools=[add], max_steps=1)

    result = Runner.run_streamed(agent, "add twice")
    async for event in result.stream_events():
        if isinstance(event, StepFinishEvent):
            result.cancel()

    await result.completed
    # Let the cancelled run unwind its spans.
    await asyncio.sleep(0.2)
    _assert_spans_balanced()
