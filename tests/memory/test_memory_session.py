from __future__ import annotations

import asyncio
from typing import Any

import pytest

from relay_agents import Agent, Runner
from relay_agents.memory import (
    SUMMARY_PREFIX,
    InMemorySession,
    Session,
    SessionABC,
    SummarizationConfig,
    compact_messages,
)

from ..fake_model import FakeModel, get_text_message


def _conversation(count: int) -> list[Any]:
    return [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_add_and_get_history():
    session = InMemorySession("s1")
    await session.add_messages(_conversation(2))
    await session.add_messages([{"role": "user", "content": "again"}])

    history = await session.get_history()

    assert [m["content"] for m in history] == ["message 0", "message 1", "again"]
    assert isinstance(session, SessionABC)
    assert isinstance(session, Session)


@pytest.mark.asyncio
async def test_history_is_a_copy():
    session = InMemorySession("s1")
    messages = _conversation(1)
    await session.add_messages(messages)

    messages[0]["content"] = "mutated"
    history = await session.get_history()
    history.append({"role": "user", "content": "extra"})

    assert await session.get_history() == [{"role": "user", "content": "message 0"}]


@pytest.mark.asyncio
async def test_interleaved_single_and_batch_writes_keep_order():
    session = InMemorySession("s1")
    conversation = _conversation(7)

    await session.add_messages(conversation[:1])
    await session.add_messages(conversation[1:4])
    await session.add_messages(conversation[4:5])
    await session.add_messages([])
    await session.add_messages(conversation[5:])

    assert await session.get_history() == conversation


@pytest.mark.asyncio
async def test_concurrent_writes_keep_call_order():
    session = InMemorySession("s1")
    conversation = _conversation(6)

    await asyncio.gather(
        session.add_messages(conversation[:2]),
        session.add_messages(conversation[2:3]),
        session.add_messages(conversation[3:6]),
    )

    assert [m["content"] for m in await session.get_history()] == [
        f"message {i}" for i in range(6)
    ]


@pytest.mark.asyncio
async def test_max_messages_window():
    session = InMemorySession("s1", max_messages=3)
    await session.add_messages(_conversation(5))

    assert [m["content"] for m in await session.get_history()] == [
        "message 2",
        "message 3",
        "message 4",
    ]


@pytest.mark.asyncio
async def test_metadata_merge_and_clear():
    session = InMemorySession("s1")
    assert await session.get_metadata() == {}

    await session.update_metadata({"user": "ada", "plan": "free"})
    await session.update_metadata({"plan": "pro"})
    assert await session.get_metadata() == {"user": "ada", "plan": "pro"}

    await session.add_messages(_conversation(2))
    await session.clear()
    assert await session.get_history() == []
    assert await session.get_metadata() == {}


@pytest.mark.asyncio
async def test_below_threshold_is_not_summarized():
    config = SummarizationConfig(message_threshold=4, keep_recent_messages=2)
    messages = _conversation(4)

    assert await compact_messages(messages, config) == messages


@pytest.mark.asyncio
async def test_summarizes_with_model():
    model = FakeModel(initial_output=[get_text_message("Ada is a pilot.")])
    config = SummarizationConfig(message_threshold=4, keep_recent_messages=2, model=model)
    messages = _conversation(6)

    compacted = await compact_messages(messages, config)

    assert compacted == [
        {"role": "system", "content": f"{SUMMARY_PREFIX}Ada is a pilot."},
        *messages[-2:],
    ]
    assert model.last_request is not None
    prompt = model.last_request.messages[0]["content"]
    assert isinstance(prompt, str)
    assert "user: message 0" in prompt
    assert "message 4" not in prompt
    assert model.last_request.model_settings.max_tokens == 500


@pytest.mark.asyncio
async def test_second_summary_includes_previous_one():
    model = FakeModel()
    model.add_multiple_turn_outputs(
        [[get_text_message("first summary")], [get_text_message("second summary")]]
    )
    config = SummarizationConfig(message_threshold=3, keep_recent_messages=1, model=model)

    compacted = await compact_messages(_conversation(4), config)
    compacted = await compact_messages([*compacted, *_conversation(3)], config)

    assert compacted[0] == {"role": "system", "content": f"{SUMMARY_PREFIX}second summary"}
    assert len(compacted) == 2
    prompt = model.requests[1].messages[0]["content"]
    assert isinstance(prompt, str)
    assert prompt.startswith("Previous summary:\nfirst summary")
    # The old summary message is not summarized as a message of its own.
    assert "system:" not in prompt


@pytest.mark.asyncio
async def test_custom_summary_prompt():
    model = FakeModel(initial_output=[get_text_message("short")])
    config = SummarizationConfig(
        message_threshold=1,
        keep_recent_messages=0,
        model=model,
        summary_prompt="TL;DR this:\n{conversation}",
    )

    compacted = await compact_messages(_conversation(2), config)

    assert compacted == [{"role": "system", "content": f"{SUMMARY_PREFIX}short"}]
    assert model.last_request is not None
    assert model.last_request.messages[0]["content"] == (
        "TL;DR this:\nuser: message 0\n\nassistant: message 1"
    )


@pytest.mark.asyncio
async def test_fact_extraction_without_model():
    config = SummarizationConfig(message_threshold=2, keep_recent_messages=1)
    messages: list[Any] = [
        {"role": "user", "content": "My name is Ada"},
        {"role": "assistant", "content": "Nice to meet you"},
        {"role": "user", "content": "I work at the airport"},
        {"role": "assistant", "content": "Cool"},
    ]

    compacted = await compact_messages(messages, config)

    assert compacted[0]["content"] == f"{SUMMARY_PREFIX}My name is Ada. I work at the airport"
    assert compacted[1:] == messages[-1:]


@pytest.mark.asyncio
async def test_summary_failure_falls_back_to_window():
    model = FakeModel(initial_output=RuntimeError("summary model down"))
    config = SummarizationConfig(message_threshold=2, keep_recent_messages=1, model=model)

    compacted = await compact_messages(_conversation(6), config, max_messages=4)

    assert [m["content"] for m in compacted] == [f"message {i}" for i in range(2, 6)]


@pytest.mark.asyncio
async def test_disabled_summarization_only_windows():
    model = FakeModel(initial_output=[get_text_message("unused")])
    config = SummarizationConfig(enabled=False, message_threshold=1, model=model)

    compacted = await compact_messages(_conversation(5), config, max_messages=2)

    assert len(compacted) == 2
    assert model.requests == []


@pytest.mark.asyncio
async def test_session_summarizes_on_append():
    summarizer = FakeModel(initial_output=[get_text_message("User is Ada.")])
    session = InMemorySession(
        "s1",
        summarization=SummarizationConfig(
            message_threshold=4, keep_recent_messages=2, model=summarizer
        ),
    )

    await session.add_messages(_conversation(4))
    assert len(await session.get_history()) == 4

    await session.add_messages(_conversation(2))
    history = await session.get_history()

    assert history[0] == {"role": "system", "content": f"{SUMMARY_PREFIX}User is Ada."}
    assert len(history) == 3


@pytest.mark.asyncio
async def test_summary_is_sent_to_the_agent():
    summarizer = FakeModel(initial_output=[get_text_message("User's name is Ada.")])
    session = InMemorySession(
        "s1",
        summarization=SummarizationConfig(
            message_threshold=2, keep_recent_messages=1, model=summarizer
        ),
    )
    await session.add_messages(_conversation(3))

    model = FakeModel(initial_output=[get_text_message("You are Ada.")])
    agent = Agent(name="test", model=model)
    await Runner.run(agent, "Who am I?", session=session)

    assert model.last_request is not None
    assert model.last_request.messages[0] == {
        "role": "system",
        "content": f"{SUMMARY_PREFIX}User's name is Ada.",
    }
