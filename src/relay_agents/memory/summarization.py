"""History compaction shared by every session backend.

Once a session holds more than `message_threshold` messages (not counting the summary itself),
everything except the last `keep_recent_messages` is folded into a single system message that
starts with `Previous conversation summary:`. Later compactions feed the previous summary back
in, so facts survive repeated rounds.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from pydantic import ConfigDict
from pydantic.dataclasses import dataclass

from ..logger import logger
from ..model_settings import ModelSettings
from ..models.interface import Model, ModelRequest

if TYPE_CHECKING:
    from ..items import TMessage

SUMMARY_PREFIX = "Previous conversation summary:\n"

DEFAULT_SUMMARY_PROMPT = """Summarize the following conversation concisely, preserving all \
important facts, context, and information about the user. Focus on:
- User's identity (name, job, background)
- Key facts mentioned
- Topics discussed
- Important context

Conversation:
{conversation}

Summary (2-3 paragraphs):"""

_FACT_MARKERS = ("I'm", "I am", "My name", "I work", "I live", "I graduated")


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class SummarizationConfig:
    """Settings for summarizing long session histories."""

    enabled: bool = True
    """Whether to summarize at all. When False, only `max_messages` trims the history."""

    message_threshold: int = 10
    """Summarize once more than this many non-summary messages are stored."""

    keep_recent_messages: int = 3
    """How many of the latest messages are kept verbatim."""

    model: Model | None = None
    """The model that writes summaries. Without one, a keyword-based fact extractor is used."""

    summary_prompt: str | None = None
    """Overrides the summary prompt. `{conversation}` is replaced with the transcript."""


def is_summary_message(message: TMessage) -> bool:
    content = message.get("content")
    return (
        message.get("role") == "system"
        and isinstance(content, str)
        and content.startswith("Previous conversation summary")
    )


def _render(messages: list[TMessage]) -> str:
    lines = []
    for message in messages:
        content = message.get("content")
        text = content if isinstance(content, str) else json.dumps(content, default=str)
        lines.append(f"{message.get('role')}: {text}")
    return "\n\n".join(lines)


def _extract_facts(messages: list[TMessage], previous_summary: str | None) -> str:
    facts = [
        content
        for content in (message.get("content") for message in messages)
        if isinstance(content, str) and any(marker in content for marker in _FACT_MARKERS)
    ]
    if previous_summary:
        return f"{previous_summary}\n\nAdditional context: {'. '.join(facts[:5])}"
    return ". ".join(facts[:10])


async def generate_summary(
    messages: list[TMessage],
    config: SummarizationConfig,
    previous_summary: str | None = None,
) -> str:
    if config.model is None:
        return _extract_facts(messages, previous_summary)

    template = config.summary_prompt or DEFAULT_SUMMARY_PROMPT
    prompt = template.replace("{conversation}", _render(messages))
    if previous_summary:
        prompt = f"Previous summary:\n{previous_summary}\n\n{prompt}"

    response = await config.model.get_response(
        ModelRequest(
            system_instructions=None,
            messages=[{"role": "user", "content": prompt}],
            tools={},
            model_settings=ModelSettings(max_tokens=500),
            max_steps=1,
        )
    )
    return response.text


def _window(messages: list[TMessage], max_messages: int | None) -> list[TMessage]:
    if max_messages and len(messages) > max_messages:
        return messages[-max_messages:]
    return messages


async def compact_messages(
    messages: list[TMessage],
    summarization: SummarizationConfig | None = None,
    max_messages: int | None = None,
    *,
    label: str = "session",
) -> list[TMessage]:
    """Returns the history a session should store after an append.

    Summarization failures never propagate; the `max_messages` window is applied instead.
    """
    if summarization is None or not summarization.enabled:
        return _window(messages, max_messages)

    non_summary = [m for m in messages if not is_summary_message(m)]
    if len(non_summary) <= summarization.message_threshold:
        return messages

    previous_summary: str | None = None
    for message in messages:
        if is_summary_message(message):
            previous_summary = str(message["content"]).removeprefix(SUMMARY_PREFIX)
            break

    keep = max(summarization.keep_recent_messages, 0)
    split = len(non_summary) - keep
    to_summarize, recent = non_summary[:split], non_summary[split:]

    try:
        summary = await generate_summary(to_summarize, summarization, previous_summary)
    except Exception as e:
        logger.warning(f"[{label}] Summarization failed, falling back to a sliding window: {e}")
        return _window(messages, max_messages)

    logger.debug(f"[{label}] Summarized {len(to_summarize)} messages ({len(summary)} chars)")
    return [{"role": "system", "content": f"{SUMMARY_PREFIX}{summary}"}, *recent]
