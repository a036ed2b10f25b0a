"""Ready-made guardrails.

```python
from relay_agents import Agent
from relay_agents.extensions.guardrails import length_guardrail, pii_detection_guardrail

agent = Agent(
    name="support",
    guardrails=[
        pii_detection_guardrail("input"),
        length_guardrail("output", max_length=2000),
    ],
)
```

The content safety, topic relevance, language, sentiment and toxicity guardrails ask a model to
classify the content. Any `Model` works; a small, cheap one is usually enough.
"""

from __future__ import annotations

import json
import math
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Callable, Literal, TypeVar, cast

from pydantic import BaseModel, Field, ValidationError
from typing_extensions import TypeAlias

from ..agent_output import AgentOutputSchema
from ..exceptions import OutputSchemaMismatch
from ..guardrail import Guardrail, GuardrailDirection, GuardrailFunction, GuardrailResult
from ..logger import logger
from ..model_settings import ModelSettings
from ..models.interface import Model, ModelRequest
from ..run_context import RunContextWrapper

Sentiment: TypeAlias = Literal["positive", "negative", "neutral"]
TClassification = TypeVar("TClassification", bound=BaseModel)

PII_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "phone": re.compile(r"\b(\+\d{1,3}[-.]?)?\(?\d{3}\)?[-.]?\d{3}[-.]?\d{4}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "credit_card": re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    "ip_address": re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
}


def pii_detection_guardrail(
    direction: GuardrailDirection,
    *,
    block: bool = True,
    categories: list[str] | None = None,
    name: str = "pii_detection",
) -> Guardrail[Any]:
    """Detects emails, phone numbers, SSNs, credit card numbers and IP addresses.

    With `block=False` content containing PII still passes, with a warning message.
    """

    def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        detected = [
            category
            for category, pattern in PII_PATTERNS.items()
            if (categories is None or category in categories) and pattern.search(content)
        ]
        if not detected:
            return GuardrailResult(passed=True)

        found = ", ".join(detected)
        if block:
            return GuardrailResult(
                passed=False,
                message=f"PII detected: {found}",
                metadata={"detected_categories": detected},
            )
        return GuardrailResult(
            passed=True,
            message=f"Warning: PII detected: {found}",
            metadata={"detected_categories": detected},
        )

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def _measure(content: str, unit: str) -> int:
    if unit == "words":
        return len(content.split())
    if unit == "tokens":
        # Roughly four characters per token.
        return math.ceil(len(content) / 4)
    return len(content)


def length_guardrail(
    direction: GuardrailDirection,
    *,
    min_length: int | None = None,
    max_length: int | None = None,
    unit: Literal["characters", "words", "tokens"] = "characters",
    name: str = "length_check",
) -> Guardrail[Any]:
    """Rejects content shorter than `min_length` or longer than `max_length`."""

    def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        length = _measure(content, unit)
        if min_length is not None and length < min_length:
            return GuardrailResult(
                passed=False, message=f"Content too short: {length} {unit} (min: {min_length})"
            )
        if max_length is not None and length > max_length:
            return GuardrailResult(
                passed=False, message=f"Content too long: {length} {unit} (max: {max_length})"
            )
        return GuardrailResult(passed=True, metadata={"length": length, "unit": unit})

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def format_validation_guardrail(
    direction: GuardrailDirection,
    format: Literal["json", "xml", "markdown"],
    *,
    schema: type[BaseModel] | None = None,
    name: str = "format_validation",
) -> Guardrail[Any]:
    """Checks that content is well-formed JSON (optionally matching a pydantic model), XML, or
    looks like markdown."""

    def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        try:
            if format == "json":
                parsed = json.loads(content)
                if schema is not None:
                    schema.model_validate(parsed)
            elif format == "xml":
                ET.fromstring(content.strip())
            elif format == "markdown":
                if not any(marker in content for marker in ("#", "*", "[", "`")):
                    raise ValueError("Content does not appear to be markdown")
        except (ValueError, ValidationError, ET.ParseError) as e:
            return GuardrailResult(passed=False, message=f"Format validation failed: {e}")
        return GuardrailResult(passed=True)

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


@dataclass
class RateLimitWindow:
    count: int
    reset_at: float


def rate_limit_guardrail(
    *,
    max_requests: int,
    window_seconds: float,
    key_extractor: Callable[[RunContextWrapper[Any]], str],
    storage: dict[str, RateLimitWindow] | None = None,
    name: str = "rate_limit",
) -> Guardrail[Any]:
    """Allows at most `max_requests` runs per key in each fixed window. Always an input
    guardrail. Pass a shared `storage` dict to share limits across guardrail instances."""
    windows: dict[str, RateLimitWindow] = storage if storage is not None else {}

    def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        key = key_extractor(ctx)
        now = time.monotonic()
        window = windows.get(key)
        if window is None or now > window.reset_at:
            window = RateLimitWindow(count=0, reset_at=now + window_seconds)
            windows[key] = window

        window.count += 1
        if window.count > max_requests:
            reset_in = math.ceil(window.reset_at - now)
            return GuardrailResult(
                passed=False,
                message=f"Rate limit exceeded. Try again in {reset_in} seconds.",
                metadata={"count": window.count, "limit": max_requests, "reset_in": reset_in},
            )
        return GuardrailResult(passed=True)

    return Guardrail(guardrail_function=_check, direction="input", name=name)


class ContentSafetyClassification(BaseModel):
    is_safe: bool
    detected_categories: list[str] = Field(default_factory=list)
    confidence: float = 0.0


class TopicRelevanceRating(BaseModel):
    is_relevant: bool
    relevance_score: float
    """0 (unrelated) to 10 (on topic)."""
    matched_topics: list[str] = Field(default_factory=list)
    reasoning: str = ""


class LanguageDetection(BaseModel):
    language: str
    """ISO 639-1 code."""
    confidence: float = 0.0


class SentimentAnalysis(BaseModel):
    sentiment: Sentiment
    confidence: float = 0.0
    reasoning: str = ""


class ToxicityRating(BaseModel):
    toxicity_score: float
    """0 (not toxic) to 10 (extremely toxic)."""
    categories: list[str] = Field(default_factory=list)
    explanation: str = ""


async def _classify(
    model: Model, instructions: str, content: str, output_type: type[TClassification]
) -> TClassification | None:
    """Asks `model` to classify `content` as JSON matching `output_type`. Returns None when the
    answer does not match."""
    schema = AgentOutputSchema(output_type)
    response = await model.get_response(
        ModelRequest(
            system_instructions=instructions,
            messages=[{"role": "user", "content": content}],
            tools={},
            model_settings=ModelSettings(temperature=0.0),
            max_steps=1,
            output_schema=schema,
        )
    )
    try:
        return cast(TClassification, schema.validate_json(response.text))
    except OutputSchemaMismatch as e:
        logger.debug(f"Unusable {output_type.__name__} from the guardrail model: {e.message}")
        return None


def _json_instructions(task: str, output_type: type[BaseModel]) -> str:
    schema = json.dumps(output_type.model_json_schema())
    return f"{task} Respond with a JSON object matching this schema: {schema}"


DEFAULT_SAFETY_CATEGORIES = ["hate speech", "violence", "sexual content", "harassment", "self-harm"]


def content_safety_guardrail(
    direction: GuardrailDirection,
    model: Model,
    *,
    categories: list[str] | None = None,
    name: str = "content_safety",
) -> Guardrail[Any]:
    """Asks `model` whether content falls into any of the unsafe `categories`. Content passes
    when the model's answer is unusable."""
    checked = categories or DEFAULT_SAFETY_CATEGORIES
    instructions = _json_instructions(
        "You are a content moderation system. Analyze the text and determine if it contains any "
        f"of these categories: {', '.join(checked)}.",
        ContentSafetyClassification,
    )

    async def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        result = await _classify(model, instructions, content, ContentSafetyClassification)
        if result is None or result.is_safe:
            return GuardrailResult(passed=True)
        return GuardrailResult(
            passed=False,
            message=f"Content contains: {', '.join(result.detected_categories)}",
            metadata=result.model_dump(),
        )

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def topic_relevance_guardrail(
    direction: GuardrailDirection,
    model: Model,
    allowed_topics: list[str],
    *,
    threshold: float = 5,
    name: str = "topic_relevance",
) -> Guardrail[Any]:
    """Rejects content the model rates below `threshold` (0-10) for relevance to
    `allowed_topics`. An unusable answer fails."""
    instructions = _json_instructions(
        "Analyze if the text is relevant to these topics: "
        f"{', '.join(allowed_topics)}. Rate relevance from 0-10.",
        TopicRelevanceRating,
    )

    async def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        rating = await _classify(model, instructions, content, TopicRelevanceRating)
        if rating is None or not rating.is_relevant or rating.relevance_score < threshold:
            score = rating.relevance_score if rating is not None else 0
            return GuardrailResult(
                passed=False,
                message=f"Content not relevant to allowed topics. Score: {score}",
                metadata=rating.model_dump() if rating is not None else None,
            )
        return GuardrailResult(passed=True, metadata=rating.model_dump())

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def language_guardrail(
    direction: GuardrailDirection,
    model: Model,
    allowed_languages: list[str],
    *,
    name: str = "language_detection",
) -> Guardrail[Any]:
    """Rejects content whose language (an ISO 639-1 code, as detected by the model) is not in
    `allowed_languages`. An unusable answer fails."""
    allowed = [language.lower() for language in allowed_languages]
    instructions = _json_instructions(
        "Detect the language of the text as an ISO 639-1 language code.", LanguageDetection
    )

    async def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        detection = await _classify(model, instructions, content, LanguageDetection)
        if detection is None or detection.language.lower() not in allowed:
            detected = detection.language if detection is not None else None
            return GuardrailResult(
                passed=False,
                message=(
                    f"Language not allowed: {detected}. "
                    f"Allowed: {', '.join(allowed_languages)}"
                ),
                metadata=detection.model_dump() if detection is not None else None,
            )
        return GuardrailResult(passed=True, metadata=detection.model_dump())

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def sentiment_guardrail(
    direction: GuardrailDirection,
    model: Model,
    *,
    blocked_sentiments: list[Sentiment] | None = None,
    allowed_sentiments: list[Sentiment] | None = None,
    name: str = "sentiment_check",
) -> Guardrail[Any]:
    """Rejects content whose sentiment is in `blocked_sentiments`, or not in
    `allowed_sentiments` when that is given."""
    instructions = _json_instructions(
        "Analyze the sentiment of the text as positive, negative, or neutral.", SentimentAnalysis
    )

    async def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        analysis = await _classify(model, instructions, content, SentimentAnalysis)
        if analysis is None:
            return GuardrailResult(passed=True)
        if blocked_sentiments and analysis.sentiment in blocked_sentiments:
            return GuardrailResult(
                passed=False,
                message=f"Sentiment not allowed: {analysis.sentiment}",
                metadata=analysis.model_dump(),
            )
        if allowed_sentiments is not None and analysis.sentiment not in allowed_sentiments:
            return GuardrailResult(
                passed=False,
                message=f"Sentiment not in allowed list: {analysis.sentiment}",
                metadata=analysis.model_dump(),
            )
        return GuardrailResult(passed=True, metadata=analysis.model_dump())

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def toxicity_guardrail(
    direction: GuardrailDirection,
    model: Model,
    *,
    threshold: float = 5,
    name: str = "toxicity_check",
) -> Guardrail[Any]:
    """Rejects content the model rates above `threshold` on a 0-10 toxicity scale."""
    instructions = _json_instructions(
        "Rate the toxicity of the text on a scale from 0 (not toxic) to 10 (extremely toxic).",
        ToxicityRating,
    )

    async def _check(content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        rating = await _classify(model, instructions, content, ToxicityRating)
        if rating is not None and rating.toxicity_score > threshold:
            return GuardrailResult(
                passed=False,
                message=(
                    f"Content toxicity too high: {rating.toxicity_score} (threshold: {threshold})"
                ),
                metadata=rating.model_dump(),
            )
        return GuardrailResult(
            passed=True, metadata=rating.model_dump() if rating is not None else None
        )

    return Guardrail(guardrail_function=_check, direction=direction, name=name)


def custom_guardrail(
    name: str, direction: GuardrailDirection, validate: GuardrailFunction
) -> Guardrail[Any]:
    """Wraps a `(content, ctx) -> GuardrailResult` function, sync or async."""
    return Guardrail(guardrail_function=validate, direction=direction, name=name)
