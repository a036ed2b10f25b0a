from __future__ import annotations

import re
from typing import Literal

from pydantic import TypeAdapter, ValidationError
from typing_extensions import TypeVar

from ..exceptions import ModelBehaviorError
from ..tracing import SpanError
from ._error_tracing import attach_error_to_current_span

T = TypeVar("T")

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def validate_json(json_str: str, type_adapter: TypeAdapter[T], partial: bool) -> T:
    """Validates `json_str` against `type_adapter`. Models often wrap JSON in a markdown code
    block, so a fenced block is tried when the raw text does not validate."""
    partial_setting: bool | Literal["off", "on", "trailing-strings"] = (
        "trailing-strings" if partial else False
    )
    try:
        return type_adapter.validate_json(json_str, experimental_allow_partial=partial_setting)
    except ValidationError as e:
        block = _CODE_BLOCK_RE.search(json_str)
        if block:
            try:
                return type_adapter.validate_json(
                    block.group(1).strip(), experimental_allow_partial=partial_setting
                )
            except ValidationError:
                pass

        attach_error_to_current_span(
            SpanError(
                message="Invalid JSON provided",
                data={},
            )
        )
        raise ModelBehaviorError(
            f"Invalid JSON when parsing {json_str} for {type_adapter}; {e}"
        ) from e
