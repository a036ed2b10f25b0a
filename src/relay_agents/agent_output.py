from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, TypeAdapter

from .exceptions import ModelBehaviorError, OutputSchemaMismatch
from .util import _json


@dataclass(init=False)
class AgentOutputSchema:
    """An object that captures the JSON schema of the output, as well as validating/parsing JSON
    produced by the LLM into the output type.
    """

    output_type: type[Any]
    """The type of the output."""

    _type_adapter: TypeAdapter[Any]
    _is_plain_text: bool

    def __init__(self, output_type: type[Any] | None):
        self.output_type = output_type if output_type is not None else str
        self._is_plain_text = self.output_type is str
        self._type_adapter = TypeAdapter(self.output_type)

    def is_plain_text(self) -> bool:
        """Whether the output type is plain text (versus a JSON object)."""
        return self._is_plain_text

    def name(self) -> str:
        """The name of the output type."""
        return getattr(self.output_type, "__name__", repr(self.output_type))

    def json_schema(self) -> dict[str, Any]:
        """Returns the JSON schema of the output. Only valid for structured outputs."""
        return self._type_adapter.json_schema()

    def is_object_schema(self) -> bool:
        return isinstance(self.output_type, type) and issubclass(self.output_type, BaseModel)

    def validate_json(self, json_str: str) -> Any:
        """Validate a final answer against the output type.

        Raises:
            OutputSchemaMismatch: If the text is not valid JSON for the output type.
        """
        if self._is_plain_text:
            return json_str
        try:
            return _json.validate_json(json_str, self._type_adapter, partial=False)
        except ModelBehaviorError as e:
            raise OutputSchemaMismatch(
                f"Final output does not match {self.name()}: {e.message}", json_str
            ) from e
