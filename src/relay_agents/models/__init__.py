from ._openai_shared import (
    get_default_openai_client,
    get_default_openai_key,
    set_default_openai_client,
    set_default_openai_key,
)
from .interface import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelRetrySettings,
    ModelStreamEvent,
    ModelTracing,
    ResponseCompletedStreamEvent,
    TextDeltaStreamEvent,
    ToolCallStreamEvent,
    ToolResultStreamEvent,
)
from .openai_chatcompletions import OpenAIChatCompletionsModel

__all__ = [
    "Model",
    "ModelRequest",
    "ModelResponse",
    "ModelRetrySettings",
    "ModelStreamEvent",
    "ModelTracing",
    "OpenAIChatCompletionsModel",
    "ResponseCompletedStreamEvent",
    "TextDeltaStreamEvent",
    "ToolCallStreamEvent",
    "ToolResultStreamEvent",
    "get_default_openai_client",
    "get_default_openai_key",
    "set_default_openai_client",
    "set_default_openai_key",
]
