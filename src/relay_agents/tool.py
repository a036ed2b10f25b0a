from __future__ import annotations

import inspect
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Union, get_origin, get_type_hints, overload

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model
from typing_extensions import Concatenate, ParamSpec

from .exceptions import ModelBehaviorError, UserError
from .run_context import RunContextWrapper
from .tool_context import ToolContext
from .util._transforms import transform_string_function_style

ToolParams = ParamSpec("ToolParams")

ToolFunctionWithoutContext = Callable[ToolParams, Any]
ToolFunctionWithContext = Callable[Concatenate[RunContextWrapper[Any], ToolParams], Any]

ToolFunction = Union[ToolFunctionWithoutContext[ToolParams], ToolFunctionWithContext[ToolParams]]


@dataclass
class FunctionTool:
    """A tool that wraps a function. In most cases, you should use the `function_tool` helpers to
    create a FunctionTool, as they let you easily wrap a Python function.
    """

    name: str
    """The name of the tool, as shown to the LLM. Generally the name of the function."""

    description: str
    """A description of the tool, as shown to the LLM."""

    params_json_schema: dict[str, Any]
    """The JSON schema for the tool's parameters."""

    on_invoke_tool: Callable[[ToolContext[Any], dict[str, Any]], Awaitable[Any]]
    """A function that invokes the tool with the given context and parameters. The params passed
    are:
    1. The tool run context.
    2. The arguments from the LLM, already decoded from JSON.

    The return value is sent back to the LLM as the tool result. Exceptions raised here fail the
    run with `ToolExecutionFailed`.
    """

    needs_approval: bool = False
    """Whether a human must approve each call before the tool runs."""

    is_handoff: bool = False
    """Whether this is a delegate tool generated for a handoff target."""


def _takes_context(func: Callable[..., Any], type_hints: dict[str, Any]) -> bool:
    params = list(inspect.signature(func).parameters.values())
    if not params:
        return False
    annotation = type_hints.get(params[0].name)
    annotation = get_origin(annotation) or annotation
    return inspect.isclass(annotation) and issubclass(annotation, RunContextWrapper)


def _build_args_model(
    name: str, func: Callable[..., Any], type_hints: dict[str, Any], skip_first: bool
) -> type[BaseModel]:
    params = list(inspect.signature(func).parameters.values())
    if skip_first:
        params = params[1:]

    fields: dict[str, Any] = {}
    for param in params:
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            raise UserError(f"Tool {name!r} cannot take *args or **kwargs")
        annotation = type_hints.get(param.name, Any)
        default = ... if param.default is param.empty else param.default
        fields[param.name] = (annotation, Field(default=default))

    return create_model(
        f"{name}_args",
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )


def _describe(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func)
    if not doc:
        return ""
    return doc.split("\n\n", 1)[0].strip()


def _to_function_tool(
    func: ToolFunction[...],
    name_override: str | None,
    description_override: str | None,
    needs_approval: bool,
) -> FunctionTool:
    tool_name = name_override or transform_string_function_style(func.__name__)
    type_hints = get_type_hints(func)
    takes_context = _takes_context(func, type_hints)
    args_model = _build_args_model(tool_name, func, type_hints, skip_first=takes_context)

    schema = args_model.model_json_schema()
    schema.pop("title", None)

    async def _on_invoke_tool(ctx: ToolContext[Any], args: dict[str, Any]) -> Any:
        try:
            parsed = args_model.model_validate(args or {})
        except ValidationError as e:
            raise ModelBehaviorError(f"Invalid arguments for tool {tool_name}: {e}") from e

        kwargs = {field: getattr(parsed, field) for field in args_model.model_fields}
        if takes_context:
            result = func(ctx, **kwargs)
        else:
            result = func(**kwargs)

        if inspect.isawaitable(result):
            return await result
        return result

    return FunctionTool(
        name=tool_name,
        description=description_override or _describe(func),
        params_json_schema=schema,
        on_invoke_tool=_on_invoke_tool,
        needs_approval=needs_approval,
    )


@overload
def function_tool(
    func: ToolFunction[...],
    *,
    name_override: str | None = None,
    description_override: str | None = None,
    needs_approval: bool = False,
) -> FunctionTool:
    """Overload for usage as @function_tool (no parentheses)."""
    ...


@overload
def function_tool(
    *,
    name_override: str | None = None,
    description_override: str | None = None,
    needs_approval: bool = False,
) -> Callable[[ToolFunction[...]], FunctionTool]:
    """Overload for usage as @function_tool(...)."""
    ...


def function_tool(
    func: ToolFunction[...] | None = None,
    *,
    name_override: str | None = None,
    description_override: str | None = None,
    needs_approval: bool = False,
) -> FunctionTool | Callable[[ToolFunction[...]], FunctionTool]:
    """
    Decorator to create a FunctionTool from a function. By default, we will:
    1. Parse the function signature to create a JSON schema for the tool's parameters.
    2. Use the first paragraph of the function's docstring as the tool's description.

    If the function takes a `RunContextWrapper` (or `ToolContext`) as the first argument, it
    *must* match the context type of the agent that uses the tool.

    Args:
        func: The function to wrap.
        name_override: If provided, use this name for the tool instead of the function's name.
        description_override: If provided, use this description instead of the docstring.
        needs_approval: If True, every call must be approved through the run's approval handler
            before the function runs.
    """

    def _create_function_tool(the_func: ToolFunction[...]) -> FunctionTool:
        return _to_function_tool(the_func, name_override, description_override, needs_approval)

    # If func is actually a callable, we were used as @function_tool with no parentheses
    if callable(func):
        return _create_function_tool(func)

    # Otherwise, we were used as @function_tool(...), so return a decorator
    def decorator(real_func: ToolFunction[...]) -> FunctionTool:
        return _create_function_tool(real_func)

    return decorator
