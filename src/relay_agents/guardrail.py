from __future__ import annotations

import inspect
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Literal, overload

from typing_extensions import TypeVar

from .exceptions import (
    GuardrailFailed,
    InputGuardrailTripwireTriggered,
    OutputGuardrailTripwireTriggered,
    UserError,
)
from .items import ItemHelpers, TMessage
from .logger import logger
from .run_context import RunContextWrapper
from .tracing import SpanError, guardrail_span
from .util import _error_tracing
from .util._types import MaybeAwaitable

if TYPE_CHECKING:
    from .agent import Agent

GuardrailDirection = Literal["input", "output"]


@dataclass
class GuardrailResult:
    """The output of a guardrail function."""

    passed: bool
    """Whether the content is acceptable. A failed guardrail ends the run."""

    message: str | None = None
    """Why the content was rejected, or a warning for content that passed."""

    metadata: dict[str, Any] | None = None
    """
    Optional data about checks performed. For example, the guardrail could include
    information about the checks it performed and granular results.
    """


TContext_co = TypeVar("TContext_co", bound=Any, covariant=True)

GuardrailFunction = Callable[[str, RunContextWrapper[Any]], MaybeAwaitable[GuardrailResult]]


@dataclass
class Guardrail(Generic[TContext_co]):
    """A check on the user's latest message (input direction) or on the candidate final answer
    (output direction). Guardrails never change the content they look at.
    """

    guardrail_function: GuardrailFunction
    """
    A function that receives the text to check and the run context, and returns a
    `GuardrailResult`. Can be sync or async.
    """

    direction: GuardrailDirection = "input"
    """Whether the guardrail checks user input or the final output."""

    name: str | None = None
    """
    Optional name for the guardrail. If not provided, uses the function name.
    """

    def get_name(self) -> str:
        if self.name:
            return self.name

        return self.guardrail_function.__name__

    async def validate(self, content: str, ctx: RunContextWrapper[Any]) -> GuardrailResult:
        if not callable(self.guardrail_function):
            raise UserError(f"Guardrail function must be callable, got {self.guardrail_function}")

        output = self.guardrail_function(content, ctx)
        if inspect.isawaitable(output):
            output = await output
        if not isinstance(output, GuardrailResult):
            raise UserError(
                f"Guardrail {self.get_name()} must return a GuardrailResult, got {type(output)}"
            )
        return output


async def _run_guardrails(
    guardrails: Sequence[Guardrail[Any]],
    content: str,
    ctx: RunContextWrapper[Any],
    direction: GuardrailDirection,
) -> list[GuardrailResult]:
    results: list[GuardrailResult] = []
    for guardrail in guardrails:
        name = guardrail.get_name()
        with guardrail_span(name, direction=direction) as span:
            result = await guardrail.validate(content, ctx)
            span.span_data.triggered = not result.passed
            if not result.passed:
                _error_tracing.attach_error_to_span(
                    span,
                    SpanError(
                        message="Guardrail tripwire triggered",
                        data={"guardrail": name, "message": result.message},
                    ),
                )
                logger.debug(f"{direction.capitalize()} guardrail {name} failed: {result.message}")
                error: GuardrailFailed
                if direction == "input":
                    error = InputGuardrailTripwireTriggered(name, result.message)
                else:
                    error = OutputGuardrailTripwireTriggered(name, result.message)
                raise error

            if result.message:
                logger.debug(f"{direction.capitalize()} guardrail {name}: {result.message}")
            results.append(result)
    return results


async def run_input_guardrails(
    agent: Agent[Any],
    messages: list[TMessage],
    ctx: RunContextWrapper[Any],
    extra: Sequence[Guardrail[Any]] = (),
) -> list[GuardrailResult]:
    """Runs the agent's input guardrails (then `extra`) in order on the latest user message.

    Raises:
        InputGuardrailTripwireTriggered: For the first guardrail that fails. Later guardrails
            are not run.
    """
    guardrails = [g for g in agent.guardrails if g.direction == "input"]
    guardrails.extend(g for g in extra if g.direction == "input")
    if not guardrails:
        return []

    content = ItemHelpers.last_user_text(messages)
    if content is None:
        return []
    return await _run_guardrails(guardrails, content, ctx, "input")


async def run_output_guardrails(
    agent: Agent[Any],
    output: str,
    ctx: RunContextWrapper[Any],
    extra: Sequence[Guardrail[Any]] = (),
) -> list[GuardrailResult]:
    """Runs the agent's output guardrails (then `extra`) in order on the candidate final answer.

    Raises:
        OutputGuardrailTripwireTriggered: For the first guardrail that fails.
    """
    guardrails = [g for g in agent.guardrails if g.direction == "output"]
    guardrails.extend(g for g in extra if g.direction == "output")
    if not guardrails:
        return []
    return await _run_guardrails(guardrails, output, ctx, "output")


# Decorators
_GuardrailFuncSync = Callable[[str, RunContextWrapper[Any]], GuardrailResult]
_GuardrailFuncAsync = Callable[[str, RunContextWrapper[Any]], Awaitable[GuardrailResult]]


@overload
def input_guardrail(func: _GuardrailFuncSync) -> Guardrail[Any]: ...


@overload
def input_guardrail(func: _GuardrailFuncAsync) -> Guardrail[Any]: ...


@overload
def input_guardrail(
    *, name: str | None = None
) -> Callable[[_GuardrailFuncSync | _GuardrailFuncAsync], Guardrail[Any]]: ...


def input_guardrail(
    func: _GuardrailFuncSync | _GuardrailFuncAsync | None = None,
    *,
    name: str | None = None,
) -> Guardrail[Any] | Callable[[_GuardrailFuncSync | _GuardrailFuncAsync], Guardrail[Any]]:
    """Decorator to create an input Guardrail from a function."""

    def decorator(f: _GuardrailFuncSync | _GuardrailFuncAsync) -> Guardrail[Any]:
        return Guardrail(guardrail_function=f, direction="input", name=name or f.__name__)

    if func is not None:
        return decorator(func)
    return decorator


@overload
def output_guardrail(func: _GuardrailFuncSync) -> Guardrail[Any]: ...


@overload
def output_guardrail(func: _GuardrailFuncAsync) -> Guardrail[Any]: ...


@overload
def output_guardrail(
    *, name: str | None = None
) -> Callable[[_GuardrailFuncSync | _GuardrailFuncAsync], Guardrail[Any]]: ...


def output_guardrail(
    func: _GuardrailFuncSync | _GuardrailFuncAsync | None = None,
    *,
    name: str | None = None,
) -> Guardrail[Any] | Callable[[_GuardrailFuncSync | _GuardrailFuncAsync], Guardrail[Any]]:
    """Decorator to create an output Guardrail from a function."""

    def decorator(f: _GuardrailFuncSync | _GuardrailFuncAsync) -> Guardrail[Any]:
        return Guardrail(guardrail_function=f, direction="output", name=name or f.__name__)

    if func is not None:
        return decorator(func)
    return decorator
