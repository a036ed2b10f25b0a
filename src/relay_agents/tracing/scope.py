# Holds the current active span
import contextvars
from typing import TYPE_CHECKING, Any

from ..logger import logger

if TYPE_CHECKING:
    from .spans import Span
    from .traces import Trace

_current_span: contextvars.ContextVar["Span[Any] | None"] = contextvars.ContextVar(
    "current_span", default=None
)

_current_trace: contextvars.ContextVar["Trace | None"] = contextvars.ContextVar(
    "current_trace", default=None
)


class Scope:
    """
    Manages the current span and trace in the context.
    """

    @classmethod
    def get_current_span(cls) -> "Span[Any] | None":
        return _current_span.get()

    @classmethod
    def set_current_span(cls, span: "Span[Any] | None") -> "contextvars.Token[Span[Any] | None]":
        return _current_span.set(span)

    @classmethod
    def reset_current_span(
        cls,
        token: "contextvars.Token[Span[Any] | None]",
        prev_span: "Span[Any] | None" = None,
    ) -> None:
        try:
            _current_span.reset(token)
        except ValueError:
            # The token belongs to another Context, e.g. a span opened in a race branch task
            # and finished after the task was cancelled.
            logger.debug("Span context token from another context, setting previous span")
            _current_span.set(prev_span)

    @classmethod
    def get_current_trace(cls) -> "Trace | None":
        return _current_trace.get()

    @classmethod
    def set_current_trace(cls, trace: "Trace | None") -> "contextvars.Token[Trace | None]":
        logger.debug(f"Setting current trace: {trace.trace_id if trace else None}")
        return _current_trace.set(trace)

    @classmethod
    def reset_current_trace(
        cls,
        token: "contextvars.Token[Trace | None]",
        prev_trace: "Trace | None" = None,
    ) -> None:
        logger.debug("Resetting current trace")
        try:
            _current_trace.reset(token)
        except ValueError:
            logger.debug("Trace context token from another context, setting previous trace")
            _current_trace.set(prev_trace)
