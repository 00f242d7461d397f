"""Span decorators for model calls and capability calls.

The decorated coroutine runs inside a new span of the active tracer, or
untraced when no tracer is active.
"""

import functools
import inspect
from typing import Any, Callable, TypeVar

from agentloop.tracer.context import get_active_tracer
from agentloop.tracer.span import SpanKind

F = TypeVar("F", bound=Callable[..., Any])


def _traced(kind: SpanKind, label: Callable[[inspect.BoundArguments], str]) -> Callable[[F], F]:
    def decorator(fn: F) -> F:
        sig = inspect.signature(fn)

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_active_tracer()
            if tracer is None:
                return await fn(*args, **kwargs)
            async with tracer.span(kind, label(sig.bind_partial(*args, **kwargs))):
                return await fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def trace_tool(name: str | None = None, *, name_kwarg: str = "tool_name") -> Callable[[F], F]:
    """Open a ``TOOL_CALL`` span around a capability invocation.

    The span is labelled *name*, else the value of the *name_kwarg* argument,
    else the function's name.
    """
    def label_of(fn_name: str) -> Callable[[inspect.BoundArguments], str]:
        def label(bound: inspect.BoundArguments) -> str:
            return name or str(bound.arguments.get(name_kwarg) or fn_name)
        return label

    def decorator(fn: F) -> F:
        return _traced(SpanKind.TOOL_CALL, label_of(fn.__name__))(fn)

    return decorator


def trace_llm(name: str) -> Callable[[F], F]:
    """Open an ``LLM_CALL`` span; the LangChain callback handler fills it in."""
    return _traced(SpanKind.LLM_CALL, lambda bound: name)
