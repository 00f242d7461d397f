"""The active tracer and the current span of the running task.

Both live in ``ContextVar``s so concurrent runs keep separate trees, and so
worker threads started with ``asyncio.to_thread`` see their caller's span.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, Iterator, Optional

if TYPE_CHECKING:
    from agentloop.tracer.span import Span
    from agentloop.tracer.tracer import Tracer

_current_span: ContextVar[Any] = ContextVar("agentloop_current_span", default=None)
_active_tracer: ContextVar[Any] = ContextVar("agentloop_active_tracer", default=None)


def get_current_span() -> Optional['Span']:
    return _current_span.get()


def set_current_span(span: Optional['Span']) -> Token:
    return _current_span.set(span)


def reset_current_span(token: Token) -> None:
    _current_span.reset(token)


@contextmanager
def use_span(span: 'Span') -> Iterator['Span']:
    """Make *span* current for the block without starting or finishing it."""
    token = _current_span.set(span)
    try:
        yield span
    finally:
        _current_span.reset(token)


def get_active_tracer() -> Optional['Tracer']:
    return _active_tracer.get()


def set_active_tracer(tracer: Optional['Tracer']) -> Token:
    return _active_tracer.set(tracer)


def reset_active_tracer(token: Token) -> None:
    _active_tracer.reset(token)

