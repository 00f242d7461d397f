import logging
from contextlib import asynccontextmanager
from contextvars import Token
from typing import Any, AsyncIterator, Optional

from agentloop.tracer.callback import TracerCallbackHandler
from agentloop.tracer.context import (
    get_current_span,
    reset_active_tracer,
    reset_current_span,
    set_active_tracer,
    set_current_span,
)
from agentloop.tracer.exporter import YAMLExporter
from agentloop.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)


class Tracer:
    """Collects the span trees of the runs made while it is active.

    Spans started with no current span become roots; the agent exports its
    own run root when the run ends. Without an exporter, trees are only kept
    in memory (see :attr:`roots`).
    """

    def __init__(self, exporter: YAMLExporter | None = None) -> None:
        self.exporter = exporter
        self.callback_handler = TracerCallbackHandler()
        self._roots: list[Span] = []

    def activate(self) -> Token:
        return set_active_tracer(self)

    def deactivate(self, token: Token) -> None:
        reset_active_tracer(token)

    def start_span(self, kind: SpanKind, name: str, attributes: dict[str, Any] | None = None) -> tuple[Span, Token]:
        """Open a span under the current one and make it current.

        Pass the returned token to :meth:`end_span`.
        """
        span = Span(kind=kind, name=name, attributes=dict(attributes or {}))
        parent = get_current_span()
        if parent is None:
            self._roots.append(span)
        else:
            parent.add_child(span)
        return span, set_current_span(span)

    def end_span(self, span: Span, token: Token, error: BaseException | None = None) -> None:
        span.finish(error=error)
        reset_current_span(token)

    @asynccontextmanager
    async def span(self, kind: SpanKind, name: str, attributes: dict[str, Any] | None = None) -> AsyncIterator[Span]:
        span, token = self.start_span(kind, name, attributes)
        try:
            yield span
        except BaseException as e:
            self.end_span(span, token, error=e)
            raise
        self.end_span(span, token)

    def export(self, span: Span | None = None) -> None:
        """Hand *span*, or the latest root, to the exporter."""
        if self.exporter is None:
            logger.debug("Tracer has no exporter; keeping the trace in memory")
            return
        span = span or self.root_span
        if span is None:
            logger.warning("No span recorded; nothing to export")
            return
        self.exporter.export(span)

    @property
    def root_span(self) -> Optional[Span]:
        return self._roots[-1] if self._roots else None

    @property
    def roots(self) -> list[Span]:
        return list(self._roots)
