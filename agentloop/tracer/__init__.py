from agentloop.tracer.callback import TracerCallbackHandler
from agentloop.tracer.context import get_active_tracer, get_current_span, use_span
from agentloop.tracer.decorators import trace_llm, trace_tool
from agentloop.tracer.exporter import YAMLExporter
from agentloop.tracer.span import Span, SpanKind
from agentloop.tracer.tracer import Tracer

__all__ = [
    "Tracer",
    "TracerCallbackHandler",
    "YAMLExporter",
    "Span",
    "SpanKind",
    "get_active_tracer",
    "get_current_span",
    "use_span",
    "trace_tool",
    "trace_llm",
]
