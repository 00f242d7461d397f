import logging
from typing import Any, Optional
from uuid import UUID

from langchain_core.callbacks import AsyncCallbackHandler
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import LLMResult

from agentloop.tracer.context import get_current_span
from agentloop.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)


# (key in llm_output["token_usage"], key in AIMessage.usage_metadata)
_USAGE_KEYS = {
    "prompt_tokens": ("prompt_tokens", "input_tokens"),
    "completion_tokens": ("completion_tokens", "output_tokens"),
    "total_tokens": ("total_tokens", "total_tokens"),
}


def _message_dicts(messages: list[list[BaseMessage]]) -> list[dict[str, Any]]:
    return [{"role": msg.type, "content": str(msg.content)} for batch in messages for msg in batch]


def _token_usage(response: LLMResult, msg: BaseMessage | None) -> dict[str, int]:
    """Provider-reported usage, else the message's ``usage_metadata``; empty when neither is present."""
    reported = (response.llm_output or {}).get("token_usage") or {}
    if reported:
        return {key: int(reported.get(src) or 0) for key, (src, _) in _USAGE_KEYS.items()}
    metadata = getattr(msg, "usage_metadata", None) if msg is not None else None
    if metadata:
        return {key: int(metadata.get(src) or 0) for key, (_, src) in _USAGE_KEYS.items()}
    return {}


class TracerCallbackHandler(AsyncCallbackHandler):
    """Captures LLM request/response data and attaches it to the active span.

    Start and end callbacks are correlated through the LangChain *run_id*.
    Callbacks that fire outside an ``LLM_CALL`` span are ignored.
    """

    def __init__(self) -> None:
        super().__init__()
        self._run_spans: dict[UUID, Span] = {}

    async def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        span = get_current_span()
        if span is None or span.kind != SpanKind.LLM_CALL:
            return
        self._run_spans[run_id] = span
        serialized = serialized or {}
        model_name = serialized.get("kwargs", {}).get("model_name") or (serialized.get("id") or ["unknown"])[-1]
        span.set_attribute("model", model_name)
        span.set_attribute("request", {"messages": _message_dicts(messages)})

    async def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        span = self._run_spans.pop(run_id, None)
        if span is None:
            return

        content = ""
        msg = None
        if response.generations and response.generations[0]:
            gen = response.generations[0][0]
            content = gen.text or ""
            msg = getattr(gen, "message", None)
            if isinstance(msg, AIMessage):
                content = str(msg.content)
        span.set_attribute("response", {"content": content})

        usage = _token_usage(response, msg)
        if usage:
            span.set_attribute("token_usage", usage)

    async def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        span = self._run_spans.pop(run_id, None)
        if span is None:
            return
        span.status = "error"
        span.error = str(error)
