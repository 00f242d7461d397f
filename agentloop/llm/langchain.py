import asyncio
import json
import logging

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from agentloop.exceptions import ProviderUnavailable
from agentloop.llm.types import ChatLLM, ChatResponse
from agentloop.tracer import get_active_tracer

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)


def to_langchain_messages(messages: list[dict]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        match message.get("role"):
            case "system":
                converted.append(SystemMessage(content=message["content"]))
            case "assistant":
                converted.append(AIMessage(content=message["content"]))
            case _:
                converted.append(HumanMessage(content=message["content"]))
    return converted


class LangChainChatLLM(ChatLLM):
    """Adapts any langchain-core chat model; the active tracer's callbacks are attached."""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def chat(self, messages: list[dict], **params) -> ChatResponse:
        config = {}
        tracer = get_active_tracer()
        if tracer is not None:
            config["callbacks"] = [tracer.callback_handler]
        try:
            result = await self.chat_model.ainvoke(to_langchain_messages(messages), config=config, **params)
        except TRANSIENT_ERRORS as e:
            logger.warning("Chat provider unavailable: %s", e)
            raise ProviderUnavailable(f"{type(e).__name__}: {e}") from e
        content = result.content if isinstance(result.content, str) else json.dumps(result.content)
        usage = getattr(result, "usage_metadata", None) or {}
        return ChatResponse(
            content=content,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            finish_reason=(result.response_metadata or {}).get("finish_reason"),
        )
