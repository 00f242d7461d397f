import logging

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from agentloop.config.llm import AzureOpenAIChatConfig, DeepSeekChatConfig, OpenAIChatConfig
from agentloop.exceptions import LLMError, ProviderUnavailable
from agentloop.llm.types import AsyncOpenAIClient, ChatLLM, ChatResponse

logger = logging.getLogger(__name__)

# Failures worth retrying: the provider may come back.
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIChatLLM(ChatLLM):
    def __init__(
            self,
            client: AsyncOpenAIClient,
            model: str,
            *,
            chat_params: dict | None = None,
    ):
        self.client = client
        self.model = model
        self.chat_params: dict = chat_params or {}

    @classmethod
    def from_config(cls, config: AzureOpenAIChatConfig | OpenAIChatConfig | DeepSeekChatConfig) -> 'OpenAIChatLLM':
        if isinstance(config, AzureOpenAIChatConfig):
            client = AsyncAzureOpenAI(
                azure_endpoint=config.endpoint,
                azure_deployment=config.deployment,
                api_version=config.api_version,
                api_key=config.api_key,
                timeout=config.timeout,
            )
        else:
            client = AsyncOpenAI(
                base_url=config.endpoint,
                api_key=config.api_key,
                timeout=config.timeout,
            )
        return cls(client, config.model, chat_params=config.chat_params())

    async def chat(self, messages: list[dict], **params) -> ChatResponse:
        try:
            resp = await self.client.chat.completions.create(
                messages=messages,
                model=self.model,
                **(self.chat_params | params),
            )
        except TRANSIENT_ERRORS as e:
            # APITimeoutError is an APIConnectionError.
            logger.warning("Chat provider unavailable: %s", e)
            raise ProviderUnavailable(f"{type(e).__name__}: {e}") from e
        except openai.OpenAIError as e:
            raise LLMError(f"{type(e).__name__}: {e}") from e
        choice = resp.choices[0]
        usage = resp.usage
        return ChatResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason,
        )
