import logging

from agentloop.config.llm import ChatConfig, ChatLLMType
from agentloop.exceptions import LLMError, NoChatLLMConfigError
from .types import ChatLLM

logger = logging.getLogger(__name__)


class ChatLLMFactory:
    """Resolves the chat model of an agent: its own config first, then a shared default."""

    def __init__(self, default: ChatLLM | None = None):
        self.default = default

    @classmethod
    def build(cls, config: ChatConfig) -> ChatLLM:
        match config.type:
            case ChatLLMType.OpenAI | ChatLLMType.AzureOpenAI | ChatLLMType.DeepSeek:
                from .oai import OpenAIChatLLM
                logger.debug("Building %s chat model %s", config.type.value, config.model)
                return OpenAIChatLLM.from_config(config)
        raise LLMError(f"Unsupported chat model type: {config.type}")

    def get(self, config: ChatConfig | None = None) -> ChatLLM:
        if config is not None:
            return self.build(config)
        if self.default is not None:
            return self.default
        raise NoChatLLMConfigError()
