from abc import ABC, abstractmethod
from dataclasses import dataclass

from openai import AsyncAzureOpenAI, AsyncOpenAI

# Type alias for OpenAI clients
AsyncOpenAIClient = AsyncAzureOpenAI | AsyncOpenAI


@dataclass(frozen=True)
class ChatResponse:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str | None = None


class ChatLLM(ABC):
    """Abstract base class for chat language models."""

    @abstractmethod
    async def chat(self, messages: list[dict], **params) -> ChatResponse:
        """Send a chat completion request.

        Args:
            messages: List of message dictionaries with 'role' and 'content'
            **params: Additional parameters for the chat completion API

        Returns:
            Generated response text with token usage

        Raises:
            ProviderUnavailable: the provider could not be reached, timed out
                or rejected the request as rate limited.
        """
        pass
