"""Chat model sections of an agent config, discriminated by ``type``."""

import os
from enum import Enum

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class ChatLLMType(str, Enum):
    AzureOpenAI = "azure_openai"
    OpenAI = "openai"
    DeepSeek = "deepseek"


def _key_from_env(variable: str):
    return lambda: os.environ.get(variable)


class OpenAIChatConfig(BaseModel):
    type: Literal[ChatLLMType.OpenAI]
    model: Annotated[str, Field(description="Model name sent with every completion request")]
    endpoint: Annotated[str | None, Field(default=None, description="Base URL; None keeps the client's default")]
    api_key: Annotated[str | None, Field(
        default_factory=_key_from_env("OPENAI_API_KEY"),
        description="Falls back to $OPENAI_API_KEY",
    )]
    timeout: Annotated[float, Field(default=180.0, description="Seconds before a request is abandoned")]

    # sampling
    max_tokens: Annotated[int | None, Field(default=4000, description="Completion length cap per reasoning call")]
    temperature: Annotated[float | None, Field(default=0.0, description="0.0 keeps action selection repeatable")]
    top_p: Annotated[float | None, Field(default=1.0)]
    stop: Annotated[list[str] | None, Field(
        default=None,
        description="Stop sequences, e.g. the closing code fence of a code action",
    )]

    def chat_params(self) -> dict:
        """Keyword arguments merged into each ``chat.completions.create`` call."""
        params = {
            'max_completion_tokens': self.max_tokens,
            'temperature': self.temperature,
            'top_p': self.top_p,
        }
        if self.stop:
            params['stop'] = self.stop
        return params


class AzureOpenAIChatConfig(OpenAIChatConfig):
    type: Literal[ChatLLMType.AzureOpenAI]
    endpoint: Annotated[str, Field(description="Resource URL, e.g. https://<name>.openai.azure.com")]
    deployment: Annotated[str, Field(description="Deployment serving *model*")]
    api_version: Annotated[str, Field(description="Azure OpenAI REST API version")]


class DeepSeekChatConfig(OpenAIChatConfig):
    type: Literal[ChatLLMType.DeepSeek]
    endpoint: Annotated[str, Field(default="https://api.deepseek.com")]
    api_key: Annotated[str | None, Field(
        default_factory=_key_from_env("DEEPSEEK_API_KEY"),
        description="Falls back to $DEEPSEEK_API_KEY",
    )]


ChatConfig = Annotated[AzureOpenAIChatConfig | OpenAIChatConfig | DeepSeekChatConfig, Field(
    description="Model the agent reasons with",
    discriminator="type",
)]

_chat_config_adapter = TypeAdapter(ChatConfig)


def validate_chat_config(data: dict) -> ChatConfig:
    return _chat_config_adapter.validate_python(data)
