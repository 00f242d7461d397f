import logging
from os import PathLike

import pydantic
from pyaml_env import parse_config as parse_config_with_env

from agentloop.config.agent import AgentConfig, ExecutorKind, SandboxConfig
from agentloop.config.llm import (
    AzureOpenAIChatConfig,
    ChatConfig,
    ChatLLMType,
    DeepSeekChatConfig,
    OpenAIChatConfig,
    validate_chat_config,
)
from agentloop.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_config(path: str | PathLike) -> AgentConfig:
    """Read an agent config from YAML, resolving ``${VAR}`` references from the environment."""
    with open(path, 'r', encoding='utf-8') as f:
        data = parse_config_with_env(data=f, tag=None)
    try:
        config = AgentConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid agent config {path}: {e}") from e
    logger.debug(f"Loaded config: {config}")
    return config


__all__ = [
    "AgentConfig",
    "SandboxConfig",
    "ExecutorKind",
    "ChatConfig",
    "ChatLLMType",
    "OpenAIChatConfig",
    "AzureOpenAIChatConfig",
    "DeepSeekChatConfig",
    "validate_chat_config",
    "load_config",
]
