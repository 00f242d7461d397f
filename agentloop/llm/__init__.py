from .factory import ChatLLMFactory
from .langchain import LangChainChatLLM
from .types import ChatLLM, ChatResponse

__all__ = [
    "ChatLLM",
    "ChatResponse",
    "ChatLLMFactory",
    "LangChainChatLLM",
]
