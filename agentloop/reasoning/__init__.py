from .base import ActionProposal, Plan, ReasoningEngine
from .llm import LLMReasoningEngine, split_plan
from .messages import render_action, summarize, to_messages
from .parsing import parse_code_action, parse_tool_call

__all__ = [
    "ReasoningEngine",
    "ActionProposal",
    "Plan",
    "LLMReasoningEngine",
    "split_plan",
    "to_messages",
    "render_action",
    "summarize",
    "parse_code_action",
    "parse_tool_call",
]
