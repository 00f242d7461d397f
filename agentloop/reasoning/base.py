"""Interface between the agent loop and whatever proposes its actions."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from agentloop.action import Action
from agentloop.memory.step import MemoryStep, TokenUsage
from agentloop.tool.registry import ToolRegistry


@dataclass(frozen=True)
class ActionProposal:
    action: Action
    rationale: str = ""
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    raw_output: str | None = None


@dataclass(frozen=True)
class Plan:
    plan: str
    facts: str = ""
    token_usage: TokenUsage = field(default_factory=TokenUsage)


class ReasoningEngine(ABC):
    """Proposes the next action from the visible memory.

    Implementations raise ``ProviderUnavailable`` when their backend can not
    be reached and ``ActionParseError`` when its output is not an action.
    """

    def system_prompt(self, capabilities: ToolRegistry) -> str | None:
        """Prompt recorded as the run's system step; ``None`` records none."""
        return None

    @abstractmethod
    async def next_action(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry) -> ActionProposal:
        ...

    @abstractmethod
    async def plan(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry, step_number: int) -> Plan:
        ...
