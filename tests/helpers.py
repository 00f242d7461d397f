"""Scripted collaborators shared by the test suite."""

from typing import Any, Iterable, Sequence

from agentloop.action import Action
from agentloop.memory import MemoryStep, TokenUsage
from agentloop.reasoning import ActionProposal, Plan, ReasoningEngine
from agentloop.sandbox import SandboxProvider
from agentloop.tool import FunctionTool, ToolRegistry


class ScriptedReasoning(ReasoningEngine):
    """Replays a fixed sequence of replies.

    Each reply is an :class:`Action`, an :class:`ActionProposal`, or an
    exception instance to raise from :meth:`next_action`.
    """

    def __init__(
            self,
            replies: Iterable[Any],
            plans: Sequence[Any] = (),
            system: str | None = "You are a test agent.",
    ):
        self._replies = iter(replies)
        self._plans = list(plans)
        self.system = system
        self.calls = 0
        self.plan_calls = 0
        self.seen: list[list[MemoryStep]] = []

    def system_prompt(self, capabilities: ToolRegistry) -> str | None:
        return self.system

    async def next_action(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry) -> ActionProposal:
        self.calls += 1
        self.seen.append(list(memory))
        reply = next(self._replies)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ActionProposal):
            return reply
        return ActionProposal(action=reply, rationale=f"step {self.calls}", token_usage=TokenUsage(10, 5))

    async def plan(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry, step_number: int) -> Plan:
        self.plan_calls += 1
        if self._plans:
            reply = self._plans.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        return Plan(plan=f"1. Plan before step {step_number}", facts="Nothing yet")


def counting_add() -> tuple[FunctionTool, list[tuple[int, int]]]:
    calls: list[tuple[int, int]] = []

    def add(a: int, b: int) -> int:
        """Add two integers."""
        calls.append((a, b))
        return a + b

    return FunctionTool(add), calls


class RecordingProvider(SandboxProvider):
    """Keeps every session it creates and counts how often each is released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.sessions = []

    def create_session(self, kind, limits=None):
        session = super().create_session(kind, limits)
        release = session._release
        session.release_calls = 0

        async def counted_release():
            session.release_calls += 1
            await release()

        session._release = counted_release
        self.sessions.append(session)
        return session
