"""Loop states and the human-in-the-loop plan review contract."""

import enum
from dataclasses import dataclass
from typing import Awaitable, Protocol, runtime_checkable

from agentloop.memory.step import PlanningStep


class AgentState(str, enum.Enum):
    INIT = "init"
    PLANNING = "planning"
    REASONING = "reasoning"
    DISPATCHING = "dispatching"
    OBSERVING = "observing"
    TERMINATING = "terminating"


class PlanDecisionKind(str, enum.Enum):
    APPROVE = "approve"
    EDIT = "edit"
    CANCEL = "cancel"


@dataclass(frozen=True)
class PlanDecision:
    kind: PlanDecisionKind
    plan: str | None = None

    @classmethod
    def approve(cls) -> 'PlanDecision':
        return cls(PlanDecisionKind.APPROVE)

    @classmethod
    def edit(cls, plan: str) -> 'PlanDecision':
        if not plan.strip():
            raise ValueError("An edited plan must not be empty")
        return cls(PlanDecisionKind.EDIT, plan)

    @classmethod
    def cancel(cls) -> 'PlanDecision':
        return cls(PlanDecisionKind.CANCEL)


@runtime_checkable
class PlanReviewer(Protocol):
    """Called after each planning step; the loop waits for the decision."""

    def review(self, step: PlanningStep) -> PlanDecision | Awaitable[PlanDecision]:
        ...
