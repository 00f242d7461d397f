"""Typed memory steps recorded by the agent loop."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentloop.action import Action
from agentloop.exceptions import ExecutionError
from agentloop.task import Task


class ExitReason(str, Enum):
    """Why a run ended."""
    FINAL_ANSWER = "final_answer"
    STEP_BUDGET_EXCEEDED = "step_budget_exceeded"
    FATAL_ERROR = "fatal_error"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: 'TokenUsage') -> 'TokenUsage':
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class Timing:
    start_time: datetime
    end_time: datetime | None = None

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    @classmethod
    def since(cls, start_time: datetime) -> 'Timing':
        return cls(start_time=start_time, end_time=datetime.now())


@dataclass(frozen=True)
class StepError:
    """Value-comparable record of an execution error."""
    kind: str
    message: str

    @classmethod
    def from_exception(cls, error: Exception) -> 'StepError':
        if isinstance(error, ExecutionError):
            return cls(kind=error.kind, message=error.msg)
        return cls(kind=type(error).__name__, message=str(error))

    def to_observation(self) -> str:
        return f"Error ({self.kind}): {self.message}"


@dataclass(frozen=True)
class MemoryStep:
    index: int

    @property
    def kind(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "kind": self.kind}


@dataclass(frozen=True)
class SystemStep(MemoryStep):
    system_prompt: str

    @property
    def kind(self) -> str:
        return "system"

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"system_prompt": self.system_prompt}


@dataclass(frozen=True)
class TaskStep(MemoryStep):
    task: Task

    @property
    def kind(self) -> str:
        return "task"

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"task": self.task.goal, "context": dict(self.task.context)}


@dataclass(frozen=True)
class PlanningStep(MemoryStep):
    plan: str
    facts: str = ""
    step_number: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage, compare=False)
    timing: Timing | None = field(default=None, compare=False)
    edited: bool = False

    @property
    def kind(self) -> str:
        return "planning"

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {
            "step_number": self.step_number,
            "facts": self.facts,
            "plan": self.plan,
            "edited": self.edited,
            "token_usage": self.token_usage.to_dict(),
        }


@dataclass(frozen=True)
class ActionStep(MemoryStep):
    step_number: int
    rationale: str = ""
    action: Action | None = None
    observation: str | None = None
    error: StepError | None = None
    is_final_answer: bool = False
    token_usage: TokenUsage = field(default_factory=TokenUsage, compare=False)
    timing: Timing | None = field(default=None, compare=False)

    @property
    def kind(self) -> str:
        return "action"

    def feedback(self) -> str:
        """Text fed back to the reasoning engine for this step."""
        if self.error is not None:
            if self.observation:
                return f"{self.observation}\n{self.error.to_observation()}"
            return self.error.to_observation()
        return self.observation if self.observation is not None else ""

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict() | {
            "step_number": self.step_number,
            "rationale": self.rationale,
            "action": self.action.model_dump(mode="json") if self.action is not None else None,
            "observation": self.observation,
            "is_final_answer": self.is_final_answer,
            "token_usage": self.token_usage.to_dict(),
        }
        if self.error is not None:
            d["error"] = {"kind": self.error.kind, "message": self.error.message}
        if self.timing is not None and self.timing.duration_ms is not None:
            d["duration_ms"] = round(self.timing.duration_ms, 2)
        return d


@dataclass(frozen=True)
class FinalStep(MemoryStep):
    answer: Any
    exit_reason: ExitReason
    error: StepError | None = None

    @property
    def kind(self) -> str:
        return "final"

    @property
    def succeeded(self) -> bool:
        return self.exit_reason == ExitReason.FINAL_ANSWER

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict() | {"answer": self.answer, "exit_reason": self.exit_reason.value}
        if self.error is not None:
            d["error"] = {"kind": self.error.kind, "message": self.error.message}
        return d
