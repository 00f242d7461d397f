"""Append-only memory store for agent runs."""

import dataclasses
import logging
from typing import Any, Iterable, Iterator, overload

from agentloop.action import Action
from agentloop.exceptions import MemoryStoreError
from agentloop.memory.step import (
    ActionStep,
    ExitReason,
    FinalStep,
    MemoryStep,
    PlanningStep,
    StepError,
    SystemStep,
    TaskStep,
    Timing,
    TokenUsage,
)
from agentloop.task import Task

logger = logging.getLogger(__name__)


class MemoryStore:
    """Ordered log of typed steps.

    Indices are assigned on append and are contiguous from 0. A written step
    is never replaced, with one exception: the newest step may be revised by
    :meth:`revise_plan` while it is a :class:`PlanningStep`.
    """

    def __init__(self):
        self._steps: list[MemoryStep] = []
        self._run_start: int | None = None

    # ------------------------------------------------------------------
    # Run boundaries
    # ------------------------------------------------------------------

    def begin_run(self, task: Task, system_prompt: str | None = None) -> TaskStep:
        """Start a new run by recording the system prompt (if any) and the task."""
        if self._run_start is not None and not self.run_finished:
            raise MemoryStoreError("The current run has not produced a final step yet")
        self._run_start = len(self._steps)
        if system_prompt is not None:
            self._append(SystemStep(index=len(self._steps), system_prompt=system_prompt))
        step = TaskStep(index=len(self._steps), task=task)
        self._append(step)
        return step

    def reset(self):
        self._steps.clear()
        self._run_start = None

    @property
    def run_active(self) -> bool:
        return self._run_start is not None and not self.run_finished

    @property
    def run_finished(self) -> bool:
        return bool(self._steps) and isinstance(self._steps[-1], FinalStep)

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def _append(self, step: MemoryStep) -> MemoryStep:
        if step.index != len(self._steps):
            raise MemoryStoreError(f"Step index {step.index} breaks contiguity at {len(self._steps)}")
        self._steps.append(step)
        return step

    def _require_active_run(self):
        if not self.run_active:
            raise MemoryStoreError("No active run; call begin_run() first")

    def append_planning(
            self,
            plan: str,
            facts: str = "",
            step_number: int = 0,
            token_usage: TokenUsage | None = None,
            timing: Timing | None = None,
    ) -> PlanningStep:
        self._require_active_run()
        step = PlanningStep(
            index=len(self._steps),
            plan=plan,
            facts=facts,
            step_number=step_number,
            token_usage=token_usage or TokenUsage(),
            timing=timing,
        )
        self._append(step)
        return step

    def append_action(
            self,
            step_number: int,
            rationale: str = "",
            action: Action | None = None,
            observation: str | None = None,
            error: StepError | None = None,
            is_final_answer: bool = False,
            token_usage: TokenUsage | None = None,
            timing: Timing | None = None,
    ) -> ActionStep:
        self._require_active_run()
        previous = self.action_steps()
        if previous and step_number <= previous[-1].step_number:
            raise MemoryStoreError(
                f"Step number {step_number} must be greater than {previous[-1].step_number}"
            )
        step = ActionStep(
            index=len(self._steps),
            step_number=step_number,
            rationale=rationale,
            action=action,
            observation=observation,
            error=error,
            is_final_answer=is_final_answer,
            token_usage=token_usage or TokenUsage(),
            timing=timing,
        )
        self._append(step)
        return step

    def append_final(self, answer: Any, exit_reason: ExitReason, error: StepError | None = None) -> FinalStep:
        self._require_active_run()
        step = FinalStep(index=len(self._steps), answer=answer, exit_reason=exit_reason, error=error)
        self._append(step)
        return step

    def revise_plan(self, plan: str) -> PlanningStep:
        """Apply a human edit to the newest step, which must be a planning step."""
        if not self._steps or not isinstance(self._steps[-1], PlanningStep):
            raise MemoryStoreError("Only the most recent planning step can be revised")
        revised = dataclasses.replace(self._steps[-1], plan=plan, edited=True)
        self._steps[-1] = revised
        logger.debug("Planning step %d revised", revised.index)
        return revised

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def steps(self) -> tuple[MemoryStep, ...]:
        return tuple(self._steps)

    def current_run(self) -> list[MemoryStep]:
        if self._run_start is None:
            return []
        return self._steps[self._run_start:]

    def runs(self) -> list[list[MemoryStep]]:
        """Split the store into runs; each run ends with its final step."""
        runs: list[list[MemoryStep]] = []
        current: list[MemoryStep] = []
        for step in self._steps:
            current.append(step)
            if isinstance(step, FinalStep):
                runs.append(current)
                current = []
        if current:
            runs.append(current)
        return runs

    def action_steps(self) -> list[ActionStep]:
        return [s for s in self.current_run() if isinstance(s, ActionStep)]

    def last_observation(self) -> str | None:
        for step in reversed(self.current_run()):
            if isinstance(step, ActionStep) and step.observation:
                return step.observation
        return None

    def total_token_usage(self) -> TokenUsage:
        usage = TokenUsage()
        for step in self.current_run():
            if isinstance(step, (ActionStep, PlanningStep)):
                usage = usage + step.token_usage
        return usage

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    @classmethod
    def replay(cls, steps: Iterable[MemoryStep]) -> 'MemoryStore':
        """Rebuild a store from recorded steps through the regular append path.

        Only the recorded payloads are used; indices are assigned afresh. No
        reasoning engine or executor is involved.
        """
        store = cls()
        pending_system: str | None = None
        for step in steps:
            match step:
                case SystemStep(system_prompt=prompt):
                    pending_system = prompt
                case TaskStep(task=task):
                    store.begin_run(task, system_prompt=pending_system)
                    pending_system = None
                case PlanningStep():
                    store.append_planning(
                        plan=step.plan,
                        facts=step.facts,
                        step_number=step.step_number,
                        token_usage=step.token_usage,
                        timing=step.timing,
                    )
                    if step.edited:
                        store.revise_plan(step.plan)
                case ActionStep():
                    store.append_action(
                        step_number=step.step_number,
                        rationale=step.rationale,
                        action=step.action,
                        observation=step.observation,
                        error=step.error,
                        is_final_answer=step.is_final_answer,
                        token_usage=step.token_usage,
                        timing=step.timing,
                    )
                case FinalStep():
                    store.append_final(step.answer, step.exit_reason, step.error)
                case _:
                    raise MemoryStoreError(f"Unknown memory step type: {type(step).__name__}")
        return store

    def to_dicts(self) -> list[dict[str, Any]]:
        return [step.to_dict() for step in self._steps]

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[MemoryStep]:
        return iter(tuple(self._steps))

    @overload
    def __getitem__(self, idx: int) -> MemoryStep: ...

    @overload
    def __getitem__(self, idx: slice) -> list[MemoryStep]: ...

    def __getitem__(self, idx):
        return self._steps[idx]

    def __eq__(self, other):
        if not isinstance(other, MemoryStore):
            return NotImplemented
        return self._steps == other._steps

    def __repr__(self) -> str:
        return f"MemoryStore(steps={len(self._steps)})"
