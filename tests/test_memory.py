import dataclasses

import pytest

from agentloop.action import CodeAction
from agentloop.exceptions import MemoryStoreError, ResourceLimitExceeded
from agentloop.memory import (
    PRUNED_MARKER,
    ActionStep,
    ExitReason,
    MemoryStore,
    PlanningStep,
    RetentionPolicy,
    StepError,
    SystemStep,
    TaskStep,
    TokenUsage,
    snapshot,
)
from agentloop.task import Task


@pytest.fixture
def memory():
    store = MemoryStore()
    store.begin_run(Task("Add the numbers"), system_prompt="system")
    return store


def finished_run(store: MemoryStore, goal: str, observations: list[str]):
    store.begin_run(Task(goal))
    for number, observation in enumerate(observations, start=1):
        store.append_action(number, action=CodeAction(code=f"print({number})"), observation=observation)
    store.append_final(observations[-1] if observations else None, ExitReason.FINAL_ANSWER)


class TestMemoryStore:
    def test_indices_are_contiguous(self, memory):
        memory.append_planning("1. add", step_number=1)
        memory.append_action(1, observation="3")
        memory.append_action(2, observation="6")
        memory.append_final(6, ExitReason.FINAL_ANSWER)

        assert [s.index for s in memory.steps] == list(range(6))
        assert [s.kind for s in memory.steps] == ["system", "task", "planning", "action", "action", "final"]
        assert memory.run_finished
        assert not memory.run_active

    def test_append_requires_active_run(self):
        store = MemoryStore()
        with pytest.raises(MemoryStoreError):
            store.append_action(1, observation="x")

    def test_append_after_final_is_rejected(self, memory):
        memory.append_final("done", ExitReason.FINAL_ANSWER)
        with pytest.raises(MemoryStoreError):
            memory.append_action(1, observation="late")

    def test_begin_run_while_active_is_rejected(self, memory):
        with pytest.raises(MemoryStoreError):
            memory.begin_run(Task("Another"))

    def test_step_numbers_increase(self, memory):
        memory.append_action(1)
        with pytest.raises(MemoryStoreError):
            memory.append_action(1)

    def test_steps_are_immutable(self, memory):
        step = memory.append_action(1, observation="x")
        with pytest.raises(dataclasses.FrozenInstanceError):
            step.observation = "y"
        assert isinstance(memory.steps, tuple)

    def test_revise_plan(self, memory):
        memory.append_planning("1. guess", step_number=1)
        revised = memory.revise_plan("1. compute")
        assert revised.plan == "1. compute"
        assert revised.edited
        assert memory[-1] is revised

    def test_revise_plan_only_for_newest_planning_step(self, memory):
        memory.append_planning("1. guess", step_number=1)
        memory.append_action(1)
        with pytest.raises(MemoryStoreError):
            memory.revise_plan("1. compute")

    def test_runs_and_current_run(self, memory):
        memory.append_action(1, observation="first")
        memory.append_final("first", ExitReason.FINAL_ANSWER)
        memory.begin_run(Task("Follow up"))
        memory.append_action(1, observation="second")

        runs = memory.runs()
        assert len(runs) == 2
        assert isinstance(runs[1][0], TaskStep)
        assert [s.observation for s in memory.action_steps()] == ["second"]
        assert memory.last_observation() == "second"

    def test_reset(self, memory):
        memory.reset()
        assert len(memory) == 0
        assert memory.current_run() == []
        memory.begin_run(Task("Again"))
        assert memory[0].index == 0

    def test_total_token_usage(self, memory):
        memory.append_planning("p", token_usage=TokenUsage(100, 20))
        memory.append_action(1, token_usage=TokenUsage(10, 5))
        assert memory.total_token_usage() == TokenUsage(110, 25)
        assert memory.total_token_usage().total_tokens == 135

    def test_replay_reproduces_the_store(self, memory):
        memory.append_planning("1. guess", step_number=1, token_usage=TokenUsage(7, 3))
        memory.revise_plan("1. compute")
        memory.append_action(1, rationale="try", action=CodeAction(code="1/0"),
                             error=StepError("sandbox_error", "division by zero"))
        memory.append_action(2, observation="ok", is_final_answer=True)
        memory.append_final("ok", ExitReason.FINAL_ANSWER)
        finished_run(memory, "Second task", ["a", "b"])

        replayed = MemoryStore.replay(memory.steps)

        assert replayed == memory
        assert replayed.to_dicts() == memory.to_dicts()

    def test_to_dict(self, memory):
        memory.append_action(1, observation="partial",
                             error=StepError.from_exception(ResourceLimitExceeded("too slow", limit="timeout")))
        d = memory[-1].to_dict()
        assert d["kind"] == "action"
        assert d["error"] == {"kind": "resource_limit_exceeded", "message": "too slow"}
        assert d["token_usage"]["total_tokens"] == 0


class TestActionStepFeedback:
    def test_observation_only(self):
        assert ActionStep(index=0, step_number=1, observation="3").feedback() == "3"

    def test_error_with_partial_output(self):
        step = ActionStep(index=0, step_number=1, observation="before",
                          error=StepError("sandbox_error", "boom"))
        assert step.feedback() == "before\nError (sandbox_error): boom"

    def test_step_error_from_plain_exception(self):
        assert StepError.from_exception(KeyError("k")) == StepError("KeyError", "'k'")


class TestRetention:
    def test_view_leaves_store_untouched(self, memory):
        memory.append_action(1, observation="x" * 50)
        view = snapshot(memory, RetentionPolicy(max_observation_chars=10))

        assert view[-1].observation.startswith("x" * 10)
        assert "truncated" in view[-1].observation
        assert memory[-1].observation == "x" * 50

    def test_prune_old_observations(self, memory):
        for number in range(1, 4):
            memory.append_action(number, observation=f"obs {number}")
        view = snapshot(memory, RetentionPolicy(keep_full_observations=1))

        observations = [s.observation for s in view if isinstance(s, ActionStep)]
        assert observations == [PRUNED_MARKER, PRUNED_MARKER, "obs 3"]

    def test_keep_no_observations(self, memory):
        memory.append_action(1, observation="obs")
        view = snapshot(memory, RetentionPolicy(keep_full_observations=0))
        assert view[-1].observation == PRUNED_MARKER

    def test_max_prior_runs_keeps_system_prompt(self):
        store = MemoryStore()
        store.begin_run(Task("First"), system_prompt="system")
        store.append_final("1", ExitReason.FINAL_ANSWER)
        finished_run(store, "Second", ["two"])
        store.begin_run(Task("Third"))

        view = snapshot(store, RetentionPolicy(max_prior_runs=1))

        assert isinstance(view[0], SystemStep)
        goals = [s.task.goal for s in view if isinstance(s, TaskStep)]
        assert goals == ["Second", "Third"]

    def test_no_prior_runs(self):
        store = MemoryStore()
        finished_run(store, "First", ["one"])
        store.begin_run(Task("Second"))

        view = snapshot(store, RetentionPolicy(max_prior_runs=0))

        assert [s.task.goal for s in view if isinstance(s, TaskStep)] == ["Second"]

    def test_default_policy_is_identity_for_short_observations(self, memory):
        memory.append_planning("plan")
        memory.append_action(1, observation="short")
        assert snapshot(memory) == list(memory.steps)
        assert isinstance(snapshot(memory)[2], PlanningStep)
