"""Tests for the agent step loop.

Covers the run-level guarantees of AgentCore:

1. Memory: contiguous indices, one trailing final step, replayable history
2. Termination: final answer, step budget, fatal errors, interrupts, cancellation
3. Error feedback: parse, validation and resource limit errors become observations
4. Planning: cadence and the plan reviewer's approve / edit / cancel decisions
5. Observability: step callbacks, event sinks and tracer spans
"""

import asyncio
import itertools
import time
import unittest
from unittest.mock import MagicMock

from agentloop.action import CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.agent import AgentCore
from agentloop.events import CollectingEventSink, TracerEventSink
from agentloop.exceptions import (
    ActionParseError,
    AgentBusyError,
    ConfigurationError,
    ProviderUnavailable,
)
from agentloop.memory import (
    ActionStep,
    ExitReason,
    FinalStep,
    MemoryStore,
    PlanningStep,
    SystemStep,
    TaskStep,
    TokenUsage,
)
from agentloop.reasoning import Plan
from agentloop.sandbox import NO_OUTPUT, ResourceLimits
from agentloop.state import AgentState, PlanDecision
from agentloop.task import Task
from agentloop.tool import FunctionTool, ToolRegistry
from agentloop.tracer import SpanKind, Tracer

from helpers import RecordingProvider, ScriptedReasoning, counting_add


def blocking_tool() -> tuple[FunctionTool, asyncio.Event]:
    started = asyncio.Event()

    async def block() -> str:
        """Wait for a long time."""
        started.set()
        await asyncio.sleep(30)
        return "never"

    return FunctionTool(block), started


class TestAgentTermination(unittest.IsolatedAsyncioTestCase):
    """Test the four ways a run ends."""

    async def test_immediate_final_answer_records_no_action_step(self):
        agent = AgentCore("solver", ScriptedReasoning([FinalAnswerAction(answer=42)]))

        final = await agent.run("What is six times seven?")

        self.assertEqual(final.exit_reason, ExitReason.FINAL_ANSWER)
        self.assertEqual(final.answer, 42)
        self.assertEqual([s.kind for s in agent.memory], ["system", "task", "final"])
        self.assertEqual(agent.memory.action_steps(), [])

    async def test_code_actions_then_final_answer(self):
        add, calls = counting_add()
        reasoning = ScriptedReasoning([
            CodeAction(code="x = add(1, 2)\nprint(x)"),
            CodeAction(code="final_answer(x * 10)"),
        ])
        agent = AgentCore("solver", reasoning, [add])

        final = await agent.run("Add then scale")

        self.assertEqual(final.answer, 30)
        self.assertEqual(calls, [(1, 2)])
        steps = agent.memory.action_steps()
        self.assertEqual(len(steps), 2)
        self.assertEqual(steps[0].observation, "3")
        self.assertFalse(steps[0].is_final_answer)
        self.assertTrue(steps[1].is_final_answer)
        self.assertIsInstance(agent.memory[-1], FinalStep)

    async def test_indices_are_contiguous_with_single_trailing_final_step(self):
        reasoning = ScriptedReasoning([
            CodeAction(code="a = 1"),
            ActionParseError("no code block", raw_output="I think..."),
            CodeAction(code="undefined_call()"),
            FinalAnswerAction(answer="done"),
        ])
        agent = AgentCore("solver", reasoning, planning_interval=2)

        await agent.run("Do things")

        self.assertEqual([s.index for s in agent.memory], list(range(len(agent.memory))))
        finals = [s for s in agent.memory if isinstance(s, FinalStep)]
        self.assertEqual(len(finals), 1)
        self.assertIs(agent.memory[-1], finals[0])

    async def test_step_budget(self):
        reasoning = ScriptedReasoning(itertools.repeat(CodeAction(code="'working'")))
        agent = AgentCore("solver", reasoning, max_steps=3)

        final = await agent.run("Never finishes")

        self.assertEqual(final.exit_reason, ExitReason.STEP_BUDGET_EXCEEDED)
        self.assertEqual(len(agent.memory.action_steps()), 3)
        self.assertEqual([s.step_number for s in agent.memory.action_steps()], [1, 2, 3])
        self.assertEqual(final.answer, "Last output from code snippet:\n'working'")

    async def test_step_budget_counts_failed_steps(self):
        reasoning = ScriptedReasoning(itertools.repeat(ActionParseError("no code block")))
        agent = AgentCore("solver", reasoning, max_steps=2)

        final = await agent.run("Model never produces code")

        self.assertEqual(final.exit_reason, ExitReason.STEP_BUDGET_EXCEEDED)
        self.assertIsNone(final.answer)
        self.assertEqual(len(agent.memory.action_steps()), 2)

    async def test_provider_unavailable_is_retried(self):
        reasoning = ScriptedReasoning([
            ProviderUnavailable("connection reset"),
            ProviderUnavailable("connection reset"),
            FinalAnswerAction(answer="ok"),
        ])
        agent = AgentCore("solver", reasoning, provider_retries=2, provider_backoff=0)

        final = await agent.run("Flaky provider")

        self.assertEqual(final.exit_reason, ExitReason.FINAL_ANSWER)
        self.assertEqual(reasoning.calls, 3)

    async def test_provider_unavailable_becomes_fatal(self):
        reasoning = ScriptedReasoning(itertools.repeat(ProviderUnavailable("down")))
        agent = AgentCore("solver", reasoning, provider_retries=1, provider_backoff=0)

        final = await agent.run("Dead provider")

        self.assertEqual(final.exit_reason, ExitReason.FATAL_ERROR)
        self.assertEqual(final.error.kind, "fatal_error")
        self.assertIn("after 2 attempts", final.error.message)
        self.assertEqual(reasoning.calls, 2)

    async def test_unexpected_engine_error_is_fatal(self):
        reasoning = ScriptedReasoning([RuntimeError("engine bug")])
        agent = AgentCore("solver", reasoning)

        final = await agent.run("Broken engine")

        self.assertEqual(final.exit_reason, ExitReason.FATAL_ERROR)
        self.assertIn("engine bug", final.error.message)


class TestAgentErrorFeedback(unittest.IsolatedAsyncioTestCase):
    """Test that execution errors are stored as observations and the loop continues."""

    async def test_parse_error_is_fed_back(self):
        reasoning = ScriptedReasoning([
            ActionParseError("Your reply did not contain a code block", raw_output="Let me think"),
            FinalAnswerAction(answer="ok"),
        ])
        agent = AgentCore("solver", reasoning)

        await agent.run("Parse me")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "action_parse_error")
        self.assertEqual(step.rationale, "Let me think")
        self.assertIsNone(step.action)
        self.assertIn(step, reasoning.seen[1])

    async def test_missing_argument_never_invokes_the_tool(self):
        add, calls = counting_add()
        reasoning = ScriptedReasoning([
            ToolCallAction(name="add", arguments={"a": 1}),
            FinalAnswerAction(answer="gave up"),
        ])
        agent = AgentCore("caller", reasoning, [add], executor="tool_calling")

        await agent.run("Add")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "validation_error")
        self.assertIn("b", step.error.message)
        self.assertEqual(calls, [])

    async def test_missing_argument_in_code_never_invokes_the_tool(self):
        add, calls = counting_add()
        reasoning = ScriptedReasoning([CodeAction(code="add(1)"), FinalAnswerAction(answer="gave up")])
        agent = AgentCore("solver", reasoning, [add])

        await agent.run("Add")

        self.assertEqual(agent.memory.action_steps()[0].error.kind, "validation_error")
        self.assertEqual(calls, [])

    async def test_output_before_an_error_is_kept(self):
        reasoning = ScriptedReasoning([
            CodeAction(code="print('partial')\nsearch('x')"),
            FinalAnswerAction(answer="ok"),
        ])
        agent = AgentCore("solver", reasoning)

        await agent.run("Search")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.observation, "partial\n")
        self.assertEqual(step.error.kind, "capability_not_found")
        self.assertIn("partial", step.feedback())
        self.assertIn("capability_not_found", step.feedback())

    async def test_operation_limit_reports_and_tears_down_once(self):
        provider = RecordingProvider()
        reasoning = ScriptedReasoning([
            CodeAction(code="while True:\n    pass"),
            FinalAnswerAction(answer="stopped looping"),
        ])
        agent = AgentCore(
            "solver", reasoning,
            sandbox_provider=provider,
            limits=ResourceLimits(max_operations=1000),
        )

        final = await agent.run("Loop forever")

        self.assertEqual(final.exit_reason, ExitReason.FINAL_ANSWER)
        self.assertEqual(agent.memory.action_steps()[0].error.kind, "resource_limit_exceeded")
        self.assertEqual(len(provider.sessions), 1)
        self.assertEqual(provider.sessions[0].release_calls, 1)
        self.assertTrue(provider.sessions[0].closed)

    async def test_wall_clock_limit_reports_resource_limit(self):
        provider = RecordingProvider()
        reasoning = ScriptedReasoning([
            CodeAction(code="while True:\n    pass"),
            FinalAnswerAction(answer="ok"),
        ])
        agent = AgentCore(
            "solver", reasoning,
            sandbox_provider=provider,
            limits=ResourceLimits(timeout_seconds=0.2, max_operations=10 ** 12),
        )

        await agent.run("Loop forever")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "resource_limit_exceeded")
        self.assertIn("wall-clock", step.error.message)
        self.assertEqual(provider.sessions[0].release_calls, 1)

    async def test_repeated_limit_breaches_are_fatal(self):
        reasoning = ScriptedReasoning(itertools.repeat(CodeAction(code="while True:\n    pass")))
        agent = AgentCore(
            "solver", reasoning,
            limits=ResourceLimits(max_operations=100),
            resource_limit_retries=1,
        )

        final = await agent.run("Loop forever")

        self.assertEqual(final.exit_reason, ExitReason.FATAL_ERROR)
        self.assertEqual(len(agent.memory.action_steps()), 2)
        self.assertIn("Resource limits exceeded 2 times", final.error.message)

    async def test_capability_error_is_fed_back(self):
        def explode() -> str:
            """Always fails."""
            raise RuntimeError("kaboom")

        reasoning = ScriptedReasoning([CodeAction(code="explode()"), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning, [FunctionTool(explode)])

        await agent.run("Explode")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "capability_error")
        self.assertIn("kaboom", step.error.message)

    async def test_final_answer_checks(self):
        def must_be_good(answer, memory: MemoryStore) -> bool:
            return answer == "good"

        reasoning = ScriptedReasoning([
            FinalAnswerAction(answer="bad"),
            CodeAction(code="final_answer('also bad')"),
            FinalAnswerAction(answer="good"),
        ])
        agent = AgentCore("solver", reasoning, final_answer_checks=[must_be_good])

        final = await agent.run("Answer well")

        self.assertEqual(final.answer, "good")
        rejected = agent.memory.action_steps()
        self.assertEqual(len(rejected), 2)
        for step in rejected:
            self.assertEqual(step.error.kind, "validation_error")
            self.assertIn("must_be_good", step.error.message)
            self.assertFalse(step.is_final_answer)

    async def test_registry_is_frozen_during_a_run(self):
        agent: AgentCore | None = None

        def grow() -> str:
            """Registers another capability."""
            agent.tools.register(FunctionTool(lambda: 1, name="extra"))
            return "grown"

        reasoning = ScriptedReasoning([CodeAction(code="grow()"), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning, [FunctionTool(grow)])

        await agent.run("Grow")

        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "capability_error")
        self.assertIn("frozen", step.error.message)
        self.assertNotIn("extra", agent.tools)
        self.assertFalse(agent.tools.frozen)


class TestAgentInterrupts(unittest.IsolatedAsyncioTestCase):
    """Test interrupt, cancellation and the single-run guard."""

    async def test_interrupt_during_sandbox_execution(self):
        block, started = blocking_tool()
        provider = RecordingProvider()
        reasoning = ScriptedReasoning(itertools.repeat(CodeAction(code="block()")))
        agent = AgentCore("solver", reasoning, [block], sandbox_provider=provider)

        run = asyncio.create_task(agent.run("Wait"))
        await asyncio.wait_for(started.wait(), 5)
        agent.interrupt()
        final = await asyncio.wait_for(run, 5)

        self.assertEqual(final.exit_reason, ExitReason.INTERRUPTED)
        self.assertIs(agent.memory[-1], final)
        self.assertEqual(provider.sessions[0].release_calls, 1)
        self.assertFalse(agent.running)

    async def test_interrupt_in_tool_calling_mode(self):
        block, started = blocking_tool()
        reasoning = ScriptedReasoning(itertools.repeat(ToolCallAction(name="block")))
        agent = AgentCore("caller", reasoning, [block], executor="tool_calling")

        run = asyncio.create_task(agent.run("Wait"))
        await asyncio.wait_for(started.wait(), 5)
        agent.interrupt()
        final = await asyncio.wait_for(run, 5)

        self.assertEqual(final.exit_reason, ExitReason.INTERRUPTED)
        self.assertEqual(final.error.kind, "interrupted")

    async def test_cancellation_records_interrupt_and_propagates(self):
        block, started = blocking_tool()
        provider = RecordingProvider()
        agent = AgentCore(
            "solver",
            ScriptedReasoning([CodeAction(code="block()")]),
            [block],
            sandbox_provider=provider,
        )

        run = asyncio.create_task(agent.run("Wait"))
        await asyncio.wait_for(started.wait(), 5)
        run.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await run

        last = agent.memory[-1]
        self.assertIsInstance(last, FinalStep)
        self.assertEqual(last.exit_reason, ExitReason.INTERRUPTED)
        self.assertEqual(last.error.kind, "cancelled")
        self.assertEqual(provider.sessions[0].release_calls, 1)

    async def test_concurrent_run_on_one_instance_is_refused(self):
        block, started = blocking_tool()
        agent = AgentCore("solver", ScriptedReasoning(itertools.repeat(CodeAction(code="block()"))), [block])

        run = asyncio.create_task(agent.run("Wait"))
        await asyncio.wait_for(started.wait(), 5)
        with self.assertRaises(AgentBusyError):
            await agent.run("Second task")
        agent.interrupt()
        await asyncio.wait_for(run, 5)

    async def test_submit_runs_on_a_worker_thread(self):
        agent = AgentCore("solver", ScriptedReasoning([CodeAction(code="final_answer(6 * 7)")]))
        try:
            final = await asyncio.wrap_future(agent.submit("Compute"))
        finally:
            agent.close()

        self.assertEqual(final.answer, 42)

    async def test_submit_returns_once_a_sleeping_fragment_times_out(self):
        reasoning = ScriptedReasoning([
            CodeAction(code="import time\ntime.sleep(30)"),
            FinalAnswerAction(answer="gave up waiting"),
        ])
        agent = AgentCore("solver", reasoning, limits=ResourceLimits(timeout_seconds=0.3))
        started = time.monotonic()
        try:
            final = await asyncio.wait_for(asyncio.wrap_future(agent.submit("Sleep")), 10)
        finally:
            agent.close()

        self.assertLess(time.monotonic() - started, 10)
        self.assertEqual(final.answer, "gave up waiting")
        step = agent.memory.action_steps()[0]
        self.assertEqual(step.error.kind, "resource_limit_exceeded")


class TestAgentPlanning(unittest.IsolatedAsyncioTestCase):
    """Test planning cadence and plan review."""

    async def test_planning_cadence(self):
        reasoning = ScriptedReasoning([
            CodeAction(code="a = 1"),
            CodeAction(code="b = 2"),
            CodeAction(code="c = 3"),
            FinalAnswerAction(answer="done"),
        ])
        agent = AgentCore("planner", reasoning, planning_interval=2)

        await agent.run("Plan and act")

        plans = [s for s in agent.memory if isinstance(s, PlanningStep)]
        self.assertEqual([p.step_number for p in plans], [1, 3])
        # Each planning step precedes the action step with the same number.
        kinds = [s.kind for s in agent.memory]
        self.assertEqual(kinds, ["system", "task", "planning", "action", "action", "planning", "action", "final"])

    async def test_reviewer_edits_plan(self):
        reviewer = MagicMock()
        reviewer.review.return_value = PlanDecision.edit("1. Do it my way")
        reasoning = ScriptedReasoning([FinalAnswerAction(answer="done")])
        agent = AgentCore("planner", reasoning, planning_interval=1, plan_reviewer=reviewer)

        await agent.run("Plan")

        plan = next(s for s in agent.memory if isinstance(s, PlanningStep))
        self.assertEqual(plan.plan, "1. Do it my way")
        self.assertTrue(plan.edited)
        reviewer.review.assert_called_once()

    async def test_async_reviewer_cancels(self):
        class Reviewer:
            def __init__(self):
                self.reviewed = []

            async def review(self, step: PlanningStep) -> PlanDecision:
                self.reviewed.append(step)
                return PlanDecision.cancel()

        reviewer = Reviewer()
        reasoning = ScriptedReasoning([FinalAnswerAction(answer="never")])
        agent = AgentCore("planner", reasoning, planning_interval=1, plan_reviewer=reviewer)

        final = await agent.run("Plan")

        self.assertEqual(final.exit_reason, ExitReason.INTERRUPTED)
        self.assertEqual(final.error.kind, "plan_cancelled")
        self.assertEqual(reasoning.calls, 0)
        self.assertEqual(len(reviewer.reviewed), 1)

    async def test_planning_provider_failure_is_fatal(self):
        reasoning = ScriptedReasoning([], plans=[ProviderUnavailable("down")])
        agent = AgentCore("planner", reasoning, planning_interval=1, provider_retries=0)

        final = await agent.run("Plan")

        self.assertEqual(final.exit_reason, ExitReason.FATAL_ERROR)

    async def test_plan_token_usage_is_recorded(self):
        reasoning = ScriptedReasoning(
            [FinalAnswerAction(answer="done")],
            plans=[Plan(plan="1. Finish", facts="None", token_usage=TokenUsage(100, 20))],
        )
        agent = AgentCore("planner", reasoning, planning_interval=1)

        await agent.run("Plan")

        self.assertEqual(agent.memory.total_token_usage().total_tokens, 120)


class TestAgentMemory(unittest.IsolatedAsyncioTestCase):
    """Test multi-turn memory, replay and task context."""

    async def test_reset_history_false_appends_only_a_task_step(self):
        reasoning = ScriptedReasoning([
            CodeAction(code="total = 5"),
            FinalAnswerAction(answer="first"),
            FinalAnswerAction(answer="second"),
        ])
        agent = AgentCore("chat", reasoning)

        await agent.run("First question")
        before = len(agent.memory)
        final = await agent.run("Follow up", reset_history=False)

        self.assertEqual(final.answer, "second")
        self.assertEqual([s.kind for s in agent.memory[before:]], ["task", "final"])
        self.assertEqual(len([s for s in agent.memory if isinstance(s, SystemStep)]), 1)
        self.assertEqual(len(agent.memory.runs()), 2)
        # The second run saw the first run's history.
        self.assertTrue(any(isinstance(s, ActionStep) for s in reasoning.seen[-1]))

    async def test_reset_history_clears_memory(self):
        reasoning = ScriptedReasoning([FinalAnswerAction(answer="1"), FinalAnswerAction(answer="2")])
        agent = AgentCore("chat", reasoning)

        await agent.run("One")
        await agent.run("Two")

        self.assertEqual([s.kind for s in agent.memory], ["system", "task", "final"])
        self.assertEqual(agent.memory[1].task.goal, "Two")

    async def test_replay_reproduces_the_store(self):
        add, _ = counting_add()
        reasoning = ScriptedReasoning([
            CodeAction(code="x = add(2, 2)"),
            ActionParseError("no code"),
            CodeAction(code="final_answer(x)"),
        ])
        agent = AgentCore("solver", reasoning, [add], planning_interval=2)
        await agent.run("Replay me")

        replayed = MemoryStore.replay(agent.memory.steps)

        self.assertEqual(replayed, agent.memory)
        self.assertEqual(replayed.to_dicts(), agent.memory.to_dicts())

    async def test_task_context_is_visible_to_code(self):
        reasoning = ScriptedReasoning([CodeAction(code="final_answer(n * 2)")])
        agent = AgentCore("solver", reasoning)

        final = await agent.run(Task(goal="Double n", context={"n": 21}))

        self.assertEqual(final.answer, 42)
        task_step = next(s for s in agent.memory if isinstance(s, TaskStep))
        self.assertEqual(task_step.task.context["n"], 21)

    async def test_empty_code_observation(self):
        reasoning = ScriptedReasoning([CodeAction(code="   "), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning)

        await agent.run("Nothing")

        self.assertEqual(agent.memory.action_steps()[0].observation, NO_OUTPUT)


class TestAgentObservability(unittest.IsolatedAsyncioTestCase):
    """Test step callbacks, events and tracing."""

    async def test_step_callbacks_see_every_step_in_order(self):
        seen = []
        reasoning = ScriptedReasoning([CodeAction(code="x = 1"), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning, step_callbacks=[seen.append], planning_interval=5)

        await agent.run("Observe")

        self.assertEqual(seen, list(agent.memory))

    async def test_failing_callback_does_not_break_the_run(self):
        def broken(step):
            raise ValueError("callback bug")

        agent = AgentCore("solver", ScriptedReasoning([FinalAnswerAction(answer="ok")]), step_callbacks=[broken])

        final = await agent.run("Observe")

        self.assertEqual(final.exit_reason, ExitReason.FINAL_ANSWER)

    async def test_events_follow_state_transitions(self):
        sink = CollectingEventSink()
        reasoning = ScriptedReasoning([CodeAction(code="x = 1"), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning, event_sinks=[sink])

        await agent.run("Observe")

        self.assertEqual(sink.states(), [
            AgentState.INIT,
            AgentState.REASONING,
            AgentState.DISPATCHING,
            AgentState.OBSERVING,
            AgentState.REASONING,
            AgentState.TERMINATING,
        ])
        self.assertEqual(len({e.run_id for e in sink.events}), 1)
        self.assertTrue(all(e.agent_name == "solver" for e in sink.events))
        observing = sink.events[3]
        self.assertEqual(observing.step_number, 1)
        self.assertEqual(observing.token_usage.total_tokens, 15)
        self.assertIsNotNone(observing.duration_ms)
        self.assertEqual(sink.events[-1].detail["exit_reason"], "final_answer")

    async def test_run_is_traced_and_exported(self):
        exporter = MagicMock()
        tracer = Tracer(exporter=exporter)
        add, _ = counting_add()
        reasoning = ScriptedReasoning([CodeAction(code="add(1, 1)"), FinalAnswerAction(answer="ok")])
        agent = AgentCore("solver", reasoning, [add], event_sinks=[TracerEventSink()])

        token = tracer.activate()
        try:
            await agent.run("Trace me")
        finally:
            tracer.deactivate(token)

        exporter.export.assert_called_once()
        root = exporter.export.call_args.args[0]
        self.assertEqual(root.kind, SpanKind.RUN)
        self.assertEqual(root.attributes["exit_reason"], "final_answer")
        self.assertEqual(len(root.find(SpanKind.STEP)), 2)
        self.assertEqual([s.name for s in root.find(SpanKind.TOOL_CALL)], ["add"])
        self.assertEqual(root.events[0]["state"], "init")


class TestAgentConstruction(unittest.TestCase):
    """Test configuration errors raised at construction."""

    def test_invalid_name(self):
        with self.assertRaises(ConfigurationError):
            AgentCore("not an identifier", ScriptedReasoning([]))

    def test_invalid_budget(self):
        with self.assertRaises(ConfigurationError):
            AgentCore("solver", ScriptedReasoning([]), max_steps=0)

    def test_invalid_planning_interval(self):
        with self.assertRaises(ConfigurationError):
            AgentCore("solver", ScriptedReasoning([]), planning_interval=0)

    def test_tool_calling_agent_registers_final_answer(self):
        agent = AgentCore("caller", ScriptedReasoning([]), executor="tool_calling")
        self.assertIn("final_answer", agent.tools)

    def test_registry_is_copied(self):
        add, _ = counting_add()
        shared = ToolRegistry([add])
        first = AgentCore("first", ScriptedReasoning([]), shared)
        second = AgentCore("second", ScriptedReasoning([]), shared, executor="tool_calling")
        self.assertEqual(first.tools.names(), ["add"])
        self.assertEqual(second.tools.names(), ["add", "final_answer"])
        self.assertEqual(shared.names(), ["add"])

    def test_run_state_starts_clear(self):
        agent = AgentCore("solver", ScriptedReasoning([]))
        self.assertFalse(agent.running)
        self.assertEqual(agent._resource_breaches, 0)


if __name__ == '__main__':
    unittest.main()
