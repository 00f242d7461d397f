"""The step loop: reason, dispatch, observe, repeat until a terminal condition."""

import asyncio
import concurrent.futures
import contextlib
import inspect
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Sequence

from agentloop.action import FinalAnswerAction
from agentloop.config import AgentConfig, ExecutorKind
from agentloop.context import ExecutionContext
from agentloop.delegation import ManagedAgentTool, find_delegation_path
from agentloop.events import AgentEvent, EventSink
from agentloop.exceptions import (
    ActionParseError,
    AgentBusyError,
    ConfigurationError,
    DelegationCycleError,
    ExecutionError,
    FatalError,
    ProviderUnavailable,
    ResourceLimitExceeded,
    RunInterrupted,
    ValidationError,
)
from agentloop.executor import ActionExecutor, CodeActionExecutor, Observation, ToolCallingExecutor
from agentloop.llm import ChatLLM, ChatLLMFactory
from agentloop.memory import (
    ActionStep,
    ExitReason,
    FinalStep,
    MemoryStep,
    MemoryStore,
    RetentionPolicy,
    StepError,
    Timing,
    TokenUsage,
    snapshot,
)
from agentloop.reasoning import LLMReasoningEngine, ReasoningEngine
from agentloop.sandbox import ResourceLimits, SandboxKind, SandboxProvider, SandboxSession
from agentloop.state import AgentState, PlanDecisionKind, PlanReviewer
from agentloop.task import Task
from agentloop.tool import FinalAnswerTool, SchematicTool, ToolRegistry
from agentloop.tracer import SpanKind, get_active_tracer

logger = logging.getLogger(__name__)

FinalAnswerCheck = Callable[[Any, MemoryStore], bool]
StepCallback = Callable[[MemoryStep], Any]


class AgentCore:
    """A ReAct agent: one reasoning engine, one executor, one memory.

    Runs on one instance are sequential; independent instances may run
    concurrently, each with its own memory and sandbox session.
    """

    def __init__(
            self,
            name: str,
            reasoning: ReasoningEngine,
            tools: Iterable[SchematicTool] = (),
            *,
            description: str = "",
            executor: ActionExecutor | ExecutorKind | str = ExecutorKind.Code,
            sandbox_provider: SandboxProvider | None = None,
            sandbox_kind: SandboxKind | str = SandboxKind.LOCAL,
            limits: ResourceLimits | None = None,
            max_steps: int = 20,
            planning_interval: int | None = None,
            plan_reviewer: PlanReviewer | None = None,
            provider_retries: int = 3,
            provider_backoff: float = 1.0,
            resource_limit_retries: int = 3,
            retention: RetentionPolicy | None = None,
            managed_agents: Iterable['AgentCore'] = (),
            max_delegation_depth: int = 5,
            provide_run_summary: bool = False,
            final_answer_checks: Sequence[FinalAnswerCheck] = (),
            step_callbacks: Sequence[StepCallback] = (),
            event_sinks: Sequence[EventSink] = (),
            memory: MemoryStore | None = None,
            ctx: ExecutionContext | None = None,
    ):
        if not isinstance(name, str) or not name.isidentifier():
            raise ConfigurationError(f"Agent name {name!r} must be a valid Python identifier")
        if max_steps < 1:
            raise ConfigurationError("max_steps must be at least 1")
        if planning_interval is not None and planning_interval < 1:
            raise ConfigurationError("planning_interval must be at least 1 when set")
        if provider_retries < 0 or resource_limit_retries < 0:
            raise ConfigurationError("Retry counts must not be negative")

        self.name = name
        self.description = description
        self.reasoning = reasoning
        self.sandbox_provider = sandbox_provider or SandboxProvider()
        self.sandbox_kind = SandboxKind(sandbox_kind)
        self.limits = limits
        self.max_steps = max_steps
        self.planning_interval = planning_interval
        self.plan_reviewer = plan_reviewer
        self.provider_retries = provider_retries
        self.provider_backoff = provider_backoff
        self.resource_limit_retries = resource_limit_retries
        self.retention = retention or RetentionPolicy()
        self.max_delegation_depth = max_delegation_depth
        self.provide_run_summary = provide_run_summary
        self.final_answer_checks = list(final_answer_checks)
        self.step_callbacks = list(step_callbacks)
        self.event_sinks = list(event_sinks)
        self.memory = memory if memory is not None else MemoryStore()

        if isinstance(executor, ActionExecutor):
            self.executor = executor
        elif ExecutorKind(executor) == ExecutorKind.Code:
            self.executor = CodeActionExecutor(self.sandbox_provider.authorized_imports, ctx)
        else:
            self.executor = ToolCallingExecutor(ctx)

        self.tools = ToolRegistry(tools)
        if self.executor.kind == ExecutorKind.ToolCalling.value and FinalAnswerTool().name not in self.tools:
            self.tools.register(FinalAnswerTool())

        self.managed_agents: dict[str, AgentCore] = {}
        for agent in managed_agents:
            self.add_managed_agent(agent)

        self._running = False
        self._interrupt: asyncio.Event | None = None
        self._interrupt_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._run_id = ""
        self._resource_breaches = 0
        self._pool: concurrent.futures.ThreadPoolExecutor | None = None

    @classmethod
    def from_config(
            cls,
            config: AgentConfig,
            chat_llm: ChatLLM | None = None,
            tools: Iterable[SchematicTool] = (),
            **kwargs,
    ) -> 'AgentCore':
        """Build an agent, and its managed agents, from configuration.

        *chat_llm* is used when the config has no ``chat_llm`` section; managed
        agents without one use their manager's model.
        """
        llm = ChatLLMFactory(default=chat_llm).get(config.chat_llm)
        reasoning = LLMReasoningEngine(
            llm,
            mode=config.executor,
            authorized_imports=config.sandbox.authorized_imports,
            lang=config.template_lang,
            max_steps=config.max_steps,
        )
        managed = [cls.from_config(c, chat_llm=llm) for c in config.managed_agents]
        return cls(
            config.name,
            reasoning,
            tools,
            description=config.description,
            executor=config.executor,
            sandbox_provider=SandboxProvider.from_config(config.sandbox),
            sandbox_kind=config.sandbox.kind,
            limits=config.sandbox.limits,
            max_steps=config.max_steps,
            planning_interval=config.planning_interval,
            provider_retries=config.provider_retries,
            provider_backoff=config.provider_backoff,
            resource_limit_retries=config.resource_limit_retries,
            retention=config.retention,
            managed_agents=managed,
            max_delegation_depth=config.max_delegation_depth,
            provide_run_summary=config.provide_run_summary,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    def add_managed_agent(self, agent: 'AgentCore') -> ManagedAgentTool:
        """Expose *agent* as a capability of this agent.

        Raises:
            DelegationCycleError: *agent* is this agent or can already
                delegate back to it.
        """
        if agent is self:
            raise DelegationCycleError([self.name, self.name])
        path = find_delegation_path(agent, self)
        if path is not None:
            raise DelegationCycleError([self.name] + path)
        managed = ManagedAgentTool(agent, max_depth=self.max_delegation_depth)
        self.tools.register(managed)
        self.managed_agents[agent.name] = agent
        logger.debug("Agent %s manages %s", self.name, agent.name)
        return managed

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def interrupt(self):
        """Ask the current run to stop. Safe to call from any thread."""
        self._interrupt_requested = True
        loop, event = self._loop, self._interrupt
        if loop is None or event is None or loop.is_closed():
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    def submit(self, task: Task | str, reset_history: bool = True) -> 'concurrent.futures.Future[FinalStep]':
        """Run on a dedicated worker thread with its own event loop."""
        if self._pool is None:
            self._pool = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"agentloop-{self.name}",
            )
        return self._pool.submit(asyncio.run, self.run(task, reset_history=reset_history))

    def close(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, task: Task | str, reset_history: bool = True) -> FinalStep:
        """Pursue *task* until a final answer, the step budget, a fatal error or an interrupt.

        Task failures are reported in the returned :class:`FinalStep`.

        Raises:
            AgentBusyError: a run on this instance is already in progress.
            ConfigurationError: the sandbox session can not be created.
        """
        if self._running:
            raise AgentBusyError(self.name)
        task = Task.coerce(task)
        self._running = True
        self._run_id = uuid.uuid4().hex
        self._loop = asyncio.get_running_loop()
        self._interrupt = asyncio.Event()
        self._interrupt_requested = False
        sandbox: SandboxSession | None = None
        started = datetime.now()
        try:
            if self.executor.requires_sandbox:
                sandbox = self.sandbox_provider.create_session(self.sandbox_kind, self.limits)
            tracer = get_active_tracer()
            async with self._span(SpanKind.RUN, self.name, task=task.goal, run_id=self._run_id) as span:
                with self.tools.freeze():
                    final = await self._run(task, reset_history, sandbox)
                if span is not None:
                    span.set_attribute("exit_reason", final.exit_reason.value)
            if tracer is not None and span is not None and span.parent is None:
                tracer.export(span)
            self._emit(
                AgentState.TERMINATING, 0, started,
                token_usage=self.memory.total_token_usage(),
                exit_reason=final.exit_reason.value,
            )
            return final
        finally:
            if sandbox is not None:
                await sandbox.teardown()
            self._running = False
            self._loop = None
            self._interrupt = None

    async def _run(self, task: Task, reset_history: bool, sandbox: SandboxSession | None) -> FinalStep:
        if reset_history:
            self.memory.reset()
        system_prompt = self.reasoning.system_prompt(self.tools) if len(self.memory) == 0 else None
        start = len(self.memory)
        self.memory.begin_run(task, system_prompt)
        for step in self.memory[start:]:
            self._record(step)
        self._emit(AgentState.INIT, 0, task=task.goal)
        logger.info("Agent %s started run %s: %s", self.name, self._run_id[:8], task.goal)

        try:
            if sandbox is not None and task.context:
                await sandbox.set_variables(task.context)
            return await self._loop_steps(sandbox)
        except RunInterrupted as e:
            logger.info("Agent %s interrupted: %s", self.name, e)
            return self._finish(None, ExitReason.INTERRUPTED, StepError("interrupted", e.msg))
        except FatalError as e:
            logger.error("Agent %s failed: %s", self.name, e)
            return self._finish(None, ExitReason.FATAL_ERROR, StepError("fatal_error", e.msg))
        except asyncio.CancelledError:
            if self.memory.run_active:
                self._finish(None, ExitReason.INTERRUPTED, StepError("cancelled", "Run was cancelled"))
            raise
        except Exception as e:
            logger.exception("Unexpected error in agent %s", self.name)
            return self._finish(None, ExitReason.FATAL_ERROR, StepError("fatal_error", f"{type(e).__name__}: {e}"))

    async def _loop_steps(self, sandbox: SandboxSession | None) -> FinalStep:
        step_number = 0
        self._resource_breaches = 0
        while True:
            if self._interrupted:
                raise RunInterrupted()
            if step_number >= self.max_steps:
                logger.warning("Agent %s reached its budget of %d steps", self.name, self.max_steps)
                return self._finish(self.memory.last_observation(), ExitReason.STEP_BUDGET_EXCEEDED)
            step_number += 1
            async with self._span(SpanKind.STEP, f"step {step_number}", step_number=step_number):
                final = await self._step(step_number, sandbox)
            if final is not None:
                return final

    async def _step(self, step_number: int, sandbox: SandboxSession | None) -> FinalStep | None:
        if self._planning_due(step_number):
            final = await self._planning_step(step_number)
            if final is not None:
                return final

        started = datetime.now()
        self._emit(AgentState.REASONING, step_number)
        try:
            proposal = await self._with_retries(
                lambda: self.reasoning.next_action(snapshot(self.memory, self.retention), self.tools)
            )
        except ActionParseError as e:
            logger.info("Step %d: unparsable model output: %s", step_number, e)
            self._append_action(
                step_number, started,
                rationale=e.raw_output or "",
                error=StepError.from_exception(e),
            )
            return None

        action = proposal.action
        if isinstance(action, FinalAnswerAction):
            rejection = self._check_final_answer(action.answer)
            if rejection is None:
                return self._finish(action.answer, ExitReason.FINAL_ANSWER)
            self._append_action(
                step_number, started,
                rationale=proposal.rationale,
                action=action,
                error=StepError.from_exception(rejection),
                token_usage=proposal.token_usage,
            )
            return None

        self._emit(AgentState.DISPATCHING, step_number, action=action.type.value)
        async with self._span(SpanKind.ACTION, action.type.value):
            result = await self._interruptible(
                self.executor.dispatch(action, self.tools, sandbox, interrupt=self._interrupt)
            )

        if isinstance(result, ExecutionError):
            if isinstance(result, ResourceLimitExceeded):
                self._resource_breaches += 1
            self._append_action(
                step_number, started,
                rationale=proposal.rationale,
                action=action,
                observation=result.logs or None,
                error=StepError.from_exception(result),
                token_usage=proposal.token_usage,
            )
            if self._resource_breaches > self.resource_limit_retries:
                raise FatalError(
                    f"Resource limits exceeded {self._resource_breaches} times; last: {result.msg}", result,
                )
            return None

        assert isinstance(result, Observation)
        if result.is_final_answer:
            rejection = self._check_final_answer(result.value)
            self._append_action(
                step_number, started,
                rationale=proposal.rationale,
                action=action,
                observation=result.text,
                error=StepError.from_exception(rejection) if rejection is not None else None,
                is_final_answer=rejection is None,
                token_usage=proposal.token_usage,
            )
            if rejection is None:
                return self._finish(result.value, ExitReason.FINAL_ANSWER)
            return None

        self._append_action(
            step_number, started,
            rationale=proposal.rationale,
            action=action,
            observation=result.text,
            token_usage=proposal.token_usage,
        )
        return None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _planning_due(self, step_number: int) -> bool:
        if self.planning_interval is None:
            return False
        return (step_number - 1) % self.planning_interval == 0

    async def _planning_step(self, step_number: int) -> FinalStep | None:
        started = datetime.now()
        self._emit(AgentState.PLANNING, step_number)
        async with self._span(SpanKind.PLANNING, f"plan before step {step_number}"):
            plan = await self._with_retries(
                lambda: self.reasoning.plan(snapshot(self.memory, self.retention), self.tools, step_number)
            )
        step = self.memory.append_planning(
            plan.plan,
            facts=plan.facts,
            step_number=step_number,
            token_usage=plan.token_usage,
            timing=Timing.since(started),
        )
        self._record(step)
        if self.plan_reviewer is None:
            return None

        decision = self.plan_reviewer.review(step)
        if inspect.isawaitable(decision):
            decision = await decision
        match decision.kind:
            case PlanDecisionKind.APPROVE:
                logger.debug("Plan approved")
            case PlanDecisionKind.EDIT:
                logger.info("Plan edited by reviewer")
                self.memory.revise_plan(decision.plan)
            case PlanDecisionKind.CANCEL:
                logger.info("Plan cancelled by reviewer")
                return self._finish(None, ExitReason.INTERRUPTED, StepError("plan_cancelled", "Plan cancelled by reviewer"))
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def _interrupted(self) -> bool:
        return self._interrupt_requested or (self._interrupt is not None and self._interrupt.is_set())

    async def _interruptible(self, awaitable: Awaitable[Any]) -> Any:
        """Await *awaitable* unless the interrupt signal fires first."""
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._interrupt.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Interrupted work ended with %s: %s", type(e).__name__, e)
        raise RunInterrupted()

    async def _with_retries(self, call: Callable[[], Awaitable[Any]]) -> Any:
        """Call the reasoning engine, backing off while its provider is unavailable."""
        delay = self.provider_backoff
        attempt = 0
        while True:
            try:
                return await self._interruptible(call())
            except ProviderUnavailable as e:
                attempt += 1
                if attempt > self.provider_retries:
                    raise FatalError(f"Reasoning provider unavailable after {attempt} attempts: {e}", e) from e
                logger.warning(
                    "Reasoning provider unavailable (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, self.provider_retries + 1, delay, e,
                )
                await self._interruptible(asyncio.sleep(delay))
                delay *= 2

    def _check_final_answer(self, answer: Any) -> ValidationError | None:
        for check in self.final_answer_checks:
            name = getattr(check, "__name__", repr(check))
            try:
                accepted = check(answer, self.memory)
            except Exception as e:
                return ValidationError(f"Final answer check '{name}' failed: {type(e).__name__}: {e}")
            if not accepted:
                return ValidationError(f"Final answer check '{name}' rejected the answer")
        return None

    def _append_action(self, step_number: int, started: datetime, **fields) -> ActionStep:
        step = self.memory.append_action(step_number, timing=Timing.since(started), **fields)
        self._record(step)
        self._emit(
            AgentState.OBSERVING, step_number, started,
            token_usage=step.token_usage,
            **({"error": step.error.kind} if step.error is not None else {}),
        )
        return step

    def _finish(self, answer: Any, exit_reason: ExitReason, error: StepError | None = None) -> FinalStep:
        step = self.memory.append_final(answer, exit_reason, error)
        self._record(step)
        logger.info("Agent %s finished run %s: %s", self.name, self._run_id[:8], exit_reason.value)
        return step

    def _record(self, step: MemoryStep):
        for callback in self.step_callbacks:
            try:
                callback(step)
            except Exception:
                logger.exception("Step callback %r failed", callback)

    def _emit(
            self,
            state: AgentState,
            step_number: int,
            started: datetime | None = None,
            token_usage: TokenUsage | None = None,
            **detail,
    ):
        if not self.event_sinks:
            return
        event = AgentEvent(
            run_id=self._run_id,
            agent_name=self.name,
            state=state,
            step_number=step_number,
            duration_ms=Timing.since(started).duration_ms if started is not None else None,
            token_usage=token_usage,
            detail=detail,
        )
        for sink in self.event_sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.exception("Event sink %r failed", sink)

    @staticmethod
    def _span(kind: SpanKind, name: str, **attributes):
        tracer = get_active_tracer()
        if tracer is None:
            return contextlib.nullcontext()
        return tracer.span(kind, name, attributes)

    def __repr__(self) -> str:
        return f"AgentCore(name={self.name!r}, executor={self.executor.kind!r}, tools={self.tools.names()})"
