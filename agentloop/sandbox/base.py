"""Sandbox session contract shared by every isolation boundary.

A session runs program fragments and reports what they produced.  Every
variant honours the same guarantees:

* state created by a fragment stays inside its session
* wall-clock limits are enforced here, uniformly, by racing the variant's
  execution against the deadline and the run's interrupt signal; variants add
  their own operation, CPU or memory ceilings
* a limit breach is reported as :class:`ResourceLimitExceeded`, never a hang
* :meth:`SandboxSession.teardown` is idempotent and always releases the
  underlying thread, process, container or connection
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from agentloop.exceptions import ExecutionError, ResourceLimitExceeded, RunInterrupted, SandboxExecutionError

logger = logging.getLogger(__name__)

NO_OUTPUT = "(no output)"

# An awaitable handle through which a fragment invokes a registered capability.
CapabilityHandle = Callable[..., Awaitable[Any]]


class SandboxKind(str, enum.Enum):
    LOCAL = "local"
    PROCESS = "process"
    CONTAINER = "container"
    REMOTE = "remote"
    EXPRESSION = "expression"


class SandboxCapability(enum.Flag):
    NONE = 0
    ISOLATE = enum.auto()
    LIMIT_CPU = enum.auto()
    LIMIT_MEMORY = enum.auto()
    LIMIT_NETWORK = enum.auto()
    PERSIST_ACROSS_CALLS = enum.auto()


class ResourceLimits(BaseModel):
    timeout_seconds: Annotated[float, Field(
        description="Wall-clock limit for a single fragment",
        default=30.0,
        gt=0,
    )]
    max_operations: Annotated[int, Field(
        description="Ceiling on interpreted operations per fragment (in-process evaluators)",
        default=1_000_000,
        gt=0,
    )]
    max_memory_mb: Annotated[int | None, Field(
        description="Address space ceiling for process and container sandboxes",
        default=512,
        gt=0,
    )]
    cpu_seconds: Annotated[int | None, Field(
        description="CPU time ceiling for process and container sandboxes",
        default=None,
        gt=0,
    )]
    allow_network: Annotated[bool, Field(
        description="Whether fragments may open network connections (container sandbox)",
        default=False,
    )]


@dataclass
class ExecutionOutput:
    """What one fragment produced."""
    output: str = ""
    return_value: Any = None
    is_final_answer: bool = False
    error: ExecutionError | None = None

    @property
    def observation(self) -> str:
        """Observation text built from captured output and the return value."""
        parts = []
        if self.output.strip():
            parts.append(self.output.rstrip("\n"))
        if self.return_value is not None and not self.is_final_answer:
            parts.append(f"Last output from code snippet:\n{self.return_value!r}")
        return "\n".join(parts) if parts else NO_OUTPUT


class SandboxSession(ABC):
    """One isolation boundary instance, exclusively owned by one executor."""

    kind: SandboxKind
    capabilities: SandboxCapability = SandboxCapability.NONE

    def __init__(self, limits: ResourceLimits | None = None):
        self.limits = limits or ResourceLimits()
        self._torn_down = False
        self._variables: dict[str, Any] = {}

    @property
    def closed(self) -> bool:
        return self._torn_down

    async def set_variables(self, variables: Mapping[str, Any]):
        """Make *variables* visible to subsequent fragments."""
        self._variables.update(variables)

    async def execute(
            self,
            fragment: str,
            capabilities: Mapping[str, CapabilityHandle] | None = None,
            limits: ResourceLimits | None = None,
            interrupt: asyncio.Event | None = None,
    ) -> ExecutionOutput:
        """Run *fragment* and return its output; faults are returned, not raised.

        Raises:
            RunInterrupted: when *interrupt* is set before the fragment finishes.
                The variant's in-flight work is aborted first.
        """
        if self._torn_down:
            raise SandboxExecutionError(f"{self.kind.value} sandbox session has been torn down")
        limits = limits or self.limits
        capabilities = dict(capabilities or {})
        if interrupt is not None and interrupt.is_set():
            raise RunInterrupted()

        work = asyncio.ensure_future(self._execute(fragment, capabilities, limits))
        waiters: set[asyncio.Future] = {work}
        interrupt_waiter = None
        if interrupt is not None:
            interrupt_waiter = asyncio.ensure_future(interrupt.wait())
            waiters.add(interrupt_waiter)
        try:
            done, _ = await asyncio.wait(waiters, timeout=limits.timeout_seconds, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._cancel(work)
            raise
        finally:
            if interrupt_waiter is not None and not interrupt_waiter.done():
                interrupt_waiter.cancel()

        if work in done:
            try:
                return work.result()
            except ExecutionError as e:
                return ExecutionOutput(error=e)
        await self._cancel(work)
        if interrupt_waiter is not None and interrupt_waiter in done:
            logger.info("Sandbox execution interrupted")
            raise RunInterrupted()
        logger.warning("Sandbox execution exceeded %.1fs", limits.timeout_seconds)
        return ExecutionOutput(error=ResourceLimitExceeded(
            f"Execution exceeded the wall-clock limit of {limits.timeout_seconds}s",
            limit="timeout",
        ))

    async def _cancel(self, work: asyncio.Future):
        await self._abort()
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Aborted fragment ended with %s: %s", type(e).__name__, e)

    async def teardown(self):
        """Release all resources held by the session. Safe to call repeatedly."""
        if self._torn_down:
            return
        self._torn_down = True
        try:
            await self._release()
        finally:
            logger.debug("%s sandbox session torn down", self.kind.value)

    async def __aenter__(self) -> 'SandboxSession':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.teardown()

    @abstractmethod
    async def _execute(
            self,
            fragment: str,
            capabilities: dict[str, CapabilityHandle],
            limits: ResourceLimits,
    ) -> ExecutionOutput:
        ...

    async def _abort(self):
        """Stop in-flight work after a timeout or interrupt."""
        pass

    @abstractmethod
    async def _release(self):
        ...
