import asyncio
import logging
import threading
from typing import Any, Callable, Iterable, Mapping

from agentloop.action import FINAL_ANSWER_NAME
from agentloop.sandbox.base import (
    CapabilityHandle,
    ExecutionOutput,
    ResourceLimits,
    SandboxCapability,
    SandboxKind,
    SandboxSession,
)
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS, FinalAnswerSignal, RestrictedInterpreter

logger = logging.getLogger(__name__)


def _final_answer(*args, **kwargs):
    if args:
        raise FinalAnswerSignal(args[0])
    raise FinalAnswerSignal(kwargs.get("answer"))


class LocalSandbox(SandboxSession):
    """Runs fragments in the restricted interpreter on a worker thread.

    Capability handles are coroutines owned by the host loop; the worker thread
    schedules them back onto that loop and blocks on the result.
    """

    kind = SandboxKind.LOCAL
    capabilities = SandboxCapability.PERSIST_ACROSS_CALLS

    def __init__(
            self,
            limits: ResourceLimits | None = None,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
    ):
        super().__init__(limits)
        self.interpreter = RestrictedInterpreter(authorized_imports)
        self._stop: threading.Event | None = None
        self._pending: set = set()

    async def set_variables(self, variables: Mapping[str, Any]):
        await super().set_variables(variables)
        self.interpreter.state.update(variables)

    def _bridge(self, loop: asyncio.AbstractEventLoop, name: str, handle: CapabilityHandle) -> Callable[..., Any]:
        if name == FINAL_ANSWER_NAME:
            return _final_answer

        def call(*args, **kwargs):
            future = asyncio.run_coroutine_threadsafe(handle(*args, **kwargs), loop)
            self._pending.add(future)
            try:
                return future.result()
            finally:
                self._pending.discard(future)

        call.__name__ = name
        return call

    async def _execute(
            self,
            fragment: str,
            capabilities: dict[str, CapabilityHandle],
            limits: ResourceLimits,
    ) -> ExecutionOutput:
        loop = asyncio.get_running_loop()
        tools = {name: self._bridge(loop, name, handle) for name, handle in capabilities.items()}
        tools.setdefault(FINAL_ANSWER_NAME, _final_answer)
        # Each fragment gets its own stop flag so an abandoned thread never sees a cleared one.
        stop = threading.Event()
        self._stop = stop
        result = await asyncio.to_thread(self.interpreter.run, fragment, tools, limits.max_operations, stop)
        return ExecutionOutput(
            output=result.output,
            return_value=result.value,
            is_final_answer=result.is_final_answer,
            error=result.error,
        )

    async def _abort(self):
        if self._stop is not None:
            self._stop.set()
        for future in list(self._pending):
            future.cancel()

    async def _release(self):
        await self._abort()
        self.interpreter.state.clear()
