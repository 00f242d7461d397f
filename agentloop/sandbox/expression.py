import asyncio
import logging
import numbers
import threading
from typing import Any

from agentloop.action import FINAL_ANSWER_NAME
from agentloop.exceptions import SandboxExecutionError
from agentloop.sandbox.base import (
    CapabilityHandle,
    ExecutionOutput,
    ResourceLimits,
    SandboxCapability,
    SandboxKind,
    SandboxSession,
)
from agentloop.sandbox.interpreter import FinalAnswerSignal, RestrictedInterpreter

logger = logging.getLogger(__name__)

MAX_EXPRESSION_OPERATIONS = 100_000


def _final_answer(*args, **kwargs):
    raise FinalAnswerSignal(args[0] if args else kwargs.get("answer"))


def _is_plain(value: Any) -> bool:
    if value is None or isinstance(value, (str, bool, numbers.Number)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_plain(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_plain(v) for k, v in value.items())
    return False


class ExpressionSandbox(SandboxSession):
    """Memory-isolated evaluator for side-effect-free numeric fragments.

    Every fragment starts from an empty state; only plain values set through
    :meth:`set_variables` are visible, imports are refused and the only
    capability is ``final_answer``.
    """

    kind = SandboxKind.EXPRESSION
    capabilities = SandboxCapability.ISOLATE
    _stop: threading.Event | None = None

    async def _execute(
            self,
            fragment: str,
            capabilities: dict[str, CapabilityHandle],
            limits: ResourceLimits,
    ) -> ExecutionOutput:
        self._stop = threading.Event()
        interpreter = RestrictedInterpreter(authorized_imports=())
        interpreter.state.update({k: v for k, v in self._variables.items() if _is_plain(v)})
        max_operations = min(limits.max_operations, MAX_EXPRESSION_OPERATIONS)
        result = await asyncio.to_thread(
            interpreter.run, fragment, {FINAL_ANSWER_NAME: _final_answer}, max_operations, self._stop,
        )
        if result.error is None and not _is_plain(result.value):
            return ExecutionOutput(output=result.output, error=SandboxExecutionError(
                f"Expression produced a non-plain value of type {type(result.value).__name__}"
            ))
        return ExecutionOutput(
            output=result.output,
            return_value=result.value,
            is_final_answer=result.is_final_answer,
            error=result.error,
        )

    async def _abort(self):
        if self._stop is not None:
            self._stop.set()

    async def _release(self):
        await self._abort()
        self._variables.clear()
