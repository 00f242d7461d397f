"""Action executor contract and the capability invocation shared by both variants."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

from agentloop.action import Action
from agentloop.context import ExecutionContext, LoggingExecutionContext
from agentloop.exceptions import CapabilityError, ExecutionError, RunInterrupted
from agentloop.sandbox.base import NO_OUTPUT, SandboxSession
from agentloop.tool.base import SchematicTool
from agentloop.tool.registry import ToolRegistry
from agentloop.tool.types import ToolError, ToolResult
from agentloop.tracer import trace_tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """Successful outcome of dispatching one action."""
    text: str = NO_OUTPUT
    is_final_answer: bool = False
    value: Any = None


DispatchResult = Observation | ExecutionError


@trace_tool()
async def invoke_capability(
        tool: SchematicTool,
        arguments: Mapping[str, Any],
        ctx: ExecutionContext,
        tool_name: str | None = None,
) -> Any:
    """Validate *arguments*, call *tool* and unwrap its output.

    Returns the raw value, or the text of a :class:`ToolResult`.

    Raises:
        ValidationError: the arguments do not match the schema; the tool is
            not invoked.
        CapabilityError: the tool raised or returned a :class:`ToolError`.
    """
    validated = tool.validate_arguments(arguments)
    logger.debug("Calling capability %s with %s", tool.name, validated)
    try:
        result = await tool.call(ctx, **validated)
    except (ExecutionError, RunInterrupted):
        raise
    except Exception as e:
        logger.exception("Error executing capability %s", tool.name)
        raise CapabilityError(tool.name, f"{type(e).__name__}: {e}") from e
    if isinstance(result, ToolError):
        raise CapabilityError(tool.name, result.error_message)
    if isinstance(result, ToolResult):
        return result.result
    return result


class ActionExecutor(ABC):
    """Turns an action into an observation or an execution error.

    Errors caused by the action are returned, never raised. Only an interrupt
    (``RunInterrupted``) or cancellation escapes :meth:`dispatch`.
    """

    def __init__(self, ctx: ExecutionContext | None = None):
        self.ctx = ctx or LoggingExecutionContext()

    @property
    @abstractmethod
    def kind(self) -> str:
        ...

    @property
    def requires_sandbox(self) -> bool:
        return False

    @abstractmethod
    async def dispatch(
            self,
            action: Action,
            registry: ToolRegistry,
            sandbox: SandboxSession | None = None,
            interrupt=None,
    ) -> DispatchResult:
        ...
