import asyncio
import logging

from agentloop.action import FINAL_ANSWER_NAME, Action, CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.context import ExecutionContext
from agentloop.exceptions import ExecutionError, ValidationError
from agentloop.executor.base import ActionExecutor, DispatchResult, Observation, invoke_capability
from agentloop.sandbox.base import NO_OUTPUT, SandboxSession
from agentloop.tool.registry import ToolRegistry
from agentloop.tool.schema import serialize_output

logger = logging.getLogger(__name__)


class ToolCallingExecutor(ActionExecutor):
    """Dispatches structured calls straight to the registry.

    Lookup, argument validation, invocation and serialization happen in that
    order; a failure at any stage is returned as the matching error and the
    later stages do not run.
    """

    def __init__(self, ctx: ExecutionContext | None = None):
        super().__init__(ctx)

    @property
    def kind(self) -> str:
        return "tool_calling"

    async def dispatch(
            self,
            action: Action,
            registry: ToolRegistry,
            sandbox: SandboxSession | None = None,
            interrupt: asyncio.Event | None = None,
    ) -> DispatchResult:
        match action:
            case ToolCallAction(name=name, arguments=arguments):
                pass
            case FinalAnswerAction(answer=answer):
                return Observation(text=str(answer), is_final_answer=True, value=answer)
            case CodeAction():
                return ValidationError("The structured-call executor can not run code; call a capability instead")
            case _:
                return ValidationError(f"Unknown action: {action!r}")

        try:
            tool = registry.get(name)
            value = await invoke_capability(tool, arguments, self.ctx, tool_name=name)
        except ExecutionError as e:
            logger.info("Capability call %s failed: %s", name, e)
            return e
        if name == FINAL_ANSWER_NAME:
            return Observation(text=str(value), is_final_answer=True, value=value)
        if value is None:
            return Observation(text=NO_OUTPUT, value=None)
        text = value if isinstance(value, str) else serialize_output(value, tool.output_type)
        return Observation(text=text if text.strip() else NO_OUTPUT, value=value)
