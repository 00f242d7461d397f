import ast
import asyncio
import logging
from typing import Any, Iterable

from agentloop.action import FINAL_ANSWER_NAME, Action, CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.context import ExecutionContext
from agentloop.exceptions import ExecutionError, PermissionDenied, SandboxExecutionError, ValidationError
from agentloop.executor.base import ActionExecutor, DispatchResult, Observation, invoke_capability
from agentloop.sandbox.base import NO_OUTPUT, CapabilityHandle, SandboxSession
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS, is_import_authorized
from agentloop.tool.base import SchematicTool
from agentloop.tool.registry import ToolRegistry

logger = logging.getLogger(__name__)


def imported_modules(code: str) -> list[str]:
    """Module names imported anywhere in *code*; empty if it does not parse."""
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return []
    modules = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
            modules.append(node.module)
    return modules


def bind_arguments(tool: SchematicTool, args: tuple, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Map positional arguments onto the tool's parameters in schema order."""
    params = list(tool.input_schema)
    if len(args) > len(params):
        raise ValidationError(
            f"Invalid arguments for '{tool.name}': takes {len(params)} positional arguments but {len(args)} were given"
        )
    arguments = dict(kwargs)
    for param, value in zip(params, args):
        if param in arguments:
            raise ValidationError(f"Invalid arguments for '{tool.name}': got multiple values for '{param}'")
        arguments[param] = value
    return arguments


class CodeActionExecutor(ActionExecutor):
    """Runs generated program fragments in a sandbox session.

    Registered capabilities are exposed to the fragment as plain callables;
    the sandbox adds ``final_answer``.
    """

    def __init__(
            self,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
            ctx: ExecutionContext | None = None,
    ):
        super().__init__(ctx)
        self.authorized_imports = list(authorized_imports)

    @property
    def kind(self) -> str:
        return "code"

    @property
    def requires_sandbox(self) -> bool:
        return True

    def capability_handles(self, registry: ToolRegistry) -> dict[str, CapabilityHandle]:
        handles: dict[str, CapabilityHandle] = {}
        for tool in registry:
            if tool.name == FINAL_ANSWER_NAME:
                continue
            handles[tool.name] = self._handle(tool)
        return handles

    def _handle(self, tool: SchematicTool) -> CapabilityHandle:
        async def handle(*args, **kwargs):
            return await invoke_capability(tool, bind_arguments(tool, args, kwargs), self.ctx, tool_name=tool.name)
        handle.__name__ = tool.name
        return handle

    def check_imports(self, code: str):
        for module in imported_modules(code):
            if not is_import_authorized(module, self.authorized_imports):
                raise PermissionDenied(
                    f"Import of '{module}' is not allowed. Authorized imports are: {self.authorized_imports}"
                )

    async def dispatch(
            self,
            action: Action,
            registry: ToolRegistry,
            sandbox: SandboxSession | None = None,
            interrupt: asyncio.Event | None = None,
    ) -> DispatchResult:
        match action:
            case CodeAction(code=code):
                pass
            case FinalAnswerAction(answer=answer):
                return Observation(text=str(answer), is_final_answer=True, value=answer)
            case ToolCallAction(name=name):
                return ValidationError(f"The code executor can not dispatch a structured call to '{name}'; write code")
            case _:
                return ValidationError(f"Unknown action: {action!r}")

        if not code.strip():
            return Observation(text=NO_OUTPUT)
        if sandbox is None:
            return SandboxExecutionError("No sandbox session is available to run code")
        try:
            self.check_imports(code)
        except PermissionDenied as e:
            return e

        output = await sandbox.execute(code, self.capability_handles(registry), interrupt=interrupt)
        if output.error is not None:
            error: ExecutionError = output.error
            error.logs = output.output
            logger.info("Code action failed: %s", error)
            return error
        if output.is_final_answer:
            return Observation(
                text=output.output.rstrip("\n") or NO_OUTPUT,
                is_final_answer=True,
                value=output.return_value,
            )
        return Observation(text=output.observation, value=output.return_value)
