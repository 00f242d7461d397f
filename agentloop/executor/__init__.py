from .base import ActionExecutor, DispatchResult, Observation, invoke_capability
from .code import CodeActionExecutor, bind_arguments, imported_modules
from .structured import ToolCallingExecutor

__all__ = [
    "ActionExecutor",
    "CodeActionExecutor",
    "ToolCallingExecutor",
    "Observation",
    "DispatchResult",
    "invoke_capability",
    "bind_arguments",
    "imported_modules",
]
