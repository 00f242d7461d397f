"""Tool subpackage for capability interfaces.

This package provides the core capability abstractions:
- BaseTool: Abstract base class for all capabilities
- SchematicTool: Capability with structured input schema support
- FunctionTool / tool: Capabilities backed by plain Python functions
- ToolRegistry: Name to capability mapping shared by agents
"""

from .base import BaseTool, SchematicTool
from .function import FinalAnswerTool, FunctionTool, tool
from .registry import ToolRegistry
from .schema import serialize_output
from .types import SchemaType, ToolError, ToolOutput, ToolResult

__all__ = [
    # Core abstractions
    "BaseTool",
    "SchematicTool",
    "FunctionTool",
    "FinalAnswerTool",
    "tool",
    "ToolRegistry",
    "serialize_output",

    # Tool output types
    "SchemaType",
    "ToolOutput",
    "ToolError",
    "ToolResult",
]
