"""Capability interfaces for the agent system.

This module provides:
- BaseTool: Abstract base class for all capabilities
- SchematicTool: Capability with a typed parameter schema and return type tag
"""

from abc import ABC, abstractmethod
from functools import cached_property
from typing import Any, Mapping

import pydantic

from agentloop.context import ExecutionContext
from agentloop.exceptions import ConfigurationError
from agentloop.tool.schema import build_argument_model, is_required, validate_arguments
from agentloop.tool.types import SchemaType, ToolError, ToolResult


class BaseTool(ABC):
    """Abstract base class for all capabilities"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the capability, unique within a registry"""
        pass

    @property
    def description(self) -> str | None:
        """Human-readable purpose, shown to the reasoning engine"""
        return None

    @property
    def output_type(self) -> SchemaType:
        """Type tag governing how results are serialized into observations"""
        return SchemaType.ANY

    @staticmethod
    def result(result: str) -> ToolResult:
        return ToolResult(result=result)

    @staticmethod
    def error(error_message: str) -> ToolError:
        """Create a ToolError output with the given error message"""
        return ToolError(error_message=error_message)


class SchematicTool(BaseTool):
    """Capability with structured input schema support"""

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, dict[str, Any]]:
        """Schema for input parameters required by the capability"""
        pass

    @abstractmethod
    async def call(self, ctx: ExecutionContext, **kwargs) -> Any:
        """Execute the capability with validated parameters.

        Implementations may return a plain value (serialized according to
        :attr:`output_type`), a :class:`ToolResult` carrying already
        serialized text, or a :class:`ToolError`.  Raised exceptions are
        reported as capability errors by the executor.
        """
        raise NotImplementedError("SchematicTool subclasses must implement the call method")

    @cached_property
    def argument_model(self) -> type[pydantic.BaseModel]:
        return build_argument_model(self.name, self.input_schema)

    def validate_arguments(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        return validate_arguments(self.argument_model, self.name, arguments)

    def check(self):
        """Validate the capability declaration itself."""
        if not isinstance(self.name, str) or not self.name.isidentifier():
            raise ConfigurationError(f"Capability name {self.name!r} is not a valid identifier")
        SchemaType(self.output_type)
        # Building the model also validates the schema.
        _ = self.argument_model

    def signature(self) -> str:
        """A Python-like signature used in prompts."""
        params = []
        for name, spec in self.input_schema.items():
            param = f"{name}: {spec.get('type', 'any')}"
            if not is_required(spec):
                param += f" = {spec.get('default')!r}"
            params.append(param)
        return f"{self.name}({', '.join(params)}) -> {SchemaType(self.output_type).value}"

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description or "",
            "parameters": self.input_schema,
            "output_type": SchemaType(self.output_type).value,
        }


__all__ = [
    "BaseTool",
    "SchematicTool",
]
