"""Schema type tags and the explicit outputs a capability may return.

A capability normally returns a plain value, serialized according to its
``output_type``. It returns a :class:`ToolResult` to hand back text that is
used as the observation unchanged, or a :class:`ToolError` to fail without
raising.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated


class SchemaType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    ANY = "any"


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    result: Annotated[str, Field(description="Observation text, already serialized")]


class ToolError(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    error_message: Annotated[str, Field(description="Reason reported to the reasoning engine")]


ToolOutput = ToolResult | ToolError


__all__ = [
    "SchemaType",
    "ToolResult",
    "ToolError",
    "ToolOutput",
]
