"""Function-backed capabilities and the built-in final answer capability."""

import inspect
import types
import typing
from typing import Any, Callable

from agentloop.action import FINAL_ANSWER_NAME
from agentloop.context import ExecutionContext
from agentloop.exceptions import ConfigurationError
from agentloop.tool.base import SchematicTool
from agentloop.tool.types import SchemaType

_ANNOTATION_TYPES: dict[Any, SchemaType] = {
    str: SchemaType.STRING,
    int: SchemaType.INTEGER,
    float: SchemaType.NUMBER,
    bool: SchemaType.BOOLEAN,
    list: SchemaType.ARRAY,
    tuple: SchemaType.ARRAY,
    dict: SchemaType.OBJECT,
    type(None): SchemaType.NULL,
    Any: SchemaType.ANY,
}


def _schema_type_of(annotation: Any) -> tuple[SchemaType, bool]:
    """Map a type annotation to ``(schema type, nullable)``."""
    if annotation is inspect.Parameter.empty:
        return SchemaType.ANY, False
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)
    if origin in (typing.Union, types.UnionType):
        non_null = [a for a in args if a is not type(None)]
        nullable = len(non_null) != len(args)
        if len(non_null) == 1:
            return _schema_type_of(non_null[0])[0], nullable
        return SchemaType.ANY, nullable
    if origin is not None:
        annotation = origin
    return _ANNOTATION_TYPES.get(annotation, SchemaType.ANY), False


class FunctionTool(SchematicTool):
    """A capability backed by a plain (sync or async) Python function.

    The function may declare a leading ``ctx`` parameter to receive the
    :class:`ExecutionContext`; it is not part of the parameter schema.
    """

    def __init__(
            self,
            fn: Callable[..., Any],
            name: str | None = None,
            description: str | None = None,
            input_schema: dict[str, dict[str, Any]] | None = None,
            output_type: SchemaType | str | None = None,
    ):
        self.fn = fn
        self._name = name or fn.__name__
        self._description = description if description is not None else inspect.getdoc(fn)
        sig = inspect.signature(fn)
        self._wants_ctx = "ctx" in sig.parameters
        self._input_schema = input_schema if input_schema is not None else self._infer_schema(sig)
        if output_type is None:
            output_type = _schema_type_of(typing.get_type_hints(fn).get("return", inspect.Parameter.empty))[0]
        self._output_type = SchemaType(output_type)
        self.check()

    @staticmethod
    def _infer_schema(sig: inspect.Signature) -> dict[str, dict[str, Any]]:
        schema: dict[str, dict[str, Any]] = {}
        for param in sig.parameters.values():
            if param.name == "ctx":
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                raise ConfigurationError(f"Variadic parameter '{param.name}' can not be described by a schema")
            schema_type, nullable = _schema_type_of(param.annotation)
            spec: dict[str, Any] = {"type": schema_type.value}
            if nullable:
                spec["nullable"] = True
            if param.default is not inspect.Parameter.empty:
                spec["default"] = param.default
            schema[param.name] = spec
        return schema

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def input_schema(self) -> dict[str, dict[str, Any]]:
        return self._input_schema

    @property
    def output_type(self) -> SchemaType:
        return self._output_type

    async def call(self, ctx: ExecutionContext, **kwargs) -> Any:
        if self._wants_ctx:
            kwargs["ctx"] = ctx
        result = self.fn(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(
        fn: Callable[..., Any] | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        output_type: SchemaType | str | None = None,
):
    """Turn a typed function into a :class:`FunctionTool`.

    Usage::

        @tool
        def get_weather(city: str, unit: str | None = None) -> str:
            \"\"\"Return the current weather for a city.\"\"\"
            ...
    """
    def decorator(func: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(func, name=name, description=description, output_type=output_type)

    if fn is not None:
        return decorator(fn)
    return decorator


class FinalAnswerTool(SchematicTool):
    """Designated capability that ends the run with its argument as the answer."""

    @property
    def name(self) -> str:
        return FINAL_ANSWER_NAME

    @property
    def description(self) -> str | None:
        return "Provides the final answer to the task and ends the run."

    @property
    def input_schema(self) -> dict[str, dict[str, Any]]:
        return {"answer": {"type": "any", "description": "The final answer to the task"}}

    async def call(self, ctx: ExecutionContext, **kwargs) -> Any:
        return kwargs["answer"]
