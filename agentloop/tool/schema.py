"""Argument validation against a capability's declared parameter schema.

A parameter schema maps each parameter name to a spec dict::

    {
        "query": {"type": "string", "description": "Search query"},
        "limit": {"type": "integer", "nullable": True, "minimum": 1},
        "mode": {"type": "string", "enum": ["fast", "exact"]},
    }

Parameters are required unless marked ``nullable`` or given a ``default``.
Validation is delegated to a pydantic model built once per schema, in strict
mode so that values are never silently coerced (``"3"`` is not an integer).
"""

import json
from typing import Any, Literal, Mapping

import pydantic
from pydantic import ConfigDict, Field, create_model

from agentloop.exceptions import ConfigurationError, ValidationError
from agentloop.tool.types import SchemaType

_PYTHON_TYPES: dict[SchemaType, Any] = {
    SchemaType.STRING: str,
    SchemaType.INTEGER: int,
    SchemaType.NUMBER: float,
    SchemaType.BOOLEAN: bool,
    SchemaType.ARRAY: list,
    SchemaType.OBJECT: dict,
    SchemaType.NULL: type(None),
    SchemaType.ANY: Any,
}

_ALLOWED_KEYS = {"type", "description", "nullable", "default", "enum", "minimum", "maximum"}


def _schema_type(name: str, spec: Mapping[str, Any]) -> SchemaType:
    try:
        return SchemaType(spec.get("type", SchemaType.ANY.value))
    except ValueError:
        raise ConfigurationError(f"Parameter '{name}' has unsupported type {spec.get('type')!r}") from None


def check_schema(schema: Mapping[str, Mapping[str, Any]]) -> None:
    """Raise ``ConfigurationError`` if *schema* is not a valid parameter schema."""
    for name, spec in schema.items():
        if not name.isidentifier():
            raise ConfigurationError(f"Parameter name '{name}' is not a valid identifier")
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"Parameter '{name}' must be described by a mapping")
        unknown = set(spec) - _ALLOWED_KEYS
        if unknown:
            raise ConfigurationError(f"Parameter '{name}' has unknown schema keys: {sorted(unknown)}")
        _schema_type(name, spec)


def is_required(spec: Mapping[str, Any]) -> bool:
    return not spec.get("nullable", False) and "default" not in spec


def build_argument_model(tool_name: str, schema: Mapping[str, Mapping[str, Any]]) -> type[pydantic.BaseModel]:
    """Build a strict pydantic model validating the arguments of *tool_name*."""
    check_schema(schema)
    fields: dict[str, Any] = {}
    for idx, (name, spec) in enumerate(schema.items()):
        python_type = _PYTHON_TYPES[_schema_type(name, spec)]
        if "enum" in spec:
            python_type = Literal[tuple(spec["enum"])]
        constraints: dict[str, Any] = {"alias": name, "description": spec.get("description")}
        if "minimum" in spec:
            constraints["ge"] = spec["minimum"]
        if "maximum" in spec:
            constraints["le"] = spec["maximum"]
        if spec.get("nullable", False):
            python_type = python_type | None if python_type is not Any else Any
            constraints["default"] = spec.get("default")
        elif "default" in spec:
            constraints["default"] = spec["default"]
        # Internal field names avoid clashes with BaseModel attributes such as "schema".
        fields[f"p{idx}"] = (python_type, Field(**constraints))
    return create_model(
        f"{tool_name}_arguments",
        __config__=ConfigDict(strict=True, extra="forbid", arbitrary_types_allowed=True),
        **fields,
    )


def validate_arguments(
        model: type[pydantic.BaseModel],
        tool_name: str,
        arguments: Mapping[str, Any],
) -> dict[str, Any]:
    """Validate *arguments* and return them with defaults filled in.

    Raises:
        ValidationError: when a required argument is missing, an unknown
            argument is given, or a value has the wrong type or violates a
            constraint.
    """
    try:
        validated = model.model_validate(dict(arguments))
    except pydantic.ValidationError as e:
        problems = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "(arguments)"
            problems.append(f"{loc}: {err['msg']}")
        raise ValidationError(
            f"Invalid arguments for '{tool_name}': " + "; ".join(problems)
        ) from None
    return {
        field.alias: getattr(validated, key)
        for key, field in model.model_fields.items()
        if field.alias in arguments or not field.is_required()
    }


def serialize_output(value: Any, output_type: SchemaType | str) -> str:
    """Render a capability's return value as observation text."""
    output_type = SchemaType(output_type)
    if value is None:
        return "None"
    if output_type == SchemaType.STRING:
        return str(value)
    if output_type in (SchemaType.OBJECT, SchemaType.ARRAY):
        return json.dumps(value, ensure_ascii=False, default=str)
    if output_type == SchemaType.ANY and isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)
