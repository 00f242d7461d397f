"""Turning raw model output into actions."""

import json
import re
from typing import Any

from agentloop.action import FINAL_ANSWER_NAME, Action, CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.exceptions import ActionParseError

_CODE_BLOCK = re.compile(r"```(?:py|python)?[ \t]*\n(.*?)\n?```", re.DOTALL)
_JSON_BLOCK = re.compile(r"```(?:json)?[ \t]*\n(.*?)\n?```", re.DOTALL)
_THOUGHT = re.compile(r"^\s*Thought:\s*", re.IGNORECASE)


def _rationale(text: str) -> str:
    return _THOUGHT.sub("", text).strip()


def parse_code_action(text: str) -> tuple[str, CodeAction]:
    """Split a 'Thought: ... ```py ... ```' reply into rationale and code.

    Several code blocks are joined in order.
    """
    blocks = _CODE_BLOCK.findall(text)
    if not blocks:
        raise ActionParseError(
            "Your reply did not contain a code block. Reply with a 'Thought:' line followed by "
            "your code in a ```py ... ``` block.",
            raw_output=text,
        )
    first = _CODE_BLOCK.search(text)
    return _rationale(text[:first.start()]), CodeAction(code="\n\n".join(b.strip("\n") for b in blocks))


def _load_json_object(text: str) -> tuple[dict[str, Any], int]:
    """Find the JSON object in *text*; returns it with its start offset."""
    fenced = _JSON_BLOCK.search(text)
    if fenced:
        raw, offset = fenced.group(1), fenced.start()
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ActionParseError(
                'Your reply did not contain a JSON action. Reply with a \'Thought:\' line followed by '
                '{"name": ..., "arguments": {...}}.',
                raw_output=text,
            )
        raw, offset = text[start:end + 1], start
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ActionParseError(f"The JSON action could not be decoded: {e}", raw_output=text) from None
    if not isinstance(data, dict):
        raise ActionParseError("The JSON action must be an object", raw_output=text)
    return data, offset


def parse_tool_call(text: str) -> tuple[str, Action]:
    """Split a 'Thought: ... {"name": ..., "arguments": ...}' reply into rationale and action."""
    data, offset = _load_json_object(text)
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise ActionParseError("The JSON action must have a string 'name'", raw_output=text)
    arguments = data.get("arguments", {})
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            raise ActionParseError("'arguments' must be a JSON object", raw_output=text) from None
    if not isinstance(arguments, dict):
        raise ActionParseError("'arguments' must be a JSON object", raw_output=text)
    rationale = _rationale(text[:offset])
    if name == FINAL_ANSWER_NAME:
        return rationale, FinalAnswerAction(answer=arguments.get("answer"))
    return rationale, ToolCallAction(name=name, arguments=arguments)
