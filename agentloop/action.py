"""Action definitions proposed by the reasoning engine.

An action is a closed tagged variant:

* ``CodeAction`` – a free-form program fragment for the code-execution variant
* ``ToolCallAction`` – a structured capability invocation with named arguments
* ``FinalAnswerAction`` – the designated terminating action; it never reaches
  the action executor
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated, Literal

FINAL_ANSWER_NAME = "final_answer"


class ActionType(str, Enum):
    """Types of actions"""
    CODE = "code"
    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"


class ActionBase(BaseModel):
    """Base class for all actions"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Annotated[ActionType, Field(description="Type of the action")]


class CodeAction(ActionBase):
    """A program fragment to run inside the sandbox"""
    type: Literal[ActionType.CODE] = ActionType.CODE  # type: ignore
    code: Annotated[str, Field(description="Source code of the fragment")]

    def __str__(self) -> str:
        return self.code


class ToolCallAction(ActionBase):
    """A structured call of a registered capability"""
    type: Literal[ActionType.TOOL_CALL] = ActionType.TOOL_CALL  # type: ignore
    name: Annotated[str, Field(description="Name of the capability to invoke")]
    arguments: Annotated[dict[str, Any], Field(description="Argument name to value mapping", default_factory=dict)]

    def __str__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.arguments.items())
        return f"{self.name}({args})"


class FinalAnswerAction(ActionBase):
    """Terminates the run with the given answer"""
    type: Literal[ActionType.FINAL_ANSWER] = ActionType.FINAL_ANSWER  # type: ignore
    answer: Annotated[Any, Field(description="The final answer payload")]

    def __str__(self) -> str:
        return f"{FINAL_ANSWER_NAME}({self.answer!r})"


Action = Annotated[
    CodeAction | ToolCallAction | FinalAnswerAction,
    Field(discriminator='type')
]


__all__ = [
    "FINAL_ANSWER_NAME",
    "ActionType",
    "ActionBase",
    "CodeAction",
    "ToolCallAction",
    "FinalAnswerAction",
    "Action",
]
