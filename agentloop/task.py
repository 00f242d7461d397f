"""Task definition for a single agent run."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Task:
    """The user-supplied goal plus optional structured context.

    The context mapping is copied into a read-only proxy on construction so a
    task can not change once it has been accepted by an agent.
    """
    goal: str
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.goal, str) or not self.goal.strip():
            raise ValueError("Task goal must be a non-empty string")
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    @classmethod
    def coerce(cls, task: 'Task | str') -> 'Task':
        if isinstance(task, Task):
            return task
        return cls(goal=task)

    def __eq__(self, other):
        if not isinstance(other, Task):
            return NotImplemented
        return self.goal == other.goal and dict(self.context) == dict(other.context)

    def __hash__(self):
        return hash(self.goal)

    def __str__(self) -> str:
        if not self.context:
            return self.goal
        lines = [self.goal, "", "Context:"]
        lines.extend(f"- {key}: {value!r}" for key, value in self.context.items())
        return "\n".join(lines)
