"""Trace tree nodes for agent runs.

A run produces one ``RUN`` span with a ``STEP`` child per loop iteration.
Inside a step, planning and action spans hold the model and capability calls
they made; a managed agent's run nests under the ``TOOL_CALL`` that started
it.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional

_TOKEN_KEYS = ("prompt_tokens", "completion_tokens", "total_tokens")


class SpanKind(str, Enum):
    RUN = "run"
    STEP = "step"
    PLANNING = "planning"
    LLM_CALL = "llm_call"
    ACTION = "action"
    TOOL_CALL = "tool_call"


@dataclass
class Span:
    kind: SpanKind
    name: str
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    status: str = "ok"
    error: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    children: list['Span'] = field(default_factory=list)
    parent: Optional['Span'] = field(default=None, repr=False)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def record_event(self, event: dict[str, Any]) -> None:
        """Attach a loop state transition observed while this span was current."""
        self.events.append(event)

    def add_child(self, child: 'Span') -> None:
        child.parent = self
        self.children.append(child)

    def finish(self, error: BaseException | None = None) -> None:
        self.end_time = datetime.now()
        if error is not None:
            self.status = "error"
            self.error = str(error) or type(error).__name__

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def walk(self) -> Iterator['Span']:
        """This span and its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, kind: SpanKind) -> list['Span']:
        return [s for s in self.walk() if s.kind == kind]

    def llm_token_usage(self) -> dict[str, int]:
        """Token usage summed over the model calls below this span."""
        totals = dict.fromkeys(_TOKEN_KEYS, 0)
        for span in self.find(SpanKind.LLM_CALL):
            usage = span.attributes.get("token_usage") or {}
            for key in _TOKEN_KEYS:
                totals[key] += usage.get(key) or 0
        return totals

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "span_id": self.span_id,
            "status": self.status,
            "start_time": self.start_time.isoformat(),
        }
        if self.end_time is not None:
            d["end_time"] = self.end_time.isoformat()
            d["duration_ms"] = round(self.duration_ms, 2)
        if self.error is not None:
            d["error"] = self.error
        if self.attributes:
            d["attributes"] = self.attributes
        if self.events:
            d["events"] = self.events
        if self.children:
            d["children"] = [c.to_dict() for c in self.children]
        return d
