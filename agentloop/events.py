"""Observability events emitted on every loop state transition."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from agentloop.memory.step import TokenUsage
from agentloop.state import AgentState
from agentloop.tracer import get_current_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentEvent:
    run_id: str
    agent_name: str
    state: AgentState
    step_number: int = 0
    duration_ms: float | None = None
    token_usage: TokenUsage | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "run_id": self.run_id,
            "agent": self.agent_name,
            "state": self.state.value,
            "step_number": self.step_number,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.duration_ms is not None:
            d["duration_ms"] = round(self.duration_ms, 2)
        if self.token_usage is not None:
            d["token_usage"] = self.token_usage.to_dict()
        if self.detail:
            d["detail"] = self.detail
        return d


class EventSink(Protocol):
    def emit(self, event: AgentEvent) -> None:
        ...


class LoggingEventSink:
    """Writes events to :mod:`logging`; terminal events at INFO, the rest at DEBUG."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger("agentloop.events")

    def emit(self, event: AgentEvent) -> None:
        level = logging.INFO if event.state in (AgentState.INIT, AgentState.TERMINATING) else logging.DEBUG
        self._logger.log(
            level,
            "[%s %s] step %d: %s%s",
            event.agent_name,
            event.run_id[:8],
            event.step_number,
            event.state.value,
            f" {event.detail}" if event.detail else "",
        )


class CollectingEventSink:
    """Keeps every event in memory."""

    def __init__(self):
        self.events: list[AgentEvent] = []

    def emit(self, event: AgentEvent) -> None:
        self.events.append(event)

    def states(self) -> list[AgentState]:
        return [e.state for e in self.events]


class TracerEventSink:
    """Records events on the current trace span."""

    def emit(self, event: AgentEvent) -> None:
        span = get_current_span()
        if span is None:
            return
        span.record_event(event.to_dict())
