from .retention import PRUNED_MARKER, RetentionPolicy, snapshot
from .step import (
    ActionStep,
    ExitReason,
    FinalStep,
    MemoryStep,
    PlanningStep,
    StepError,
    SystemStep,
    TaskStep,
    Timing,
    TokenUsage,
)
from .store import MemoryStore

__all__ = [
    "MemoryStore",
    "MemoryStep",
    "SystemStep",
    "TaskStep",
    "PlanningStep",
    "ActionStep",
    "FinalStep",
    "ExitReason",
    "StepError",
    "Timing",
    "TokenUsage",
    "RetentionPolicy",
    "PRUNED_MARKER",
    "snapshot",
]
