"""A step-bounded ReAct agent core with sandboxed code and structured-call executors."""

from agentloop.action import Action, CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.agent import AgentCore
from agentloop.config import AgentConfig, SandboxConfig, load_config
from agentloop.context import ExecutionContext, LoggingExecutionContext
from agentloop.delegation import ManagedAgentTool
from agentloop.events import AgentEvent, CollectingEventSink, EventSink, LoggingEventSink, TracerEventSink
from agentloop.exceptions import (
    ActionParseError,
    AgentBusyError,
    AgentLoopError,
    CapabilityError,
    CapabilityNotFound,
    ConfigurationError,
    DelegationCycleError,
    DuplicateCapabilityError,
    ExecutionError,
    FatalError,
    PermissionDenied,
    ProviderUnavailable,
    RegistryFrozenError,
    ResourceLimitExceeded,
    RunInterrupted,
    SandboxExecutionError,
    ValidationError,
)
from agentloop.executor import CodeActionExecutor, ToolCallingExecutor
from agentloop.memory import ExitReason, FinalStep, MemoryStore, RetentionPolicy
from agentloop.reasoning import ActionProposal, LLMReasoningEngine, Plan, ReasoningEngine
from agentloop.sandbox import ResourceLimits, SandboxKind, SandboxProvider
from agentloop.state import AgentState, PlanDecision, PlanReviewer
from agentloop.task import Task
from agentloop.tool import FunctionTool, SchematicTool, ToolRegistry, tool

__all__ = [
    "AgentCore",
    "Task",
    "Action",
    "CodeAction",
    "ToolCallAction",
    "FinalAnswerAction",
    "AgentConfig",
    "SandboxConfig",
    "load_config",
    "ExecutionContext",
    "LoggingExecutionContext",
    "ManagedAgentTool",
    "AgentEvent",
    "EventSink",
    "LoggingEventSink",
    "CollectingEventSink",
    "TracerEventSink",
    "CodeActionExecutor",
    "ToolCallingExecutor",
    "MemoryStore",
    "FinalStep",
    "ExitReason",
    "RetentionPolicy",
    "ReasoningEngine",
    "LLMReasoningEngine",
    "ActionProposal",
    "Plan",
    "SandboxProvider",
    "SandboxKind",
    "ResourceLimits",
    "AgentState",
    "PlanDecision",
    "PlanReviewer",
    "SchematicTool",
    "FunctionTool",
    "ToolRegistry",
    "tool",
    "AgentLoopError",
    "ConfigurationError",
    "ExecutionError",
    "ValidationError",
    "ActionParseError",
    "CapabilityNotFound",
    "CapabilityError",
    "PermissionDenied",
    "ResourceLimitExceeded",
    "SandboxExecutionError",
    "ProviderUnavailable",
    "RunInterrupted",
    "FatalError",
    "DuplicateCapabilityError",
    "RegistryFrozenError",
    "DelegationCycleError",
    "AgentBusyError",
]
