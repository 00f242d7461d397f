from .base import (
    NO_OUTPUT,
    CapabilityHandle,
    ExecutionOutput,
    ResourceLimits,
    SandboxCapability,
    SandboxKind,
    SandboxSession,
)
from .expression import ExpressionSandbox
from .interpreter import DEFAULT_AUTHORIZED_IMPORTS, RestrictedInterpreter, is_import_authorized
from .local import LocalSandbox
from .provider import SandboxProvider

__all__ = [
    "SandboxSession",
    "SandboxKind",
    "SandboxCapability",
    "SandboxProvider",
    "ResourceLimits",
    "ExecutionOutput",
    "CapabilityHandle",
    "NO_OUTPUT",
    "LocalSandbox",
    "ExpressionSandbox",
    "RestrictedInterpreter",
    "DEFAULT_AUTHORIZED_IMPORTS",
    "is_import_authorized",
]
