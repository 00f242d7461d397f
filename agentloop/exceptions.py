class AgentLoopError(Exception):
    """Base exception for agentloop errors"""
    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)

    def __str__(self):
        return self.msg


class ConfigurationError(AgentLoopError):
    """Raised for invalid configuration detected at construction time"""
    pass


class ExecutionError(AgentLoopError):
    """An error produced while proposing or dispatching a single action.

    Execution errors are carried as values inside the memory rather than
    thrown out of the agent loop; the reasoning engine sees them as the
    observation of the next iteration.
    """
    kind = "execution_error"
    # Output captured before the error was raised, if any.
    logs: str = ""

    def to_observation(self) -> str:
        return f"Error ({self.kind}): {self.msg}"


class ValidationError(ExecutionError):
    """Raised when an action or its arguments do not match the expected shape"""
    kind = "validation_error"


class ActionParseError(ValidationError):
    """Raised when the reasoning engine output can not be turned into an action"""
    kind = "action_parse_error"

    def __init__(self, msg: str, raw_output: str | None = None):
        self.raw_output = raw_output
        super().__init__(msg)


class CapabilityNotFound(ExecutionError):
    kind = "capability_not_found"

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"Capability '{name}' not found. "
            f"Available capabilities: {', '.join(available) if available else '(none)'}"
        )


class PermissionDenied(ExecutionError):
    kind = "permission_denied"


class ResourceLimitExceeded(ExecutionError):
    """Raised when a sandbox fragment exceeds its time, memory or operation limit"""
    kind = "resource_limit_exceeded"

    def __init__(self, msg: str, limit: str | None = None):
        self.limit = limit
        super().__init__(msg)


class CapabilityError(ExecutionError):
    """Raised when an invoked capability fails"""
    kind = "capability_error"

    def __init__(self, name: str, msg: str):
        self.name = name
        self.reason = msg
        super().__init__(f"Capability '{name}' failed: {msg}")


class SandboxExecutionError(ExecutionError):
    """Raised when a code fragment faults inside the sandbox"""
    kind = "sandbox_error"


class ProviderUnavailable(AgentLoopError):
    """Raised when the reasoning engine's underlying provider can not be reached"""
    pass


class RunInterrupted(AgentLoopError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "Run interrupted by external signal")


class FatalError(AgentLoopError):
    """Raised internally to terminate a run; recorded in the final step"""
    def __init__(self, msg: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(msg)


class DuplicateCapabilityError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Capability '{name}' is already registered")


class RegistryFrozenError(ConfigurationError):
    def __init__(self, name: str):
        super().__init__(f"Tool registry is frozen; can not modify capability '{name}' during a run")


class DelegationCycleError(ConfigurationError):
    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Delegation cycle detected: {' -> '.join(path)}")


class AgentBusyError(AgentLoopError):
    def __init__(self, agent_name: str):
        super().__init__(f"Agent '{agent_name}' is already running; runs on one instance are sequential")


class LLMError(AgentLoopError):
    pass


class NoChatLLMConfigError(LLMError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "Can not find available Chat LLM Config")


class MemoryStoreError(AgentLoopError):
    """Raised when an append would break the memory ordering invariants"""
    pass
