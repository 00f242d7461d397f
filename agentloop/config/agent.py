import os
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from typing_extensions import Annotated

from agentloop.config.llm import ChatConfig
from agentloop.memory.retention import RetentionPolicy
from agentloop.sandbox.base import ResourceLimits, SandboxKind
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS


class ExecutorKind(str, Enum):
    Code = "code"
    ToolCalling = "tool_calling"


class SandboxConfig(BaseModel):
    kind: Annotated[SandboxKind, Field(
        description="Isolation boundary used by the code executor",
        default=SandboxKind.LOCAL,
    )]
    limits: Annotated[ResourceLimits, Field(default_factory=ResourceLimits)]
    authorized_imports: Annotated[list[str], Field(
        description="Modules fragments may import; 'pkg' also authorizes 'pkg.sub', '*' authorizes all",
        default_factory=lambda: list(DEFAULT_AUTHORIZED_IMPORTS),
    )]
    image: Annotated[str, Field(
        description="Docker image for the container sandbox",
        default="python:3.11-slim",
    )]
    cpus: Annotated[float, Field(
        description="CPU share for the container sandbox",
        default=1.0,
        gt=0,
    )]
    endpoint: Annotated[str | None, Field(
        description="Base URL of the remote execution service",
        default=None,
    )]
    api_key: Annotated[str | None, Field(
        description="API key of the remote execution service",
        default_factory=lambda: os.environ.get("AGENTLOOP_SANDBOX_API_KEY"),
    )]


class AgentConfig(BaseModel):
    name: Annotated[str, Field(description="Agent name; also the capability name when managed")]
    description: Annotated[str, Field(
        description="What the agent does; required when it is managed by another agent",
        default="",
    )]
    executor: Annotated[ExecutorKind, Field(
        description="How actions are expressed: generated code or structured tool calls",
        default=ExecutorKind.Code,
    )]
    max_steps: Annotated[int, Field(description="Step budget per run", default=20, gt=0)]
    planning_interval: Annotated[int | None, Field(
        description="Plan before step 1 and every N steps after; disabled when omitted",
        default=None,
        gt=0,
    )]
    provider_retries: Annotated[int, Field(
        description="Retries for an unreachable reasoning provider before the run fails",
        default=3,
        ge=0,
    )]
    provider_backoff: Annotated[float, Field(
        description="Initial backoff in seconds between provider retries; doubled each time",
        default=1.0,
        ge=0,
    )]
    resource_limit_retries: Annotated[int, Field(
        description="Resource limit breaches fed back to the reasoning engine before the run fails",
        default=3,
        ge=0,
    )]
    max_delegation_depth: Annotated[int, Field(
        description="Maximum nesting of managed agent invocations",
        default=5,
        gt=0,
    )]
    provide_run_summary: Annotated[bool, Field(
        description="Append a summary of the run to the answer when called as a managed agent",
        default=False,
    )]
    retention: Annotated[RetentionPolicy, Field(default_factory=RetentionPolicy)]
    sandbox: Annotated[SandboxConfig, Field(default_factory=SandboxConfig)]
    chat_llm: Annotated[ChatConfig | None, Field(default=None)]
    template_lang: Annotated[str | None, Field(default=None)]
    managed_agents: Annotated[list['AgentConfig'], Field(default_factory=list)]

    @field_validator('name')
    @classmethod
    def _name_is_identifier(cls, value: str) -> str:
        if not value.isidentifier():
            raise ValueError(f"Agent name '{value}' must be a valid Python identifier")
        return value
