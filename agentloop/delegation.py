"""Managed agents: an agent exposed to another agent as a capability."""

import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from agentloop.context import ExecutionContext
from agentloop.exceptions import CapabilityError, ConfigurationError
from agentloop.reasoning.messages import summarize
from agentloop.task import Task
from agentloop.template import TemplateEnvironment
from agentloop.tool.base import SchematicTool
from agentloop.tool.types import SchemaType, ToolResult

if TYPE_CHECKING:
    from agentloop.agent import AgentCore

logger = logging.getLogger(__name__)

# Nesting of managed agent invocations in the current task.
_delegation_depth: ContextVar[int] = ContextVar("agentloop_delegation_depth", default=0)


def current_delegation_depth() -> int:
    return _delegation_depth.get()


def find_delegation_path(source: 'AgentCore', target: 'AgentCore') -> list[str] | None:
    """Agent names along a chain of managed agents from *source* to *target*."""
    stack = [(source, [source.name])]
    seen: set[int] = set()
    while stack:
        agent, path = stack.pop()
        if agent is target:
            return path
        if id(agent) in seen:
            continue
        seen.add(id(agent))
        for child in agent.managed_agents.values():
            stack.append((child, path + [child.name]))
    return None


class ManagedAgentTool(SchematicTool):
    """Runs a whole agent loop as one capability call.

    The managed agent starts from a fresh memory for every call. Its final
    answer becomes the observation; any other outcome is a capability error.
    """

    def __init__(
            self,
            agent: 'AgentCore',
            max_depth: int = 5,
            template_env: TemplateEnvironment | None = None,
    ):
        if not agent.description:
            raise ConfigurationError(f"Managed agent '{agent.name}' must have a description")
        self.agent = agent
        self.max_depth = max_depth
        self.template_env = template_env or TemplateEnvironment()

    @property
    def name(self) -> str:
        return self.agent.name

    @property
    def description(self) -> str | None:
        return self.agent.description

    @property
    def output_type(self) -> SchemaType:
        return SchemaType.STRING

    @property
    def input_schema(self) -> dict[str, dict[str, Any]]:
        return {
            "task": {
                "type": "string",
                "description": "Long and detailed description of the task for the managed agent",
            },
            "additional_args": {
                "type": "object",
                "nullable": True,
                "description": "Extra inputs, made available to the managed agent as variables",
            },
        }

    async def call(self, ctx: ExecutionContext, **kwargs) -> ToolResult:
        depth = _delegation_depth.get()
        if depth >= self.max_depth:
            raise CapabilityError(self.name, f"Maximum delegation depth of {self.max_depth} reached")

        additional_args = kwargs.get("additional_args") or {}
        goal = self.template_env.load_template("managed_agent_task.jinja2").render(
            name=self.name,
            task=kwargs["task"],
            additional_args=additional_args,
        )
        await ctx.debug(f"Delegating to managed agent {self.name} at depth {depth + 1}")
        token = _delegation_depth.set(depth + 1)
        try:
            final = await self.agent.run(Task(goal=goal, context=additional_args), reset_history=True)
        finally:
            _delegation_depth.reset(token)

        if not final.succeeded:
            reason = final.error.message if final.error is not None else final.exit_reason.value
            raise CapabilityError(self.name, f"managed agent ended with {final.exit_reason.value}: {reason}")

        summary = summarize(self.agent.memory.current_run()).splitlines() if self.agent.provide_run_summary else []
        report = self.template_env.load_template("managed_agent_report.jinja2").render(
            name=self.name,
            answer=final.answer,
            summary=summary,
        )
        return self.result(report)
