import logging
import re
from typing import Iterable, Sequence

from agentloop.action import FINAL_ANSWER_NAME
from agentloop.config.agent import ExecutorKind
from agentloop.llm.types import ChatLLM
from agentloop.memory.step import MemoryStep, PlanningStep, TaskStep, TokenUsage
from agentloop.reasoning.base import ActionProposal, Plan, ReasoningEngine
from agentloop.reasoning.messages import summarize, to_messages
from agentloop.reasoning.parsing import parse_code_action, parse_tool_call
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS
from agentloop.template import TemplateEnvironment
from agentloop.tool.registry import ToolRegistry
from agentloop.tracer import trace_llm

logger = logging.getLogger(__name__)

_SECTION = re.compile(r"^##\s*(Facts|Plan)\s*$", re.IGNORECASE | re.MULTILINE)


def split_plan(text: str) -> tuple[str, str]:
    """Return ``(facts, plan)`` from a reply with '## Facts' and '## Plan' sections."""
    sections: dict[str, str] = {}
    matches = list(_SECTION.finditer(text))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections[match.group(1).lower()] = text[match.end():end].strip()
    if "plan" not in sections:
        return sections.get("facts", ""), text.strip()
    return sections.get("facts", ""), sections["plan"]


class LLMReasoningEngine(ReasoningEngine):
    """Reasoning engine backed by a chat model and the packaged prompt templates."""

    def __init__(
            self,
            chat_llm: ChatLLM,
            mode: ExecutorKind | str = ExecutorKind.Code,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
            lang: str | None = None,
            max_steps: int | None = None,
    ):
        self.chat_llm = chat_llm
        self.mode = ExecutorKind(mode)
        self.authorized_imports = list(authorized_imports)
        self.max_steps = max_steps
        self.template_env = TemplateEnvironment(package_name="agentloop", default_lang=lang)

    def _tools(self, capabilities: ToolRegistry) -> list:
        return [t for t in capabilities if t.name != FINAL_ANSWER_NAME]

    def system_prompt(self, capabilities: ToolRegistry) -> str:
        if self.mode == ExecutorKind.Code:
            template = self.template_env.load_template("code_agent_system.jinja2")
            return template.render(
                tools=self._tools(capabilities),
                authorized_imports=self.authorized_imports,
                final_answer_name=FINAL_ANSWER_NAME,
            )
        template = self.template_env.load_template("tool_calling_system.jinja2")
        return template.render(tools=self._tools(capabilities), final_answer_name=FINAL_ANSWER_NAME)

    @trace_llm("next_action")
    async def next_action(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry) -> ActionProposal:
        messages = to_messages(memory, system_prompt=self.system_prompt(capabilities))
        response = await self.chat_llm.chat(messages)
        logger.debug("Model output:\n%s", response.content)
        usage = TokenUsage(input_tokens=response.input_tokens, output_tokens=response.output_tokens)
        if self.mode == ExecutorKind.Code:
            rationale, action = parse_code_action(response.content)
        else:
            rationale, action = parse_tool_call(response.content)
        return ActionProposal(action=action, rationale=rationale, token_usage=usage, raw_output=response.content)

    @trace_llm("planning")
    async def plan(self, memory: Sequence[MemoryStep], capabilities: ToolRegistry, step_number: int) -> Plan:
        steps = list(memory)
        # Only the current run's planning counts as the previous plan.
        start = max((i for i, s in enumerate(steps) if isinstance(s, TaskStep)), default=0)
        run = steps[start:]
        task = run[0].task if run and isinstance(run[0], TaskStep) else ""
        previous = [s for s in run if isinstance(s, PlanningStep)]
        tools = self._tools(capabilities)
        if previous:
            remaining = self.max_steps - step_number + 1 if self.max_steps else "some"
            prompt = self.template_env.load_template("planning_update.jinja2").render(
                task=task,
                tools=tools,
                previous_plan=previous[-1].plan,
                history=summarize(run),
                remaining_steps=remaining,
            )
        else:
            prompt = self.template_env.load_template("planning_initial.jinja2").render(task=task, tools=tools)
        response = await self.chat_llm.chat([
            {"role": "system", "content": prompt},
            {"role": "user", "content": "Write the facts and the plan."},
        ])
        facts, plan = split_plan(response.content)
        return Plan(
            plan=plan,
            facts=facts,
            token_usage=TokenUsage(input_tokens=response.input_tokens, output_tokens=response.output_tokens),
        )
