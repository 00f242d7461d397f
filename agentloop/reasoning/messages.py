"""Rendering memory steps as chat messages."""

import json
from typing import Sequence

from agentloop.action import CodeAction, FinalAnswerAction, ToolCallAction
from agentloop.memory.step import ActionStep, FinalStep, MemoryStep, PlanningStep, SystemStep, TaskStep


def render_action(step: ActionStep) -> str:
    parts = []
    if step.rationale:
        parts.append(f"Thought: {step.rationale}")
    match step.action:
        case CodeAction(code=code):
            parts.append(f"```py\n{code}\n```")
        case ToolCallAction(name=name, arguments=arguments):
            parts.append(json.dumps({"name": name, "arguments": arguments}, ensure_ascii=False, default=str))
        case FinalAnswerAction(answer=answer):
            parts.append(json.dumps({"name": "final_answer", "arguments": {"answer": answer}}, default=str))
    return "\n".join(parts)


def to_messages(memory: Sequence[MemoryStep], system_prompt: str | None = None) -> list[dict]:
    """Chat messages for *memory*; *system_prompt* is used when memory carries none."""
    messages: list[dict] = []
    if system_prompt is not None and not any(isinstance(s, SystemStep) for s in memory):
        messages.append({"role": "system", "content": system_prompt})
    for step in memory:
        match step:
            case SystemStep(system_prompt=prompt):
                messages.append({"role": "system", "content": prompt})
            case TaskStep(task=task):
                messages.append({"role": "user", "content": f"New task:\n{task}"})
            case PlanningStep():
                content = f"Here are the facts I know and the plan of action I will follow:\n## Facts\n{step.facts}\n## Plan\n{step.plan}"
                messages.append({"role": "assistant", "content": content})
                messages.append({"role": "user", "content": "Now proceed and carry out this plan."})
            case ActionStep():
                if step.action is not None or step.rationale:
                    messages.append({"role": "assistant", "content": render_action(step)})
                messages.append({"role": "user", "content": f"Observation:\n{step.feedback()}"})
            case FinalStep(answer=answer):
                messages.append({"role": "assistant", "content": f"Final answer: {answer}"})
    return messages


def summarize(memory: Sequence[MemoryStep]) -> str:
    """Plain-text history used by planning prompts."""
    lines = []
    for step in memory:
        if isinstance(step, ActionStep):
            lines.append(f"Step {step.step_number}:")
            if step.action is not None:
                lines.append(render_action(step))
            lines.append(f"Observation: {step.feedback()}")
    return "\n".join(lines) if lines else "(nothing yet)"
