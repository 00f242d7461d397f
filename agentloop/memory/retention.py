"""Retention policy applied to the memory view handed to the reasoning engine.

The store itself is never pruned. The policy only shapes the snapshot that is
rendered into prompts, so long multi-turn sessions and bulky observations do
not grow the prompt without bound.
"""

import dataclasses

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from agentloop.memory.step import ActionStep, FinalStep, MemoryStep, SystemStep
from agentloop.memory.store import MemoryStore

PRUNED_MARKER = "[observation pruned]"


class RetentionPolicy(BaseModel):
    max_observation_chars: Annotated[int | None, Field(
        description="Truncate each observation to this many characters",
        default=20000,
        ge=1,
    )]
    keep_full_observations: Annotated[int | None, Field(
        description="Number of most recent action steps whose observations are kept; older ones are pruned",
        default=None,
        ge=0,
    )]
    max_prior_runs: Annotated[int | None, Field(
        description="Number of earlier runs shown in multi-turn mode",
        default=None,
        ge=0,
    )]


def _truncate(text: str | None, limit: int | None) -> str | None:
    if text is None or limit is None or len(text) <= limit:
        return text
    return text[:limit] + f"\n..._This content has been truncated to stay below {limit} characters_...\n"


def snapshot(memory: MemoryStore, policy: RetentionPolicy | None = None) -> list[MemoryStep]:
    """Return the steps visible to the reasoning engine under *policy*."""
    policy = policy or RetentionPolicy()
    runs = memory.runs()
    if policy.max_prior_runs is not None and len(runs) > 1:
        current = runs[-1]
        prior = runs[:-1][-policy.max_prior_runs:] if policy.max_prior_runs else []
        # The system prompt of the first run stays visible even if its run is dropped.
        system = [s for s in runs[0] if isinstance(s, SystemStep)]
        kept = [step for run in prior for step in run] + current
        if system and (not kept or kept[0] is not system[0]):
            kept = system + kept
    else:
        kept = list(memory.steps)

    action_positions = [i for i, s in enumerate(kept) if isinstance(s, ActionStep)]
    prune_before = None
    if policy.keep_full_observations is not None:
        recent = action_positions[-policy.keep_full_observations:] if policy.keep_full_observations else []
        prune_before = recent[0] if recent else len(kept)

    view: list[MemoryStep] = []
    for i, step in enumerate(kept):
        if isinstance(step, ActionStep):
            if prune_before is not None and i < prune_before and step.observation:
                step = dataclasses.replace(step, observation=PRUNED_MARKER)
            else:
                step = dataclasses.replace(
                    step, observation=_truncate(step.observation, policy.max_observation_chars),
                )
        elif isinstance(step, FinalStep) and isinstance(step.answer, str):
            step = dataclasses.replace(step, answer=_truncate(step.answer, policy.max_observation_chars))
        view.append(step)
    return view
