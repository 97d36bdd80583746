"""Stop conditions for multi-step tool loops.

A stop condition is any callable taking the list of finished steps and
returning ``bool`` (or an awaitable of it).  The loop stops as soon as one
condition holds.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence

from .types import StepResult

StopCondition = Callable[[Sequence[StepResult]], bool | Awaitable[bool]]


def step_count_is(step_count: int) -> StopCondition:
    """Stop once exactly *step_count* steps have finished."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return len(steps) == step_count

    return condition


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop once the last step called *tool_name*."""

    def condition(steps: Sequence[StepResult]) -> bool:
        if not steps:
            return False
        return any(call.tool_name == tool_name for call in steps[-1].tool_calls)

    return condition


async def is_stop_condition_met(
    conditions: Sequence[StopCondition],
    steps: Sequence[StepResult],
) -> bool:
    async def check(condition: StopCondition) -> bool:
        result = condition(steps)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    results = await asyncio.gather(*(check(c) for c in conditions))
    return any(results)
