"""Per-step overrides for multi-step runs.

A *prepare step* callable runs before every model call of a run, the first
one included.  It sees the finished steps and the messages about to be sent
and may return a :class:`PrepareStepResult` overriding, for that call only,
the tool choice, the tools shown to the model, the system prompt or the
messages themselves.  Returning ``None`` keeps the run's defaults.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import msgspec

from .provider import ToolChoice
from .types import Message, StepResult


class PrepareStepOptions(msgspec.Struct, frozen=True):
    steps: tuple[StepResult, ...]
    step_number: int
    """0-based number of the step about to run."""
    messages: tuple[Any, ...]


class PrepareStepResult(msgspec.Struct, frozen=True):
    tool_choice: ToolChoice | None = None
    active_tools: list[str] | None = None
    """Names of the tools described to the model for this step."""
    system: str | None = None
    """Replaces every system message of the step's prompt."""
    messages: list[Any] | None = None
    """Sent instead of the accumulated history, for this step only."""


PrepareStep = Callable[
    [PrepareStepOptions],
    PrepareStepResult | None | Awaitable[PrepareStepResult | None],
]


async def prepare_step_overrides(
    prepare_step: PrepareStep | None,
    steps: Sequence[StepResult],
    messages: Sequence[Message],
) -> PrepareStepResult:
    if prepare_step is None:
        return PrepareStepResult()
    options = PrepareStepOptions(
        steps=tuple(steps), step_number=len(steps), messages=tuple(messages)
    )
    result = prepare_step(options)
    if inspect.isawaitable(result):
        result = await result
    return result or PrepareStepResult()


def with_system(messages: Sequence[Message], system: str | None) -> list[Message]:
    """*messages* with every system message replaced by *system*."""
    if system is None:
        return list(messages)
    return [("system", [system]), *(m for m in messages if m[0] != "system")]
