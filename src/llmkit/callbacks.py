"""User callbacks for streaming calls.

Callbacks are awaited in-line by the task that drives the stream: a slow
callback holds back every later event.  A callback that raises is logged
and otherwise ignored; it never ends the stream.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import msgspec

from .events import StreamEvent, is_chunk
from .types import StepResult, Usage

logger = logging.getLogger(__name__)


class ChunkEvent(msgspec.Struct, frozen=True):
    """Passed to ``on_chunk`` for every content-bearing event."""

    chunk: StreamEvent


class ErrorEvent(msgspec.Struct, frozen=True):
    """Passed to ``on_error`` before the matching error event is delivered."""

    error: Any


class FinishEvent(msgspec.Struct, frozen=True):
    """Passed to ``on_finish`` once the whole run is complete."""

    step_result: StepResult
    steps: tuple[StepResult, ...]
    total_usage: Usage


OnChunk = Callable[[ChunkEvent], Awaitable[None] | None]
OnError = Callable[[ErrorEvent], Awaitable[None] | None]
OnStepFinish = Callable[[StepResult], Awaitable[None] | None]
OnFinish = Callable[[FinishEvent], Awaitable[None] | None]


class CallbackRouter:
    """Invokes the four optional callbacks at their points in the stream."""

    def __init__(
        self,
        on_chunk: OnChunk | None = None,
        on_error: OnError | None = None,
        on_step_finish: OnStepFinish | None = None,
        on_finish: OnFinish | None = None,
    ) -> None:
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.on_step_finish = on_step_finish
        self.on_finish = on_finish

    async def chunk(self, event: StreamEvent) -> None:
        if self.on_chunk is not None and is_chunk(event):
            await _fire("on_chunk", self.on_chunk, ChunkEvent(chunk=event))

    async def error(self, error: Any) -> None:
        if self.on_error is not None:
            await _fire("on_error", self.on_error, ErrorEvent(error=error))

    async def step_finish(self, step: StepResult) -> None:
        if self.on_step_finish is not None:
            await _fire("on_step_finish", self.on_step_finish, step)

    async def finish(
        self,
        step: StepResult,
        steps: list[StepResult],
        total_usage: Usage,
    ) -> None:
        if self.on_finish is not None:
            event = FinishEvent(step_result=step, steps=tuple(steps), total_usage=total_usage)
            await _fire("on_finish", self.on_finish, event)


async def _fire(name: str, callback: Callable[[Any], Any], arg: Any) -> None:
    try:
        result = callback(arg)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.warning("Callback %s (%r) failed", name, callback, exc_info=True)
