"""LLMClient -- user-facing entry point."""

from __future__ import annotations

from typing import Any

import msgspec

from .exceptions import NoOutputGeneratedError
from .provider import Provider
from .settings import CallSettings
from .stream_text import StreamText, StreamTextResult
from .tools import ToolSet
from .types import FinishReason, Message, StepResult, Usage


class GenerateTextResult(msgspec.Struct, frozen=True):
    """The outcome of a fully drained run."""

    text: str
    finish_reason: FinishReason
    steps: tuple[StepResult, ...]
    total_usage: Usage


class LLMClient:
    """Unified LLM client.

    Wraps a :class:`Provider` with a default model, tool set and call
    settings, exposing :meth:`stream_text` for event streams and
    :meth:`generate_text` for callers who only want the final answer.
    """

    def __init__(
        self,
        provider: Provider,
        default_model: str,
        tools: ToolSet | None = None,
        settings: CallSettings | None = None,
    ) -> None:
        self.provider = provider
        self.default_model = default_model
        self.tools = tools
        self.settings = settings or CallSettings()

    async def stream_text(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        tools: ToolSet | None = None,
        settings: CallSettings | None = None,
        **kwargs: Any,
    ) -> StreamTextResult:
        """Start a streaming run.

        *settings* are layered over the client's defaults field by field.
        Remaining keyword arguments (``tool_choice``, ``stop_when``,
        ``prepare_step``, ``transforms``, callbacks, ...) go to
        :class:`StreamText` unchanged.
        """
        effective_model = model or self.default_model
        effective_tools = tools if tools is not None else self.tools

        call = StreamText(
            self.provider,
            messages,
            model=effective_model,
            tools=effective_tools,
            settings=self.settings.merge(settings),
            **kwargs,
        )
        return await call.execute()

    async def generate_text(
        self,
        messages: list[Message],
        **kwargs: Any,
    ) -> GenerateTextResult:
        """Run to completion and return the final step's text."""
        result = await self.stream_text(messages, **kwargs)
        steps = await result.steps()
        if not steps:
            raise NoOutputGeneratedError("No step finished")

        last = steps[-1]
        return GenerateTextResult(
            text=last.text,
            finish_reason=last.finish_reason,
            steps=tuple(steps),
            total_usage=await result.total_usage(),
        )
