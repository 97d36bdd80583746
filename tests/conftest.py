"""Shared fixtures: a scripted provider that replays wire parts."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from llmkit import Usage, parts

HANG = object()
"""Put in a script to make the provider stream block forever at that point."""


class FakeProvider:
    """A provider that replays one pre-configured wire script per call."""

    def __init__(self, *scripts: list, open_error: Exception | None = None) -> None:
        self._scripts = list(scripts)
        self._open_error = open_error
        self.calls: list[dict] = []

    @property
    def api_type(self) -> str:
        return "fake"

    @property
    def name(self) -> str:
        return "fake"

    async def stream(
        self,
        messages,
        *,
        model,
        tools=None,
        tool_choice=None,
        settings=None,
        provider_options=None,
        include_raw_chunks=False,
    ):
        self.calls.append(
            {
                "messages": list(messages),
                "model": model,
                "tools": tools,
                "tool_choice": tool_choice,
                "settings": settings,
            }
        )
        if self._open_error is not None:
            raise self._open_error
        script = self._scripts.pop(0)

        async def _iter() -> AsyncIterator:
            for item in script:
                if item is HANG:
                    await asyncio.Event().wait()
                if isinstance(item, Exception):
                    raise item
                yield item

        return _iter(), {"request_body": {"model": model}}


def text_step(text: str, usage: Usage | None = None, reason: str = "stop") -> list:
    """Wire script for a step that answers with *text*."""
    return [
        parts.StreamStart(),
        parts.TextStart(id="t1"),
        parts.TextDelta(id="t1", delta=text),
        parts.TextEnd(id="t1"),
        parts.Finish(usage=usage or Usage(), finish_reason=reason),
    ]


@pytest.fixture
def usage() -> Usage:
    return Usage(input_tokens=10, output_tokens=5, total_tokens=15)
