"""Event stream transforms.

A transform takes the async iterator of :mod:`~llmkit.events` a caller
would receive and returns another one.  Transforms are applied in order on
the consumer side of the output channel, so callbacks always see the
untransformed events.

Example::

    result = await StreamText(
        provider,
        messages,
        model="gpt-4o-mini",
        transforms=[
            filter_events(lambda e: not isinstance(e, events.Raw)),
            batch_text(max_batch_size=64, max_delay=0.05),
        ],
    ).execute()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Sequence

from . import events
from .events import StreamEvent

StreamTransform = Callable[[AsyncIterator[StreamEvent]], AsyncIterator[StreamEvent]]


def filter_events(predicate: Callable[[StreamEvent], bool]) -> StreamTransform:
    """Keep only the events *predicate* accepts."""

    async def transform(stream: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
        async for event in stream:
            if predicate(event):
                yield event

    return transform


def map_events(mapper: Callable[[StreamEvent], StreamEvent]) -> StreamTransform:
    """Replace every event with ``mapper(event)``."""

    async def transform(stream: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
        async for event in stream:
            yield mapper(event)

    return transform


def throttle(delay: float) -> StreamTransform:
    """Wait *delay* seconds before passing on each event."""

    async def transform(stream: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
        async for event in stream:
            await asyncio.sleep(delay)
            yield event

    return transform


def batch_text(max_batch_size: int, max_delay: float) -> StreamTransform:
    """Merge consecutive text deltas of one span.

    A batch is released once it holds *max_batch_size* characters, once
    *max_delay* seconds have passed since the last release, or when any
    other event (or a delta of another span) arrives.
    """

    async def transform(stream: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
        batch: list[events.TextDelta] = []
        size = 0
        last_emit = time.monotonic()

        def release() -> events.TextDelta:
            nonlocal size, last_emit
            first = batch[0]
            merged = events.TextDelta(
                id=first.id,
                text="".join(d.text for d in batch),
                provider_metadata=first.provider_metadata,
            )
            batch.clear()
            size = 0
            last_emit = time.monotonic()
            return merged

        async for event in stream:
            if isinstance(event, events.TextDelta):
                if batch and batch[0].id != event.id:
                    yield release()
                batch.append(event)
                size += len(event.text)
                if size >= max_batch_size or time.monotonic() - last_emit >= max_delay:
                    yield release()
                continue
            if batch:
                yield release()
            yield event

        if batch:
            yield release()

    return transform


def apply_transforms(
    stream: AsyncIterator[StreamEvent],
    transforms: Sequence[StreamTransform],
) -> AsyncIterator[StreamEvent]:
    for transform in transforms:
        stream = transform(stream)
    return stream
