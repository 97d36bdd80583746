"""Streaming text generation with tool calls and callbacks.

``StreamText`` validates the call, opens the first provider stream and
hands the rest to one background task.  That task owns every piece of
mutable state for the run; the caller sees it only through the
:class:`OutputChannel`.

Per wire part the task does, in order:

1. translate it (possibly updating the step accumulator),
2. fire ``on_error`` if the event is an error,
3. fire ``on_chunk`` if the event is a chunk,
4. enqueue the event.

When a step finishes, ``FinishStep`` is enqueued, ``on_step_finish`` runs,
and then ``Finish`` (carrying the usage summed over all steps so far) is
enqueued.  ``on_finish`` runs once after the last provider stream is
exhausted, and only if at least one step finished and the caller is still
listening.

Before every provider call ``prepare_step`` may override the tool choice,
active tools, system prompt or messages for that call.  Stream transforms
run on the consumer side of the channel, after the callbacks.

Whatever fails inside the task (a stop condition, ``prepare_step``, opening
a follow-up stream) becomes an ``Error`` event and the channel is still
ended, so the consumer never waits forever.  Only cancellation skips that.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import msgspec

from . import events, parts
from .accumulator import StepAccumulator
from .callbacks import CallbackRouter, OnChunk, OnError, OnFinish, OnStepFinish
from .exceptions import InvalidPromptError, NoOutputGeneratedError
from .prepare_step import PrepareStep, prepare_step_overrides, with_system
from .provider import Provider, ToolChoice
from .settings import CallSettings
from .stop_conditions import StopCondition, is_stop_condition_met, step_count_is
from .tools import ToolDispatcher, ToolSet, tool_specs
from .transforms import StreamTransform, apply_transforms
from .translator import StreamTranslator
from .types import (
    FinishReason,
    Message,
    RequestMetadata,
    StaticToolResult,
    StepResult,
    Usage,
    response_messages,
)

logger = logging.getLogger(__name__)

_ROLES = frozenset({"system", "user", "assistant", "tool"})
_END = object()


# ---------------------------------------------------------------------------
# Output channel
# ---------------------------------------------------------------------------


class OutputChannel:
    """Unbounded FIFO from the driving task to a single consumer.

    :meth:`receive` can be iterated once; a second iteration yields
    nothing.  When the consumer stops (exhausts, breaks and closes, or
    calls :meth:`close`) the channel is marked closed and the producer
    task is cancelled.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._consumed = False
        self.producer: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: events.StreamEvent) -> bool:
        """Enqueue *event*; ``False`` means nobody is listening any more."""
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def end(self) -> None:
        self._queue.put_nowait(_END)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.producer is not None and not self.producer.done():
            self.producer.cancel()

    async def receive(self) -> AsyncIterator[events.StreamEvent]:
        if self._consumed:
            return
        self._consumed = True
        try:
            while True:
                event = await self._queue.get()
                if event is _END:
                    return
                yield event
        finally:
            self.close()


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class RunOutcome(msgspec.Struct, frozen=True):
    steps: tuple[StepResult, ...]
    total_usage: Usage


class StreamTextResult:
    """Handle on a running stream.

    Iterate it (once) for the events, or await one of the accessors, which
    drain whatever is left of the stream first.  A caller that stops
    iterating early should ``await result.aclose()`` so the background
    task stops too.
    """

    def __init__(
        self,
        channel: OutputChannel,
        task: asyncio.Task,
        transforms: Sequence[StreamTransform] = (),
    ) -> None:
        self._channel = channel
        self._task = task
        self._transforms = list(transforms)
        self._source: AsyncIterator[events.StreamEvent] | None = None
        self._stream: AsyncIterator[events.StreamEvent] | None = None

    @property
    def stream(self) -> AsyncIterator[events.StreamEvent]:
        """The events, after every transform has been applied."""
        if self._stream is None:
            self._source = self._channel.receive()
            self._stream = apply_transforms(self._source, self._transforms)
        return self._stream

    def __aiter__(self) -> AsyncIterator[events.StreamEvent]:
        return self.stream

    async def aclose(self) -> None:
        """Stop the run.  ``on_finish`` will not fire."""
        self._channel.close()
        for iterator in (self.stream, self._source):
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _outcome(self) -> RunOutcome:
        async for _ in self.stream:
            pass
        if not self._task.done():
            await asyncio.wait({self._task})
        if self._task.cancelled():
            raise NoOutputGeneratedError("The stream was closed before the run completed")
        return self._task.result()

    async def steps(self) -> list[StepResult]:
        return list((await self._outcome()).steps)

    async def total_usage(self) -> Usage:
        return (await self._outcome()).total_usage

    async def text(self) -> str:
        """Text of the final step."""
        return (await self._last_step()).text

    async def finish_reason(self) -> FinishReason:
        return (await self._last_step()).finish_reason

    async def _last_step(self) -> StepResult:
        steps = (await self._outcome()).steps
        if not steps:
            raise NoOutputGeneratedError("No step finished")
        return steps[-1]


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class _Run:
    """All mutable state of one call, owned by the background task."""

    def __init__(self, call: StreamText, channel: OutputChannel) -> None:
        self.call = call
        self.channel = channel
        self.accumulator = StepAccumulator()
        self.dispatcher = ToolDispatcher(call.tools)
        self.translator = StreamTranslator(
            self.accumulator,
            self.dispatcher,
            include_raw_chunks=call.include_raw_chunks,
        )
        self.router = CallbackRouter(
            on_chunk=call.on_chunk,
            on_error=call.on_error,
            on_step_finish=call.on_step_finish,
            on_finish=call.on_finish,
        )
        self.total_usage = Usage()

    async def emit(self, event: events.StreamEvent) -> bool:
        if isinstance(event, events.Error):
            await self.router.error(event.error)
        await self.router.chunk(event)
        return self.channel.send(event)

    async def run(
        self,
        opened: tuple[AsyncIterator[parts.StreamPart], RequestMetadata],
        messages: list[Message],
    ) -> RunOutcome:
        cancelled = False
        try:
            await self.run_steps(opened, messages)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as exc:
            logger.warning("Stream run failed", exc_info=True)
            await self.emit(events.Error(error={"message": str(exc)}))
        finally:
            if not cancelled:
                self.channel.end()
        return self.outcome()

    async def run_steps(
        self,
        opened: tuple[AsyncIterator[parts.StreamPart], RequestMetadata],
        messages: list[Message],
    ) -> None:
        steps = self.accumulator.steps
        self.channel.send(events.Start())

        iterator, request = opened
        while True:
            self.accumulator.begin_request(request)
            finished_before = len(steps)
            if not await self.drive(iterator):
                return
            if len(steps) == finished_before:
                break

            # Stop conditions, prepare-step and tool outputs are user code.
            try:
                if not await self.should_continue():
                    break
                messages.extend(response_messages(steps[-1]))
                iterator, request = await self.call.open_stream(messages, steps)
            except Exception as exc:
                logger.warning("Could not start step %d", len(steps) + 1, exc_info=True)
                if not await self.emit(events.Error(error={"message": str(exc)})):
                    return
                break

        if steps and not self.channel.closed:
            await self.router.finish(steps[-1], steps, self.total_usage)

    def outcome(self) -> RunOutcome:
        return RunOutcome(steps=tuple(self.accumulator.steps), total_usage=self.total_usage)

    async def drive(self, iterator: AsyncIterator[parts.StreamPart]) -> bool:
        """Translate one provider stream.  ``False`` if the consumer left."""
        try:
            async for part in iterator:
                if isinstance(part, parts.Finish) and not await self.run_tools():
                    return False

                event = self.translator.translate(part)
                if event is None:
                    continue
                if not await self.emit(event):
                    return False

                if isinstance(event, events.FinishStep):
                    step = self.accumulator.steps[-1]
                    await self.router.step_finish(step)
                    self.total_usage = self.total_usage + step.usage
                    finish = events.Finish(
                        finish_reason=step.finish_reason, total_usage=self.total_usage
                    )
                    if not await self.emit(finish):
                        return False
        except Exception as exc:
            logger.warning("Provider stream failed", exc_info=True)
            return await self.emit(events.Error(error={"message": str(exc)}))
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return True

    async def run_tools(self) -> bool:
        """Execute the open step's local tool calls before it is frozen."""
        self.accumulator.flush()
        for call in self.accumulator.pending_tool_calls():
            if not self.dispatcher.executable(call):
                continue
            output = await self.dispatcher.execute(call)
            self.accumulator.add(output)
            if isinstance(output, StaticToolResult):
                event = events.ToolResult(tool_result=output)
            else:
                event = events.ToolError(tool_error=output)
            if not await self.emit(event):
                return False
        return True

    async def should_continue(self) -> bool:
        steps = self.accumulator.steps
        step = steps[-1]
        client_calls = [c for c in step.tool_calls if self.dispatcher.executable(c)]
        if not client_calls:
            return False
        answered = {p.tool_call_id for p in (*step.tool_results, *step.tool_errors)}
        if any(c.tool_call_id not in answered for c in client_calls):
            return False
        return not await is_stop_condition_met(self.call.stop_when, steps)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class StreamText:
    """Configure a streaming call, then ``await execute()`` it.

    Example::

        result = await StreamText(
            provider,
            [system("Be brief."), user("Weather in Paris?")],
            model="gpt-4o-mini",
            tools={"weather": Tool(get_weather, input_type=WeatherInput)},
            stop_when=[step_count_is(3)],
        ).execute()
        async for event in result:
            if isinstance(event, events.TextDelta):
                print(event.text, end="")
    """

    def __init__(
        self,
        provider: Provider,
        messages: Sequence[Message],
        *,
        model: str,
        settings: CallSettings | None = None,
        tools: ToolSet | None = None,
        tool_choice: ToolChoice | None = None,
        provider_options: dict[str, Any] | None = None,
        include_raw_chunks: bool = False,
        stop_when: Sequence[StopCondition] | None = None,
        prepare_step: PrepareStep | None = None,
        transforms: Sequence[StreamTransform] | None = None,
        on_chunk: OnChunk | None = None,
        on_error: OnError | None = None,
        on_step_finish: OnStepFinish | None = None,
        on_finish: OnFinish | None = None,
    ) -> None:
        self.provider = provider
        self.messages = list(messages)
        self.model = model
        self.settings = settings or CallSettings()
        self.tools = tools
        self.tool_choice = tool_choice
        self.provider_options = provider_options
        self.include_raw_chunks = include_raw_chunks
        self.stop_when = list(stop_when) if stop_when else [step_count_is(1)]
        self.prepare_step = prepare_step
        self.transforms = list(transforms) if transforms else []
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.on_step_finish = on_step_finish
        self.on_finish = on_finish

    async def execute(self) -> StreamTextResult:
        """Start the run.

        Raises
        ------
        InvalidArgumentError
            A call setting is out of range.
        InvalidPromptError
            The message list is empty or has an unknown role.

        Anything the provider raises while establishing the first stream
        also propagates from here.  Once this returns, every problem is
        delivered as an ``Error`` event.
        """
        self.settings.validate()
        self._validate_prompt()

        messages = list(self.messages)
        opened = await self.open_stream(messages)

        channel = OutputChannel()
        run = _Run(self, channel)
        task = asyncio.create_task(run.run(opened, messages))
        channel.producer = task
        return StreamTextResult(channel, task, self.transforms)

    def _validate_prompt(self) -> None:
        if not self.messages:
            raise InvalidPromptError("messages must not be empty")
        for role, _items in self.messages:
            if role not in _ROLES:
                raise InvalidPromptError(f"Unknown message role: {role!r}")

    async def open_stream(
        self,
        messages: list[Message],
        steps: Sequence[StepResult] = (),
    ) -> tuple[AsyncIterator[parts.StreamPart], RequestMetadata]:
        """Call the provider for the next step, applying ``prepare_step``."""
        overrides = await prepare_step_overrides(self.prepare_step, steps, messages)
        step_messages = overrides.messages if overrides.messages is not None else messages
        tool_choice = (
            overrides.tool_choice if overrides.tool_choice is not None else self.tool_choice
        )
        tools = self.tools
        if tools and overrides.active_tools is not None:
            tools = {n: t for n, t in tools.items() if n in overrides.active_tools}

        iterator, store = await self.provider.stream(
            with_system(step_messages, overrides.system),
            model=self.model,
            tools=tool_specs(tools),
            tool_choice=tool_choice,
            settings=self.settings,
            provider_options=self.provider_options,
            include_raw_chunks=self.include_raw_chunks,
        )
        return iterator, RequestMetadata(body=store.get("request_body"))
