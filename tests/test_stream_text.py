"""Tests for llmkit.stream_text: ordering, callbacks, cancellation, tool loops."""

import asyncio
import logging

import pytest

from conftest import HANG, FakeProvider, text_step

from llmkit import (
    CallSettings,
    ChunkEvent,
    ErrorEvent,
    FinishEvent,
    InvalidArgumentError,
    InvalidPromptError,
    NoOutputGeneratedError,
    PrepareStepResult,
    StaticToolResult,
    StreamText,
    Tool,
    ToolError,
    Usage,
    events,
    has_tool_call,
    parts,
    step_count_is,
    system,
    user,
)

MESSAGES = [system("Be brief."), user("Weather in Paris?")]


async def _collect(result) -> list:
    return [event async for event in result]


def _weather_call(call_id: str = "c1") -> parts.ToolCall:
    return parts.ToolCall(tool_call_id=call_id, tool_name="weather", input='{"city":"Paris"}')


def _tool_step(usage: Usage) -> list:
    return [
        parts.StreamStart(),
        _weather_call(),
        parts.Finish(usage=usage, finish_reason="tool-calls"),
    ]


class _FailingClose:
    """Wraps a provider iterator whose ``aclose`` raises."""

    def __init__(self, inner) -> None:
        self._inner = inner

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self._inner.__anext__()

    async def aclose(self) -> None:
        raise RuntimeError("close failed")


class _FailingCloseProvider(FakeProvider):
    async def stream(self, messages, **kwargs):
        iterator, store = await super().stream(messages, **kwargs)
        return _FailingClose(iterator), store


class TestOrdering:
    @pytest.mark.asyncio
    async def test_concrete_scenario(self, usage):
        provider = FakeProvider(
            [
                parts.StreamStart(),
                parts.ResponseMetadata(id="resp_1", model_id="m"),
                parts.TextStart(id="t1"),
                parts.TextDelta(id="t1", delta="Hel"),
                parts.TextDelta(id="t1", delta="lo"),
                parts.TextEnd(id="t1"),
                _weather_call(),
                parts.Finish(usage=usage, finish_reason="tool-calls"),
            ]
        )
        result = await StreamText(
            provider, MESSAGES, model="m", tools={"weather": Tool()}
        ).execute()
        out = await _collect(result)

        assert [type(e) for e in out] == [
            events.Start,
            events.StartStep,
            events.TextStart,
            events.TextDelta,
            events.TextDelta,
            events.TextEnd,
            events.ToolCall,
            events.FinishStep,
            events.Finish,
        ]
        assert out[1].request.body == {"model": "m"}
        assert out[7].response.id == "resp_1"
        assert out[8] == events.Finish(finish_reason="tool-calls", total_usage=usage)

        (step,) = await result.steps()
        assert step.text == "Hello"
        assert step.tool_calls[0].input == {"city": "Paris"}
        assert await result.text() == "Hello"
        assert await result.finish_reason() == "tool-calls"
        assert await result.total_usage() == usage

    @pytest.mark.asyncio
    async def test_stream_is_not_restartable(self):
        result = await StreamText(FakeProvider(text_step("hi")), MESSAGES, model="m").execute()
        first = await _collect(result)
        second = await _collect(result)
        assert len(first) > 0
        assert second == []

    @pytest.mark.asyncio
    async def test_accessors_drain_the_stream(self):
        result = await StreamText(FakeProvider(text_step("hi")), MESSAGES, model="m").execute()
        assert await result.text() == "hi"
        assert await _collect(result) == []


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_cardinality(self, usage):
        chunks: list[ChunkEvent] = []
        step_results = []
        finishes: list[FinishEvent] = []

        async def on_step_finish(step):
            step_results.append(step)

        provider = FakeProvider(
            [
                parts.StreamStart(),
                parts.TextDelta(id="t1", delta="a"),
                parts.TextDelta(id="t1", delta="b"),
                parts.Raw(raw_value={"chunk": 1}),
                parts.Finish(usage=usage, finish_reason="stop"),
            ]
        )
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            include_raw_chunks=True,
            on_chunk=chunks.append,
            on_step_finish=on_step_finish,
            on_finish=finishes.append,
        ).execute()
        out = await _collect(result)

        assert [type(c.chunk) for c in chunks] == [
            events.TextDelta,
            events.TextDelta,
            events.Raw,
        ]
        assert [c.chunk for c in chunks] == [e for e in out if events.is_chunk(e)]
        assert len(step_results) == 1
        assert step_results[0].text == "ab"
        (finish,) = finishes
        assert finish.step_result == step_results[0]
        assert finish.steps == (step_results[0],)
        assert finish.total_usage == usage

    @pytest.mark.asyncio
    async def test_no_finished_step_means_no_on_finish(self):
        finishes = []
        result = await StreamText(
            FakeProvider([]), MESSAGES, model="m", on_finish=finishes.append
        ).execute()
        out = await _collect(result)
        assert out == [events.Start()]
        assert finishes == []
        with pytest.raises(NoOutputGeneratedError):
            await result.text()

    @pytest.mark.asyncio
    async def test_error_event_does_not_end_the_stream(self):
        errors: list[ErrorEvent] = []
        provider = FakeProvider(
            [
                parts.StreamStart(),
                parts.Error(error={"message": "overloaded"}),
                parts.TextDelta(id="t1", delta="still here"),
                parts.Finish(usage=Usage(), finish_reason="stop"),
            ]
        )
        result = await StreamText(
            provider, MESSAGES, model="m", on_error=errors.append
        ).execute()
        out = await _collect(result)

        assert errors == [ErrorEvent(error={"message": "overloaded"})]
        assert events.Error(error={"message": "overloaded"}) in out
        assert isinstance(out[-1], events.Finish)
        assert await result.text() == "still here"

    @pytest.mark.asyncio
    async def test_failing_callback_is_logged(self, caplog):
        def on_chunk(_):
            raise RuntimeError("callback bug")

        with caplog.at_level(logging.WARNING, logger="llmkit.callbacks"):
            result = await StreamText(
                FakeProvider(text_step("fine")), MESSAGES, model="m", on_chunk=on_chunk
            ).execute()
            out = await _collect(result)

        assert isinstance(out[-1], events.Finish)
        assert "on_chunk" in caplog.text
        assert "callback bug" in caplog.text


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_exception_becomes_error_event(self, caplog):
        finishes = []
        provider = FakeProvider(
            [
                parts.StreamStart(),
                parts.TextDelta(id="t1", delta="par"),
                RuntimeError("connection reset"),
            ]
        )
        with caplog.at_level(logging.WARNING, logger="llmkit.stream_text"):
            result = await StreamText(
                provider, MESSAGES, model="m", on_finish=finishes.append
            ).execute()
            out = await _collect(result)

        assert out[-1] == events.Error(error={"message": "connection reset"})
        assert finishes == []
        assert "Provider stream failed" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_stop_condition_ends_the_stream(self, usage, caplog):
        def broken(_steps):
            raise RuntimeError("bad condition")

        errors, finishes = [], []
        provider = FakeProvider(_tool_step(usage), text_step("never requested"))
        with caplog.at_level(logging.WARNING, logger="llmkit.stream_text"):
            result = await StreamText(
                provider,
                MESSAGES,
                model="m",
                tools={"weather": Tool(lambda _: "ok")},
                stop_when=[broken],
                on_error=errors.append,
                on_finish=finishes.append,
            ).execute()
            out = await asyncio.wait_for(_collect(result), 2)

        assert out[-1] == events.Error(error={"message": "bad condition"})
        assert isinstance(out[-2], events.Finish)
        assert errors == [ErrorEvent(error={"message": "bad condition"})]
        assert len(provider.calls) == 1
        assert len(finishes) == 1
        assert len(await result.steps()) == 1
        assert "Could not start step 2" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_follow_up_open_ends_the_stream(self, usage):
        provider = FakeProvider(_tool_step(usage))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[step_count_is(3)],
        ).execute()
        out = await asyncio.wait_for(_collect(result), 2)

        assert isinstance(out[-1], events.Error)
        assert len(provider.calls) == 2
        assert len(await result.steps()) == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure_still_ends_the_stream(self, caplog):
        finishes = []
        provider = _FailingCloseProvider(text_step("Hello"))
        with caplog.at_level(logging.WARNING, logger="llmkit.stream_text"):
            result = await StreamText(
                provider, MESSAGES, model="m", on_finish=finishes.append
            ).execute()
            out = await asyncio.wait_for(_collect(result), 2)

        assert out[-1] == events.Error(error={"message": "close failed"})
        assert isinstance(out[-2], events.Finish)
        assert finishes == []
        assert await result.text() == "Hello"
        assert "Stream run failed" in caplog.text

    @pytest.mark.asyncio
    async def test_open_failure_raises_out_of_band(self):
        provider = FakeProvider(open_error=ConnectionError("refused"))
        with pytest.raises(ConnectionError):
            await StreamText(provider, MESSAGES, model="m").execute()

    @pytest.mark.asyncio
    async def test_invalid_settings(self):
        provider = FakeProvider(text_step("x"))
        with pytest.raises(InvalidArgumentError) as info:
            await StreamText(
                provider, MESSAGES, model="m", settings=CallSettings(max_output_tokens=0)
            ).execute()
        assert info.value.argument == "max_output_tokens"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_non_finite_temperature(self):
        with pytest.raises(InvalidArgumentError):
            await StreamText(
                FakeProvider(text_step("x")),
                MESSAGES,
                model="m",
                settings=CallSettings(temperature=float("nan")),
            ).execute()

    @pytest.mark.asyncio
    async def test_invalid_prompt(self):
        with pytest.raises(InvalidPromptError):
            await StreamText(FakeProvider(text_step("x")), [], model="m").execute()
        with pytest.raises(InvalidPromptError):
            await StreamText(
                FakeProvider(text_step("x")), [("robot", ["hi"])], model="m"
            ).execute()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_aclose_stops_the_run_without_on_finish(self):
        finishes = []
        provider = FakeProvider(
            [
                parts.StreamStart(),
                parts.TextDelta(id="t1", delta="first"),
                HANG,
                parts.Finish(usage=Usage(), finish_reason="stop"),
            ]
        )
        result = await StreamText(
            provider, MESSAGES, model="m", on_finish=finishes.append
        ).execute()

        seen = []
        async for event in result:
            seen.append(event)
            if isinstance(event, events.TextDelta):
                break
        await result.aclose()

        assert seen[-1].text == "first"
        with pytest.raises(NoOutputGeneratedError):
            await result.steps()
        await asyncio.sleep(0)
        assert finishes == []


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_tool_results_feed_the_next_step(self, usage):
        second_usage = Usage(input_tokens=20, output_tokens=3, total_tokens=23)
        provider = FakeProvider(
            [
                parts.StreamStart(),
                _weather_call(),
                parts.Finish(usage=usage, finish_reason="tool-calls"),
            ],
            text_step("Sunny.", second_usage),
        )
        step_results = []
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda inp: f"sunny in {inp['city']}")},
            stop_when=[step_count_is(3)],
            on_step_finish=step_results.append,
        ).execute()
        out = await _collect(result)

        assert [type(e) for e in out] == [
            events.Start,
            events.StartStep,
            events.ToolCall,
            events.ToolResult,
            events.FinishStep,
            events.Finish,
            events.StartStep,
            events.TextStart,
            events.TextDelta,
            events.TextEnd,
            events.FinishStep,
            events.Finish,
        ]
        assert out[5].total_usage == usage
        assert out[11].total_usage == usage + second_usage

        first, second = await result.steps()
        assert first.tool_results == [
            StaticToolResult(
                tool_call_id="c1",
                tool_name="weather",
                output="sunny in Paris",
                input={"city": "Paris"},
            )
        ]
        assert second.text == "Sunny."
        assert step_results == [first, second]
        assert await result.text() == "Sunny."
        assert await result.total_usage() == usage + second_usage

        follow_up = provider.calls[1]["messages"]
        assert follow_up[:2] == MESSAGES
        assert follow_up[2] == (
            "assistant",
            [
                {
                    "type": "tool_call",
                    "id": "c1",
                    "name": "weather",
                    "arguments": '{"city":"Paris"}',
                }
            ],
        )
        assert follow_up[3] == (
            "tool",
            [{"type": "tool_result", "tool_call_id": "c1", "content": "sunny in Paris"}],
        )

    @pytest.mark.asyncio
    async def test_default_stops_after_one_step(self, usage):
        provider = FakeProvider(
            [parts.StreamStart(), _weather_call(), parts.Finish(usage=usage, finish_reason="tool-calls")],
            text_step("never requested"),
        )
        result = await StreamText(
            provider, MESSAGES, model="m", tools={"weather": Tool(lambda _: "ok")}
        ).execute()
        await _collect(result)
        assert len(provider.calls) == 1
        (step,) = await result.steps()
        assert [r.output for r in step.tool_results] == ["ok"]

    @pytest.mark.asyncio
    async def test_has_tool_call_stops(self, usage):
        provider = FakeProvider(
            [parts.StreamStart(), _weather_call(), parts.Finish(usage=usage, finish_reason="tool-calls")],
            text_step("never requested"),
        )
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[step_count_is(5), has_tool_call("weather")],
        ).execute()
        await _collect(result)
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_async_stop_condition(self, usage):
        async def never(_steps):
            return False

        provider = FakeProvider(
            [parts.StreamStart(), _weather_call(), parts.Finish(usage=usage, finish_reason="tool-calls")],
            text_step("done"),
        )
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[never],
        ).execute()
        assert await result.text() == "done"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_tool_still_continues(self, usage):
        def broken(_):
            raise ValueError("no data")

        provider = FakeProvider(
            [parts.StreamStart(), _weather_call(), parts.Finish(usage=usage, finish_reason="tool-calls")],
            text_step("Sorry."),
        )
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(broken)},
            stop_when=[step_count_is(2)],
        ).execute()
        out = await _collect(result)

        (error_event,) = [e for e in out if isinstance(e, events.ToolError)]
        assert isinstance(error_event.tool_error, ToolError)
        assert "no data" in error_event.tool_error.error
        assert await result.text() == "Sorry."
        tool_message = provider.calls[1]["messages"][-1]
        assert tool_message[1][0]["content"] == error_event.tool_error.error

    @pytest.mark.asyncio
    async def test_unanswered_call_ends_the_loop(self, usage):
        provider = FakeProvider(
            [parts.StreamStart(), _weather_call(), parts.Finish(usage=usage, finish_reason="tool-calls")],
            text_step("never requested"),
        )
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool()},
            stop_when=[step_count_is(5)],
        ).execute()
        await _collect(result)
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_unencodable_tool_output_is_sent_as_text(self, usage):
        class Reading:
            def __str__(self) -> str:
                return "21C and sunny"

        provider = FakeProvider(_tool_step(usage), text_step("Sunny."))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: Reading())},
            stop_when=[step_count_is(3)],
        ).execute()

        assert await asyncio.wait_for(result.text(), 2) == "Sunny."
        tool_message = provider.calls[1]["messages"][-1]
        assert tool_message[1][0]["content"] == '"21C and sunny"'


class TestPrepareStep:
    @pytest.mark.asyncio
    async def test_overrides_apply_to_their_step(self, usage):
        seen = []

        def prepare(options):
            seen.append((options.step_number, len(options.steps), len(options.messages)))
            if options.step_number == 1:
                return PrepareStepResult(
                    tool_choice="none", active_tools=[], system="Answer now."
                )
            return None

        provider = FakeProvider(_tool_step(usage), text_step("Sunny."))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[step_count_is(3)],
            prepare_step=prepare,
        ).execute()

        assert await result.text() == "Sunny."
        assert seen == [(0, 0, 2), (1, 1, 4)]
        first, second = provider.calls
        assert first["tool_choice"] is None
        assert first["tools"] is not None
        assert first["messages"] == MESSAGES
        assert second["tool_choice"] == "none"
        assert second["tools"] is None
        assert second["messages"][0] == ("system", ["Answer now."])
        assert [m[0] for m in second["messages"]] == ["system", "user", "assistant", "tool"]

    @pytest.mark.asyncio
    async def test_active_tools_filter_the_tool_set(self):
        def prepare(_options):
            return PrepareStepResult(active_tools=["clock"])

        provider = FakeProvider(text_step("ok"))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok"), "clock": Tool(lambda _: "noon")},
            prepare_step=prepare,
        ).execute()
        await _collect(result)
        (spec,) = provider.calls[0]["tools"]
        assert spec["function"]["name"] == "clock"

    @pytest.mark.asyncio
    async def test_async_message_override_is_not_kept(self, usage):
        async def prepare(options):
            if options.step_number == 0:
                return PrepareStepResult(messages=[user("Short version?")])
            return None

        provider = FakeProvider(_tool_step(usage), text_step("Sunny."))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[step_count_is(3)],
            prepare_step=prepare,
        ).execute()
        await _collect(result)

        first, second = provider.calls
        assert first["messages"] == [("user", ["Short version?"])]
        assert second["messages"][:2] == MESSAGES
        assert len(second["messages"]) == 4

    @pytest.mark.asyncio
    async def test_failure_before_first_step_raises(self):
        def prepare(_options):
            raise ValueError("no plan")

        provider = FakeProvider(text_step("x"))
        with pytest.raises(ValueError):
            await StreamText(provider, MESSAGES, model="m", prepare_step=prepare).execute()
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_failure_on_later_step_becomes_error_event(self, usage):
        def prepare(options):
            if options.step_number > 0:
                raise ValueError("no plan")
            return None

        provider = FakeProvider(_tool_step(usage), text_step("never requested"))
        result = await StreamText(
            provider,
            MESSAGES,
            model="m",
            tools={"weather": Tool(lambda _: "ok")},
            stop_when=[step_count_is(3)],
            prepare_step=prepare,
        ).execute()
        out = await asyncio.wait_for(_collect(result), 2)

        assert out[-1] == events.Error(error={"message": "no plan"})
        assert len(provider.calls) == 1
