"""Provider wire parts -> public stream events."""

from __future__ import annotations

import base64
from typing import Any

from . import events, parts
from .accumulator import StepAccumulator
from .exceptions import InvalidToolInputError
from .tools import ToolDispatcher
from .types import ToolError


class StreamTranslator:
    """Single-pass, stateful mapping from wire parts to stream events.

    Each call to :meth:`translate` yields zero or one event and updates the
    accumulator as a side effect.  Callbacks and delivery are the caller's
    business; the translator never awaits anything.
    """

    def __init__(
        self,
        accumulator: StepAccumulator,
        dispatcher: ToolDispatcher,
        *,
        include_raw_chunks: bool = False,
    ) -> None:
        self.accumulator = accumulator
        self.dispatcher = dispatcher
        self.include_raw_chunks = include_raw_chunks

    def translate(self, part: parts.StreamPart) -> events.StreamEvent | None:
        acc = self.accumulator

        match part:
            case parts.StreamStart():
                acc.record_warnings(part.warnings)
                return events.StartStep(request=acc.request, warnings=tuple(part.warnings))

            case parts.TextStart():
                return events.TextStart(id=part.id, provider_metadata=part.provider_metadata)
            case parts.TextDelta():
                acc.append_text(part.id, part.delta)
                return events.TextDelta(
                    id=part.id, text=part.delta, provider_metadata=part.provider_metadata
                )
            case parts.TextEnd():
                acc.close_text(part.id)
                return events.TextEnd(id=part.id, provider_metadata=part.provider_metadata)

            case parts.ReasoningStart():
                return events.ReasoningStart(
                    id=part.id, provider_metadata=part.provider_metadata
                )
            case parts.ReasoningDelta():
                acc.append_reasoning(part.id, part.delta)
                return events.ReasoningDelta(
                    id=part.id, text=part.delta, provider_metadata=part.provider_metadata
                )
            case parts.ReasoningEnd():
                acc.close_reasoning(part.id)
                return events.ReasoningEnd(
                    id=part.id, provider_metadata=part.provider_metadata
                )

            # Tool input streaming is informational; calls are materialised
            # only from the complete tool-call part.
            case parts.ToolInputStart():
                return events.ToolInputStart(
                    id=part.id,
                    tool_name=part.tool_name,
                    provider_executed=bool(part.provider_executed),
                    dynamic=not self.dispatcher.is_static(part.tool_name),
                    provider_metadata=part.provider_metadata,
                )
            case parts.ToolInputDelta():
                return events.ToolInputDelta(
                    id=part.id, text=part.delta, provider_metadata=part.provider_metadata
                )
            case parts.ToolInputEnd():
                return events.ToolInputEnd(
                    id=part.id, provider_metadata=part.provider_metadata
                )

            case parts.ToolCall():
                return self._tool_call(part)
            case parts.ToolResult():
                return self._tool_result(part)

            case parts.Source():
                acc.add(part.source)
                return events.Source(source=part.source)
            case parts.File():
                return events.File(
                    file=events.GeneratedFile(
                        base64=_to_base64(part.data), media_type=part.media_type
                    )
                )

            case parts.ResponseMetadata():
                acc.record_response(
                    id=part.id, model_id=part.model_id, timestamp=part.timestamp
                )
                return None

            case parts.Finish():
                step = acc.finish(part.usage, part.finish_reason, part.provider_metadata)
                return events.FinishStep(
                    usage=step.usage,
                    finish_reason=step.finish_reason,
                    response=step.response,
                    provider_metadata=step.provider_metadata,
                )

            case parts.Raw():
                if not self.include_raw_chunks:
                    return None
                return events.Raw(raw_value=part.raw_value)

            case parts.Error():
                return events.Error(error=part.error)

        return events.Error(
            error={"message": f"Unsupported stream part: {type(part).__name__}"}
        )

    def _tool_call(self, part: parts.ToolCall) -> events.StreamEvent:
        # Text that arrived before the call stays before it in the step.
        self.accumulator.close_open_spans()
        try:
            call = self.dispatcher.parse_call(part)
        except InvalidToolInputError as exc:
            self.accumulator.add(
                ToolError(
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    error=str(exc),
                    input=part.input,
                    dynamic=not self.dispatcher.is_static(part.tool_name),
                    provider_executed=bool(part.provider_executed),
                )
            )
            return events.Error(
                error={
                    "message": str(exc),
                    "tool_call_id": part.tool_call_id,
                    "tool_name": part.tool_name,
                }
            )

        self.accumulator.add(call)
        return events.ToolCall(tool_call=call)

    def _tool_result(self, part: parts.ToolResult) -> events.StreamEvent:
        call = self.accumulator.find_tool_call(part.tool_call_id)
        result = self.dispatcher.parse_result(part, call)
        self.accumulator.add(result)
        if isinstance(result, ToolError):
            return events.ToolError(tool_error=result)
        return events.ToolResult(tool_result=result)


def _to_base64(data: Any) -> str:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return base64.b64encode(data).decode("ascii")
    return data
