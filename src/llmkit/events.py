"""Public stream events.

These are what a caller iterating a
:class:`~llmkit.stream_text.StreamTextResult` receives, in exactly the order
the translator produced them.  Events that carry an ``id`` group a
multi-delta span; ids are opaque and only unique within one step.
"""

from __future__ import annotations

from typing import Any

import msgspec

from .types import (
    CallWarning,
    FinishReason,
    RequestMetadata,
    Source as SourceRecord,
    StepResponseMetadata,
    ToolError as ToolErrorRecord,
    TypedToolCall,
    TypedToolResult,
    Usage,
)


class GeneratedFile(msgspec.Struct, frozen=True):
    """A file produced by the model.  Providers never report a name."""

    base64: str
    media_type: str
    name: str | None = None


class _Event(msgspec.Struct, frozen=True, tag_field="type"):
    pass


class Start(_Event, tag="start"):
    pass


class StartStep(_Event, tag="start-step"):
    request: RequestMetadata = msgspec.field(default_factory=RequestMetadata)
    warnings: tuple[CallWarning, ...] = ()


class TextStart(_Event, tag="text-start"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class TextDelta(_Event, tag="text-delta"):
    id: str
    text: str
    provider_metadata: dict[str, Any] | None = None


class TextEnd(_Event, tag="text-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningStart(_Event, tag="reasoning-start"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningDelta(_Event, tag="reasoning-delta"):
    id: str
    text: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningEnd(_Event, tag="reasoning-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ToolInputStart(_Event, tag="tool-input-start"):
    id: str
    tool_name: str
    provider_executed: bool = False
    dynamic: bool = False
    provider_metadata: dict[str, Any] | None = None


class ToolInputDelta(_Event, tag="tool-input-delta"):
    id: str
    text: str
    provider_metadata: dict[str, Any] | None = None


class ToolInputEnd(_Event, tag="tool-input-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ToolCall(_Event, tag="tool-call"):
    tool_call: TypedToolCall


class ToolResult(_Event, tag="tool-result"):
    tool_result: TypedToolResult


class ToolError(_Event, tag="tool-error"):
    tool_error: ToolErrorRecord


class Source(_Event, tag="source"):
    source: SourceRecord


class File(_Event, tag="file"):
    file: GeneratedFile


class FinishStep(_Event, tag="finish-step"):
    usage: Usage
    finish_reason: FinishReason
    response: StepResponseMetadata = msgspec.field(
        default_factory=StepResponseMetadata
    )
    provider_metadata: dict[str, Any] | None = None


class Finish(_Event, tag="finish"):
    finish_reason: FinishReason
    total_usage: Usage


class Error(_Event, tag="error"):
    error: Any


class Raw(_Event, tag="raw"):
    raw_value: Any


StreamEvent = (
    Start
    | StartStep
    | TextStart
    | TextDelta
    | TextEnd
    | ReasoningStart
    | ReasoningDelta
    | ReasoningEnd
    | ToolInputStart
    | ToolInputDelta
    | ToolInputEnd
    | ToolCall
    | ToolResult
    | ToolError
    | Source
    | File
    | FinishStep
    | Finish
    | Error
    | Raw
)

# Events that carry generated content; lifecycle markers are excluded.
CHUNK_TYPES: tuple[type, ...] = (
    TextDelta,
    ReasoningDelta,
    Source,
    File,
    ToolCall,
    ToolInputStart,
    ToolInputDelta,
    ToolResult,
    ToolError,
    Raw,
)


def is_chunk(event: StreamEvent) -> bool:
    """Whether *event* is delivered to ``on_chunk`` callbacks."""
    return isinstance(event, CHUNK_TYPES)
