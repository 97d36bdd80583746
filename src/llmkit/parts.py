"""Provider wire vocabulary.

Every provider turns its vendor stream into a sequence of these parts.
Nothing here is shown to the caller directly: the
:class:`~llmkit.translator.StreamTranslator` converts each part into at
most one public :mod:`~llmkit.events` event.
"""

from __future__ import annotations

from typing import Any

import msgspec

from .types import (
    CallWarning,
    FinishReason,
    Source as SourceRecord,
    Usage,
)


class _WirePart(msgspec.Struct, frozen=True, tag_field="type"):
    pass


class StreamStart(_WirePart, tag="stream-start"):
    warnings: tuple[CallWarning, ...] = ()


class TextStart(_WirePart, tag="text-start"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class TextDelta(_WirePart, tag="text-delta"):
    id: str
    delta: str
    provider_metadata: dict[str, Any] | None = None


class TextEnd(_WirePart, tag="text-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningStart(_WirePart, tag="reasoning-start"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningDelta(_WirePart, tag="reasoning-delta"):
    id: str
    delta: str
    provider_metadata: dict[str, Any] | None = None


class ReasoningEnd(_WirePart, tag="reasoning-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ToolInputStart(_WirePart, tag="tool-input-start"):
    id: str
    tool_name: str
    provider_executed: bool | None = None
    provider_metadata: dict[str, Any] | None = None


class ToolInputDelta(_WirePart, tag="tool-input-delta"):
    id: str
    delta: str
    provider_metadata: dict[str, Any] | None = None


class ToolInputEnd(_WirePart, tag="tool-input-end"):
    id: str
    provider_metadata: dict[str, Any] | None = None


class ToolCall(_WirePart, tag="tool-call"):
    """A complete tool call.  ``input`` is the raw JSON string."""

    tool_call_id: str
    tool_name: str
    input: str
    provider_executed: bool | None = None
    provider_metadata: dict[str, Any] | None = None


class ToolResult(_WirePart, tag="tool-result"):
    """The result of a tool the provider ran itself."""

    tool_call_id: str
    tool_name: str
    result: Any
    is_error: bool | None = None
    provider_executed: bool | None = None


class Source(_WirePart, tag="source"):
    source: SourceRecord


class File(_WirePart, tag="file"):
    """A generated file; ``data`` is base64 text or raw bytes."""

    media_type: str
    data: Any


class ResponseMetadata(_WirePart, tag="response-metadata"):
    id: str | None = None
    model_id: str | None = None
    timestamp: Any = None


class Finish(_WirePart, tag="finish"):
    usage: Usage
    finish_reason: FinishReason
    provider_metadata: dict[str, Any] | None = None


class Error(_WirePart, tag="error"):
    error: Any


class Raw(_WirePart, tag="raw"):
    raw_value: Any


StreamPart = (
    StreamStart
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
    | Source
    | File
    | ResponseMetadata
    | Finish
    | Error
    | Raw
)
