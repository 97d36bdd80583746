"""Core types for llmkit.

Lightweight, minimal abstractions.  Messages are plain tuples and content
items are TypedDicts aligned with the OpenAI API format.  Everything the
streaming pipeline produces (usage, content parts, tool calls and results,
finished steps) is a frozen msgspec struct, so a value handed to a callback
can never be mutated behind the pipeline's back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Required, TypedDict

import msgspec


# ---------------------------------------------------------------------------
# Core content types -- TypedDict definitions aligned with OpenAI API
# ---------------------------------------------------------------------------


class ToolCallItem(TypedDict):
    """A tool invocation embedded in an assistant message."""

    type: Literal["tool_call"]
    id: str
    name: str
    arguments: str  # raw JSON string


class ToolResultItem(TypedDict):
    """A tool execution result embedded in a tool message."""

    type: Literal["tool_result"]
    tool_call_id: str
    content: str


class TextItem(TypedDict):
    """A text content block."""

    type: Literal["text"]
    text: str


class _ImageURL(TypedDict, total=False):
    url: Required[str]
    detail: Literal["auto", "low", "high"]


class ImageItem(TypedDict):
    """An image content block (URL or base64)."""

    type: Literal["image_url"]
    image_url: _ImageURL


class _FileData(TypedDict, total=False):
    file_data: str  # base64 encoded
    file_id: str
    filename: str


class FileItem(TypedDict):
    """A file content block."""

    type: Literal["file"]
    file: _FileData


# The union of all structured content items.
DictItem = ToolCallItem | ToolResultItem | TextItem | ImageItem | FileItem

# A content item: plain text string or a typed structured dict.
Item = str | DictItem

# Message = (role, items)
# role: "system" | "user" | "assistant" | "tool"
# items: list of content items
Message = tuple[str, list[Item]]

# History is just a list of messages
History = list[Message]


# ---------------------------------------------------------------------------
# Helper functions for constructing messages
# ---------------------------------------------------------------------------


def system(content: str) -> Message:
    """Create a system message."""
    return ("system", [content])


def user(*items: Item) -> Message:
    """Create a user message with one or more content items.

    Examples::

        user("Hello!")
        user("What is this?", ImageItem(type="image_url", image_url={"url": "..."}))
    """
    return ("user", list(items))


def assistant(*items: Item) -> Message:
    """Create an assistant message.

    Examples::

        assistant("Here is the answer.")
        assistant("Let me search.", ToolCallItem(
            type="tool_call",
            id="tc_1",
            name="search",
            arguments='{"q": "test"}',
        ))
    """
    return ("assistant", list(items))


def tool(tool_call_id: str, content: str) -> Message:
    """Create a tool result message.

    Example::

        tool("tc_1", "Search returned 5 results.")
    """
    result: ToolResultItem = {
        "type": "tool_result",
        "tool_call_id": tool_call_id,
        "content": content,
    }
    return ("tool", [result])


# ---------------------------------------------------------------------------
# Usage, finish reasons & warnings
# ---------------------------------------------------------------------------


FinishReason = Literal[
    "stop", "length", "content-filter", "tool-calls", "error", "other", "unknown"
]


class Usage(msgspec.Struct, frozen=True):
    """Token usage reported for one model call (or summed over several)."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int = 0
    cached_input_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
        )


class CallWarning(msgspec.Struct, frozen=True):
    """A non-fatal problem the provider noticed with the call settings."""

    type: Literal["unsupported-setting", "unsupported-tool", "other"]
    setting: str | None = None
    message: str | None = None
    details: str | None = None


class RequestMetadata(msgspec.Struct, frozen=True):
    """The request as sent to the provider, kept for debugging."""

    body: Any = None


class StepResponseMetadata(msgspec.Struct, frozen=True):
    """Response identity reported by the provider for one step."""

    id: str | None = None
    model_id: str | None = None
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Content parts -- what a finished step is made of
# ---------------------------------------------------------------------------


class _Part(msgspec.Struct, frozen=True, tag_field="type"):
    pass


class TextPart(_Part, tag="text"):
    """The joined text of one finished text span."""

    text: str


class ReasoningPart(_Part, tag="reasoning"):
    """The joined text of one finished reasoning span."""

    text: str


class Source(_Part, tag="source"):
    """A citation the model attached to its answer."""

    id: str
    source_type: Literal["url", "document"] = "url"
    url: str | None = None
    title: str | None = None
    media_type: str | None = None
    filename: str | None = None
    provider_metadata: dict[str, Any] | None = None


class StaticToolCall(_Part, tag="tool-call"):
    """A call to a tool declared in the caller's tool set.

    ``input`` is already decoded, and validated against the tool's
    ``input_type`` when it declares one.
    """

    tool_call_id: str
    tool_name: str
    input: Any
    provider_executed: bool = False
    provider_metadata: dict[str, Any] | None = None

    @property
    def dynamic(self) -> bool:
        return False


class DynamicToolCall(_Part, tag="dynamic-tool-call"):
    """A call to a tool the caller never declared (no input validation)."""

    tool_call_id: str
    tool_name: str
    input: Any
    provider_executed: bool = False
    provider_metadata: dict[str, Any] | None = None

    @property
    def dynamic(self) -> bool:
        return True


class StaticToolResult(_Part, tag="tool-result"):
    """The output of a declared tool."""

    tool_call_id: str
    tool_name: str
    output: Any
    input: Any = None
    provider_executed: bool = False

    @property
    def dynamic(self) -> bool:
        return False


class DynamicToolResult(_Part, tag="dynamic-tool-result"):
    """The output of an undeclared tool, usually one the provider ran."""

    tool_call_id: str
    tool_name: str
    output: Any
    input: Any = None
    provider_executed: bool = False

    @property
    def dynamic(self) -> bool:
        return True


class ToolError(_Part, tag="tool-error"):
    """A tool call that could not be parsed, or whose execution failed."""

    tool_call_id: str
    tool_name: str
    error: str
    input: Any = None
    dynamic: bool = False
    provider_executed: bool = False


TypedToolCall = StaticToolCall | DynamicToolCall
TypedToolResult = StaticToolResult | DynamicToolResult

ContentPart = (
    TextPart
    | ReasoningPart
    | Source
    | StaticToolCall
    | DynamicToolCall
    | StaticToolResult
    | DynamicToolResult
    | ToolError
)


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------


class StepResult(msgspec.Struct, frozen=True):
    """One finished model round-trip.

    Created by the step accumulator when the provider reports ``finish``
    and never modified afterwards.  ``content`` keeps the order in which
    parts were completed during the step.
    """

    content: tuple[ContentPart, ...]
    finish_reason: FinishReason
    usage: Usage
    warnings: tuple[CallWarning, ...] | None = None
    request: RequestMetadata = msgspec.field(default_factory=RequestMetadata)
    response: StepResponseMetadata = msgspec.field(
        default_factory=StepResponseMetadata
    )
    provider_metadata: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def reasoning_text(self) -> str | None:
        parts = [p.text for p in self.content if isinstance(p, ReasoningPart)]
        return "".join(parts) if parts else None

    @property
    def sources(self) -> list[Source]:
        return [p for p in self.content if isinstance(p, Source)]

    @property
    def tool_calls(self) -> list[TypedToolCall]:
        return [
            p for p in self.content if isinstance(p, (StaticToolCall, DynamicToolCall))
        ]

    @property
    def tool_results(self) -> list[TypedToolResult]:
        return [
            p
            for p in self.content
            if isinstance(p, (StaticToolResult, DynamicToolResult))
        ]

    @property
    def tool_errors(self) -> list[ToolError]:
        return [p for p in self.content if isinstance(p, ToolError)]


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Objects msgspec cannot encode are sent as their str().
    return msgspec.json.encode(value, enc_hook=str).decode()


def response_messages(step: StepResult) -> list[Message]:
    """Convert a finished step into the messages for the next step.

    Produces at most one assistant message (text plus the client-side tool
    calls) and at most one tool message carrying the matching results.
    Provider-executed calls are left out: the provider already holds their
    outcome.
    """
    items: list[Item] = []
    if step.text:
        items.append(step.text)

    call_ids: set[str] = set()
    for call in step.tool_calls:
        if call.provider_executed:
            continue
        call_ids.add(call.tool_call_id)
        items.append(
            {
                "type": "tool_call",
                "id": call.tool_call_id,
                "name": call.tool_name,
                "arguments": _stringify(call.input),
            }
        )

    results: list[Item] = []
    for part in step.content:
        if isinstance(part, (StaticToolResult, DynamicToolResult)):
            content = _stringify(part.output)
        elif isinstance(part, ToolError):
            content = part.error
        else:
            continue
        if part.tool_call_id in call_ids:
            results.append(
                {
                    "type": "tool_result",
                    "tool_call_id": part.tool_call_id,
                    "content": content,
                }
            )

    messages: list[Message] = []
    if items:
        messages.append(("assistant", items))
    if results:
        messages.append(("tool", results))
    return messages
