"""Per-step bookkeeping for one stream.

The accumulator is created fresh for every call and only ever touched by
the task that drives translation, so it needs no locking.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from .types import (
    CallWarning,
    ContentPart,
    DynamicToolCall,
    FinishReason,
    ReasoningPart,
    RequestMetadata,
    StaticToolCall,
    StepResponseMetadata,
    StepResult,
    TextPart,
    TypedToolCall,
    Usage,
)


class StepState(Enum):
    OPEN = "open"
    FLUSHING = "flushing"
    CLOSED = "closed"


class StepAccumulator:
    """Collects content for the current step and the list of finished steps.

    Text and reasoning deltas are buffered per span id; a buffer becomes a
    content part only when its span ends or the step finishes, never on
    every delta.  ``finish()`` freezes the step into a :class:`StepResult`,
    appends it to :attr:`steps` and opens a fresh step, so one provider
    stream may carry several ``stream-start``/``finish`` pairs.
    """

    def __init__(self, request: RequestMetadata | None = None) -> None:
        self.steps: list[StepResult] = []
        self.request = request or RequestMetadata()
        self._open()

    def _open(self) -> None:
        self.state = StepState.OPEN
        self._content: list[ContentPart] = []
        self._text: dict[str, list[str]] = {}
        self._reasoning: dict[str, list[str]] = {}
        self._warnings: tuple[CallWarning, ...] | None = None
        self._response = StepResponseMetadata()

    # ------------------------------------------------------------------
    # Mutation while the step is open
    # ------------------------------------------------------------------

    def begin_request(self, request: RequestMetadata) -> None:
        """Record the request behind the provider stream about to start."""
        self.request = request

    def record_warnings(self, warnings: tuple[CallWarning, ...] | list[CallWarning]) -> None:
        self._warnings = tuple(warnings) or None

    def record_response(
        self,
        id: str | None = None,
        model_id: str | None = None,
        timestamp: Any = None,
    ) -> None:
        # Later metadata only fills in what is still unknown.
        current = self._response
        self._response = StepResponseMetadata(
            id=current.id if current.id is not None else id,
            model_id=current.model_id if current.model_id is not None else model_id,
            timestamp=current.timestamp if current.timestamp is not None else timestamp,
        )

    def append_text(self, span_id: str, delta: str) -> None:
        self._text.setdefault(span_id, []).append(delta)

    def append_reasoning(self, span_id: str, delta: str) -> None:
        self._reasoning.setdefault(span_id, []).append(delta)

    def close_text(self, span_id: str) -> None:
        text = "".join(self._text.pop(span_id, ()))
        if text:
            self._content.append(TextPart(text=text))

    def close_reasoning(self, span_id: str) -> None:
        text = "".join(self._reasoning.pop(span_id, ()))
        if text:
            self._content.append(ReasoningPart(text=text))

    def add(self, part: ContentPart) -> None:
        self._content.append(part)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def warnings(self) -> tuple[CallWarning, ...] | None:
        return self._warnings

    @property
    def content(self) -> tuple[ContentPart, ...]:
        return tuple(self._content)

    def find_tool_call(self, tool_call_id: str) -> TypedToolCall | None:
        """The call with *tool_call_id*, searching this step then older ones."""
        for part in reversed(self._content):
            if (
                isinstance(part, (StaticToolCall, DynamicToolCall))
                and part.tool_call_id == tool_call_id
            ):
                return part
        for step in reversed(self.steps):
            for call in step.tool_calls:
                if call.tool_call_id == tool_call_id:
                    return call
        return None

    def has_output(self, tool_call_id: str) -> bool:
        """Whether the open step already holds a result or error for the call."""
        return any(
            getattr(part, "tool_call_id", None) == tool_call_id
            and not isinstance(part, (StaticToolCall, DynamicToolCall))
            for part in self._content
        )

    def pending_tool_calls(self) -> list[TypedToolCall]:
        """Calls of the open step that have no result or error yet."""
        return [
            part
            for part in self._content
            if isinstance(part, (StaticToolCall, DynamicToolCall))
            and not self.has_output(part.tool_call_id)
        ]

    # ------------------------------------------------------------------
    # Closing the step
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Turn every non-empty buffer into a content part."""
        self.state = StepState.FLUSHING
        self.close_open_spans()

    def close_open_spans(self) -> None:
        """Store buffered text and reasoning ahead of the next content part.

        A span that keeps receiving deltas afterwards starts a new part.
        """
        for span_id in list(self._text):
            self.close_text(span_id)
        for span_id in list(self._reasoning):
            self.close_reasoning(span_id)

    def finish(
        self,
        usage: Usage,
        finish_reason: FinishReason,
        provider_metadata: dict[str, Any] | None = None,
    ) -> StepResult:
        self.flush()
        step = StepResult(
            content=tuple(self._content),
            finish_reason=finish_reason,
            usage=usage,
            warnings=self._warnings,
            request=self.request,
            response=self._response,
            provider_metadata=provider_metadata,
        )
        self.state = StepState.CLOSED
        self.steps.append(step)
        self._open()
        return step
