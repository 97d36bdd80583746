"""Tool declarations and tool-call dispatch.

A *tool set* maps tool names to :class:`Tool` objects.  Whether a call is
*static* or *dynamic* depends on one thing only: is its name a key of the
tool set?  Static calls have their input validated against the tool's
``input_type``; dynamic calls (unknown names, or no tool set at all) are
decoded as plain JSON.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

import msgspec

from . import parts
from .exceptions import InvalidToolInputError
from .types import (
    DynamicToolCall,
    DynamicToolResult,
    StaticToolCall,
    StaticToolResult,
    ToolError,
    TypedToolCall,
    TypedToolResult,
)

logger = logging.getLogger(__name__)


class Tool:
    """A tool the model may call.

    Parameters
    ----------
    execute : Callable | None
        Runs the tool locally.  Receives the decoded input (an instance of
        ``input_type`` when one is given) and may be sync or async.  Tools
        without ``execute`` are only described to the model; their calls
        are left for the caller to handle.
    description : str
        Shown to the model.
    input_type : type | None
        Any type msgspec can decode into, typically a ``msgspec.Struct``.
        Used both to validate the model's input and, when *parameters* is
        not given, to derive the JSON schema.
    parameters : dict | None
        An explicit JSON schema for the input.
    """

    def __init__(
        self,
        execute: Callable[[Any], Any] | None = None,
        *,
        description: str = "",
        input_type: type | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self.execute = execute
        self.description = description
        self.input_type = input_type
        self._parameters = parameters

    @property
    def parameters(self) -> dict[str, Any]:
        if self._parameters is not None:
            return self._parameters
        if self.input_type is None:
            return {"type": "object", "properties": {}}
        return _inline_schema(msgspec.json.schema(self.input_type))

    def spec(self, name: str) -> dict[str, Any]:
        """The tool in OpenAI function format, as providers expect it."""
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


ToolSet = dict[str, Tool]


def _inline_schema(schema: dict[str, Any]) -> dict[str, Any]:
    # msgspec puts struct schemas behind a top-level $ref; providers want
    # the object schema itself at the top.
    ref = schema.get("$ref")
    if ref is None:
        return schema
    defs = dict(schema.get("$defs", {}))
    top = dict(defs.pop(ref.rsplit("/", 1)[-1]))
    if defs:
        top["$defs"] = defs
    return top


def tool_specs(tools: ToolSet | None) -> list[dict[str, Any]] | None:
    """Provider-facing specs for every tool in *tools*."""
    if not tools:
        return None
    return [t.spec(name) for name, t in tools.items()]


class ToolDispatcher:
    """Classifies and normalises tool calls and results for one stream."""

    def __init__(self, tools: ToolSet | None = None) -> None:
        self.tools: ToolSet = dict(tools) if tools else {}

    def is_static(self, tool_name: str) -> bool:
        return tool_name in self.tools

    # ------------------------------------------------------------------
    # Calls & results coming from the provider
    # ------------------------------------------------------------------

    def parse_call(self, call: parts.ToolCall) -> TypedToolCall:
        """Decode a provider tool call.

        Raises
        ------
        InvalidToolInputError
            The input is not valid JSON, or does not match the declared
            tool's ``input_type``.
        """
        raw = call.input if call.input.strip() else "{}"
        provider_executed = bool(call.provider_executed)

        declared = self.tools.get(call.tool_name)
        if declared is None:
            value = self._decode(call.tool_name, raw, Any)
            return DynamicToolCall(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                input=value,
                provider_executed=provider_executed,
                provider_metadata=call.provider_metadata,
            )

        value = self._decode(call.tool_name, raw, declared.input_type or Any)
        return StaticToolCall(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            input=value,
            provider_executed=provider_executed,
            provider_metadata=call.provider_metadata,
        )

    @staticmethod
    def _decode(tool_name: str, raw: str, input_type: Any) -> Any:
        try:
            return msgspec.json.decode(raw, type=input_type)
        except msgspec.DecodeError as exc:
            # ValidationError is a DecodeError subclass
            raise InvalidToolInputError(tool_name, raw, str(exc)) from exc

    def parse_result(
        self,
        result: parts.ToolResult,
        call: TypedToolCall | None = None,
    ) -> TypedToolResult | ToolError:
        """Type a provider tool result.

        *call* is the earlier call with the same ``tool_call_id``, if the
        stream carried one; its input is copied onto the result.
        """
        tool_input = call.input if call is not None else None
        provider_executed = bool(result.provider_executed)
        static = self.is_static(result.tool_name)

        if result.is_error:
            return ToolError(
                tool_call_id=result.tool_call_id,
                tool_name=result.tool_name,
                error=_error_text(result.result),
                input=tool_input,
                dynamic=not static,
                provider_executed=provider_executed,
            )

        cls = StaticToolResult if static else DynamicToolResult
        return cls(
            tool_call_id=result.tool_call_id,
            tool_name=result.tool_name,
            output=result.result,
            input=tool_input,
            provider_executed=provider_executed,
        )

    # ------------------------------------------------------------------
    # Local execution
    # ------------------------------------------------------------------

    def executable(self, call: TypedToolCall) -> bool:
        """Whether *call* should be run locally."""
        if call.provider_executed or not isinstance(call, StaticToolCall):
            return False
        return self.tools[call.tool_name].execute is not None

    async def execute(self, call: StaticToolCall) -> StaticToolResult | ToolError:
        """Run a static tool and capture its output or failure."""
        execute = self.tools[call.tool_name].execute
        try:
            output = execute(call.input)
            if inspect.isawaitable(output):
                output = await output
        except Exception as exc:
            logger.warning(
                "Tool %s (%s) raised", call.tool_name, call.tool_call_id, exc_info=True
            )
            return ToolError(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                error=f"Error calling {call.tool_name}: {exc}",
                input=call.input,
            )

        return StaticToolResult(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            output=output,
            input=call.input,
        )


def _error_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return msgspec.json.encode(value, enc_hook=str).decode()
