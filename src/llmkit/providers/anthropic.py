"""Anthropic provider implementation."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import anthropic

from .. import parts
from ..provider import ProviderStream, ToolChoice
from ..settings import CallSettings
from ..types import CallWarning, FinishReason, Message, Usage

DEFAULT_MAX_TOKENS = 8192

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
    "refusal": "content-filter",
}


class AnthropicMessagesProvider:
    """Provider for the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        provider_name: str = "anthropic",
    ) -> None:
        kwargs: dict = {}
        if api_key is not None:
            kwargs["api_key"] = api_key
        if base_url is not None:
            kwargs["base_url"] = base_url
        self._client = anthropic.AsyncAnthropic(**kwargs)
        self._provider_name = provider_name

    @property
    def api_type(self) -> str:
        return "anthropic-messages"

    @property
    def name(self) -> str:
        return self._provider_name

    # ------------------------------------------------------------------
    # Message conversion: (role, items) tuples -> Anthropic API format
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_system(messages: list[Message]) -> tuple[str | None, list[Message]]:
        """Separate system messages (Anthropic uses a top-level param)."""
        system_parts: list[str] = []
        rest: list[Message] = []
        for role, items in messages:
            if role == "system":
                system_parts.append(" ".join(it for it in items if isinstance(it, str)))
            else:
                rest.append((role, items))
        return ("\n\n".join(system_parts) if system_parts else None), rest

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict]:
        """Convert (role, items) tuples to Anthropic messages format.

        Handles:
        - ("user", ["text"]) -> {"role": "user", "content": "text"}
        - ("user", ["text", {"type": "image", ...}]) -> multimodal content blocks
        - ("assistant", ["text", {"type": "tool_call", ...}]) -> content blocks
        - ("tool", [{"type": "tool_result", ...}]) -> tool_result content blocks
        """
        result: list[dict] = []
        for role, items in messages:
            if role == "user":
                if all(isinstance(it, str) for it in items):
                    result.append({"role": "user", "content": " ".join(items)})
                else:
                    content: list[dict] = []
                    for it in items:
                        if isinstance(it, str):
                            content.append({"type": "text", "text": it})
                        else:
                            content.append(it)
                    result.append({"role": "user", "content": content})

            elif role == "assistant":
                content_blocks: list[dict] = []
                for it in items:
                    if isinstance(it, str):
                        content_blocks.append({"type": "text", "text": it})
                    elif isinstance(it, dict) and it.get("type") == "tool_call":
                        args = it.get("arguments") or "{}"
                        content_blocks.append(
                            {
                                "type": "tool_use",
                                "id": it["id"],
                                "name": it["name"],
                                "input": json.loads(args)
                                if isinstance(args, str)
                                else args,
                            }
                        )
                result.append({"role": "assistant", "content": content_blocks})

            elif role == "tool":
                # Anthropic expects tool results as user messages with tool_result blocks
                tool_results: list[dict] = []
                for it in items:
                    if isinstance(it, dict) and it.get("type") == "tool_result":
                        tool_results.append(
                            {
                                "type": "tool_result",
                                "tool_use_id": it["tool_call_id"],
                                "content": it.get("content", ""),
                            }
                        )
                if tool_results:
                    result.append({"role": "user", "content": tool_results})

        return result

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict]:
        """Convert OpenAI-format or bare function dicts to Anthropic tools."""
        result: list[dict] = []
        for t in tools:
            fn = t["function"] if t.get("type") == "function" else t
            result.append(
                {
                    "name": fn["name"],
                    "description": fn.get("description", ""),
                    "input_schema": fn.get("parameters", {}),
                }
            )
        return result

    @staticmethod
    def _convert_tool_choice(choice: ToolChoice) -> dict | None:
        """Map a tool choice; ``None`` means "send no tools at all"."""
        if isinstance(choice, dict):
            return {"type": "tool", "name": choice["tool_name"]}
        match choice:
            case "auto":
                return {"type": "auto"}
            case "required":
                return {"type": "any"}
            case "none":
                return None
        raise ValueError(f"Unknown tool choice: {choice!r}")

    @staticmethod
    def _convert_settings(
        settings: CallSettings | None,
    ) -> tuple[dict[str, Any], list[CallWarning]]:
        kwargs: dict[str, Any] = {"max_tokens": DEFAULT_MAX_TOKENS}
        warnings: list[CallWarning] = []
        if settings is None:
            return kwargs, warnings

        if settings.max_output_tokens is not None:
            kwargs["max_tokens"] = settings.max_output_tokens
        if settings.temperature is not None:
            kwargs["temperature"] = settings.temperature
        if settings.top_p is not None:
            kwargs["top_p"] = settings.top_p
        if settings.top_k is not None:
            kwargs["top_k"] = settings.top_k
        if settings.stop_sequences:
            kwargs["stop_sequences"] = settings.stop_sequences
        for name in ("presence_penalty", "frequency_penalty", "seed"):
            if getattr(settings, name) is not None:
                warnings.append(CallWarning(type="unsupported-setting", setting=name))
        return kwargs, warnings

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        messages: list[Message],
        *,
        model: str,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: ToolChoice | None = None,
        settings: CallSettings | None = None,
        provider_options: dict[str, Any] | None = None,
        include_raw_chunks: bool = False,
    ) -> ProviderStream:
        store: dict = {}

        system_text, rest = self._extract_system(messages)
        setting_kwargs, warnings = self._convert_settings(settings)

        create_kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._convert_messages(rest),
            **setting_kwargs,
        }
        if system_text is not None:
            create_kwargs["system"] = system_text
        if tools:
            choice = (
                self._convert_tool_choice(tool_choice)
                if tool_choice is not None
                else {"type": "auto"}
            )
            if choice is not None:
                create_kwargs["tools"] = self._convert_tools(tools)
                if tool_choice is not None:
                    create_kwargs["tool_choice"] = choice
        if provider_options:
            create_kwargs.update(provider_options.get(self._provider_name, {}))
        store["request_body"] = dict(create_kwargs)

        client = self._client
        if settings is not None and settings.max_retries is not None:
            client = client.with_options(max_retries=settings.max_retries)
        if settings is not None and settings.headers:
            create_kwargs["extra_headers"] = settings.headers

        iterator = self._iterate(
            client,
            create_kwargs,
            warnings=warnings,
            include_raw_chunks=include_raw_chunks,
        )
        return iterator, store

    async def _iterate(
        self,
        client: anthropic.AsyncAnthropic,
        create_kwargs: dict,
        *,
        warnings: list[CallWarning] | None = None,
        include_raw_chunks: bool = False,
    ) -> AsyncIterator[parts.StreamPart]:
        yield parts.StreamStart(warnings=tuple(warnings or ()))

        # Open content blocks by block index
        blocks: dict[int, dict] = {}
        input_tokens = 0
        output_tokens = 0
        cached_tokens = 0
        finish_reason: FinishReason = "unknown"

        try:
            async with client.messages.stream(**create_kwargs) as stream:
                async for event in stream:
                    if include_raw_chunks:
                        yield parts.Raw(raw_value=event)

                    # The helper also emits derived events ("text",
                    # "input_json", ...); only the raw protocol events matter.
                    match event.type:
                        case "message_start":
                            msg = event.message
                            input_tokens = msg.usage.input_tokens or 0
                            output_tokens = msg.usage.output_tokens or 0
                            cached_tokens = (
                                getattr(msg.usage, "cache_read_input_tokens", 0) or 0
                            )
                            yield parts.ResponseMetadata(id=msg.id, model_id=msg.model)

                        case "content_block_start":
                            for part in self._block_start(event.index, event.content_block, blocks):
                                yield part

                        case "content_block_delta":
                            part = self._block_delta(event.index, event.delta, blocks)
                            if part is not None:
                                yield part

                        case "content_block_stop":
                            for part in self._block_stop(event.index, blocks):
                                yield part

                        case "message_delta":
                            if event.delta.stop_reason:
                                finish_reason = _STOP_REASONS.get(
                                    event.delta.stop_reason, "other"
                                )
                            if event.usage is not None:
                                output_tokens = event.usage.output_tokens or output_tokens
        except anthropic.APIError as exc:
            yield parts.Error(error={"message": str(exc), "type": type(exc).__name__})
            finish_reason = "error"

        yield parts.Finish(
            usage=Usage(
                input_tokens=input_tokens + cached_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + cached_tokens + output_tokens,
                cached_input_tokens=cached_tokens,
            ),
            finish_reason=finish_reason,
        )

    @staticmethod
    def _block_start(index: int, block, blocks: dict[int, dict]) -> list[parts.StreamPart]:
        span_id = str(index)
        match block.type:
            case "text":
                blocks[index] = {"type": "text"}
                return [parts.TextStart(id=span_id)]
            case "thinking":
                blocks[index] = {"type": "thinking"}
                return [parts.ReasoningStart(id=span_id)]
            case "tool_use" | "server_tool_use":
                provider_executed = block.type == "server_tool_use"
                blocks[index] = {
                    "type": "tool",
                    "id": block.id,
                    "name": block.name,
                    "arguments": "",
                    "provider_executed": provider_executed,
                }
                return [
                    parts.ToolInputStart(
                        id=block.id,
                        tool_name=block.name,
                        provider_executed=provider_executed or None,
                    )
                ]
            case "web_search_tool_result":
                content = block.content
                is_error = getattr(content, "type", None) == "web_search_tool_result_error"
                return [
                    parts.ToolResult(
                        tool_call_id=block.tool_use_id,
                        tool_name="web_search",
                        result=_dump(content),
                        is_error=is_error or None,
                        provider_executed=True,
                    )
                ]
        return []

    @staticmethod
    def _block_delta(index: int, delta, blocks: dict[int, dict]) -> parts.StreamPart | None:
        block = blocks.get(index)
        if block is None:
            return None
        match delta.type:
            case "text_delta":
                return parts.TextDelta(id=str(index), delta=delta.text)
            case "thinking_delta":
                return parts.ReasoningDelta(id=str(index), delta=delta.thinking)
            case "input_json_delta" if block["type"] == "tool":
                block["arguments"] += delta.partial_json
                return parts.ToolInputDelta(id=block["id"], delta=delta.partial_json)
        return None

    @staticmethod
    def _block_stop(index: int, blocks: dict[int, dict]) -> list[parts.StreamPart]:
        block = blocks.pop(index, None)
        if block is None:
            return []
        span_id = str(index)
        match block["type"]:
            case "text":
                return [parts.TextEnd(id=span_id)]
            case "thinking":
                return [parts.ReasoningEnd(id=span_id)]
        return [
            parts.ToolInputEnd(id=block["id"]),
            parts.ToolCall(
                tool_call_id=block["id"],
                tool_name=block["name"],
                input=block["arguments"],
                provider_executed=block["provider_executed"] or None,
            ),
        ]


def _dump(value: Any) -> Any:
    """Turn SDK models (or lists of them) into plain data."""
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return value
