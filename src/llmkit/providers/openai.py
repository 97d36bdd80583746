"""OpenAI / OpenAI-compatible provider implementation.

Works for any vendor that speaks the Chat Completions wire format (Groq,
DeepSeek, xAI, Together AI, Baseten, ...) by pointing ``base_url`` at it
and setting ``provider_name``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import openai

from .. import parts
from ..provider import ProviderStream, ToolChoice
from ..settings import CallSettings
from ..types import CallWarning, FinishReason, Message, Usage

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "content_filter": "content-filter",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
}


class OpenAIChatCompletionProvider:
    """Provider for OpenAI and OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        *,
        provider_name: str = "openai",
    ) -> None:
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
        )
        self._provider_name = provider_name

    @property
    def api_type(self) -> str:
        return "openai-chat-completion"

    @property
    def name(self) -> str:
        return self._provider_name

    # ------------------------------------------------------------------
    # Message conversion: (role, items) tuples -> OpenAI API format
    # ------------------------------------------------------------------

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict]:
        """Convert (role, items) tuples to OpenAI chat format.

        Handles:
        - ("system", ["text"]) -> {"role": "system", "content": "text"}
        - ("user", ["text"]) -> {"role": "user", "content": "text"}
        - ("user", ["text", {"type": "image_url", ...}]) -> multimodal content array
        - ("assistant", ["text", {"type": "tool_call", ...}]) -> assistant with tool_calls
        - ("tool", [{"type": "tool_result", ...}]) -> tool result messages
        """
        result: list[dict] = []
        for role, items in messages:
            if role == "system":
                text = " ".join(it for it in items if isinstance(it, str))
                result.append({"role": "system", "content": text})

            elif role == "user":
                # If all items are plain strings, use simple content
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
                entry: dict[str, Any] = {"role": "assistant"}
                text_parts: list[str] = []
                tool_calls: list[dict] = []
                for it in items:
                    if isinstance(it, str):
                        text_parts.append(it)
                    elif isinstance(it, dict) and it.get("type") == "tool_call":
                        tool_calls.append(
                            {
                                "id": it["id"],
                                "type": "function",
                                "function": {
                                    "name": it["name"],
                                    "arguments": it.get("arguments", "{}"),
                                },
                            }
                        )
                if text_parts:
                    entry["content"] = " ".join(text_parts)
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                result.append(entry)

            elif role == "tool":
                for it in items:
                    if isinstance(it, dict) and it.get("type") == "tool_result":
                        result.append(
                            {
                                "role": "tool",
                                "tool_call_id": it["tool_call_id"],
                                "content": it.get("content", ""),
                            }
                        )

        return result

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict]:
        """Convert json_schema tool dicts to OpenAI format.

        Accepts dicts already in OpenAI format (``{"type": "function", ...}``),
        or bare function dicts (``{"name": ..., "description": ..., "parameters": ...}``).
        """
        result: list[dict] = []
        for t in tools:
            if t.get("type") == "function":
                result.append(t)
            else:
                result.append(
                    {
                        "type": "function",
                        "function": {
                            "name": t["name"],
                            "description": t.get("description", ""),
                            "parameters": t.get("parameters", {}),
                        },
                    }
                )
        return result

    @staticmethod
    def _convert_tool_choice(choice: ToolChoice) -> str | dict:
        if isinstance(choice, str):
            return choice
        return {"type": "function", "function": {"name": choice["tool_name"]}}

    @staticmethod
    def _convert_settings(
        settings: CallSettings | None,
    ) -> tuple[dict[str, Any], list[CallWarning]]:
        kwargs: dict[str, Any] = {}
        warnings: list[CallWarning] = []
        if settings is None:
            return kwargs, warnings

        if settings.max_output_tokens is not None:
            kwargs["max_tokens"] = settings.max_output_tokens
        if settings.temperature is not None:
            kwargs["temperature"] = settings.temperature
        if settings.top_p is not None:
            kwargs["top_p"] = settings.top_p
        if settings.presence_penalty is not None:
            kwargs["presence_penalty"] = settings.presence_penalty
        if settings.frequency_penalty is not None:
            kwargs["frequency_penalty"] = settings.frequency_penalty
        if settings.stop_sequences:
            kwargs["stop"] = settings.stop_sequences
        if settings.seed is not None:
            kwargs["seed"] = settings.seed
        if settings.top_k is not None:
            warnings.append(CallWarning(type="unsupported-setting", setting="top_k"))
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

        setting_kwargs, warnings = self._convert_settings(settings)
        create_kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._convert_messages(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
            **setting_kwargs,
        }
        if tools:
            create_kwargs["tools"] = self._convert_tools(tools)
            if tool_choice is not None:
                create_kwargs["tool_choice"] = self._convert_tool_choice(tool_choice)
        if provider_options:
            create_kwargs.update(provider_options.get(self._provider_name, {}))
        store["request_body"] = dict(create_kwargs)

        client = self._client
        if settings is not None and settings.max_retries is not None:
            client = client.with_options(max_retries=settings.max_retries)
        if settings is not None and settings.headers:
            create_kwargs["extra_headers"] = settings.headers

        response = await client.chat.completions.create(**create_kwargs)

        iterator = self._iterate(
            response, warnings=warnings, include_raw_chunks=include_raw_chunks
        )
        return iterator, store

    async def _iterate(
        self,
        response,
        *,
        warnings: list[CallWarning] | None = None,
        include_raw_chunks: bool = False,
    ) -> AsyncIterator[parts.StreamPart]:
        yield parts.StreamStart(warnings=tuple(warnings or ()))

        # Accumulate tool calls by index
        tool_calls_acc: dict[int, dict] = {}
        usage = Usage()
        finish_reason: FinishReason = "unknown"
        text_open = False
        reasoning_open = False
        first_chunk = True

        try:
            async for chunk in response:
                if include_raw_chunks:
                    yield parts.Raw(raw_value=chunk)

                if first_chunk:
                    first_chunk = False
                    yield parts.ResponseMetadata(
                        id=chunk.id,
                        model_id=chunk.model,
                        timestamp=datetime.fromtimestamp(chunk.created, tz=UTC)
                        if chunk.created
                        else None,
                    )

                # Usage comes in the final chunk (stream_options.include_usage)
                if chunk.usage is not None:
                    usage = self._convert_usage(chunk.usage)

                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = _FINISH_REASONS.get(choice.finish_reason, "other")
                delta = choice.delta
                if delta is None:
                    continue

                # Reasoning / thinking content
                # Different providers use different field names:
                #   - reasoning_content: DeepSeek
                #   - reasoning: OpenRouter, Groq
                reasoning_text = getattr(delta, "reasoning_content", None) or getattr(
                    delta, "reasoning", None
                )
                if reasoning_text:
                    if not reasoning_open:
                        reasoning_open = True
                        yield parts.ReasoningStart(id="reasoning-0")
                    yield parts.ReasoningDelta(id="reasoning-0", delta=reasoning_text)

                if delta.content:
                    if reasoning_open:
                        reasoning_open = False
                        yield parts.ReasoningEnd(id="reasoning-0")
                    if not text_open:
                        text_open = True
                        yield parts.TextStart(id="text-0")
                    yield parts.TextDelta(id="text-0", delta=delta.content)

                # Tool calls (streamed incrementally)
                for tc_delta in delta.tool_calls or ():
                    idx = tc_delta.index
                    acc = tool_calls_acc.setdefault(
                        idx,
                        {"id": f"call_{idx}", "name": "", "arguments": "", "started": False},
                    )
                    if tc_delta.id and not acc["started"]:
                        acc["id"] = tc_delta.id
                    fn = tc_delta.function
                    if fn is not None and fn.name:
                        acc["name"] = fn.name
                    if not acc["started"] and acc["name"]:
                        acc["started"] = True
                        yield parts.ToolInputStart(id=acc["id"], tool_name=acc["name"])
                    if fn is not None and fn.arguments:
                        acc["arguments"] += fn.arguments
                        if acc["started"]:
                            yield parts.ToolInputDelta(id=acc["id"], delta=fn.arguments)
        except openai.APIError as exc:
            yield parts.Error(error={"message": str(exc), "type": type(exc).__name__})
            finish_reason = "error"

        if reasoning_open:
            yield parts.ReasoningEnd(id="reasoning-0")
        if text_open:
            yield parts.TextEnd(id="text-0")

        # Yield fully assembled tool calls
        for idx in sorted(tool_calls_acc):
            acc = tool_calls_acc[idx]
            if acc["started"]:
                yield parts.ToolInputEnd(id=acc["id"])
            yield parts.ToolCall(
                tool_call_id=acc["id"],
                tool_name=acc["name"],
                input=acc["arguments"],
            )

        yield parts.Finish(usage=usage, finish_reason=finish_reason)

    @staticmethod
    def _convert_usage(usage_obj) -> Usage:
        """Convert an OpenAI usage object, including cached/reasoning details."""
        prompt_details = getattr(usage_obj, "prompt_tokens_details", None)
        completion_details = getattr(usage_obj, "completion_tokens_details", None)
        return Usage(
            input_tokens=usage_obj.prompt_tokens or 0,
            output_tokens=usage_obj.completion_tokens or 0,
            total_tokens=usage_obj.total_tokens or 0,
            reasoning_tokens=getattr(completion_details, "reasoning_tokens", 0) or 0,
            cached_input_tokens=getattr(prompt_details, "cached_tokens", 0) or 0,
        )
