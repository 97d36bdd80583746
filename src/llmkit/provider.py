"""Provider protocol -- the contract every LLM backend must satisfy."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

from .parts import StreamPart
from .settings import CallSettings
from .types import Message

Store = dict
"""Mutable dict a provider fills in while opening a stream.

Expected keys:
    ``"request_body"`` -- the request payload as sent, for debugging.
"""

ProviderStream = tuple[AsyncIterator[StreamPart], Store]
"""Return type of :meth:`Provider.stream`."""

ToolChoice = str | dict[str, str]
"""``"auto"``, ``"none"``, ``"required"``, or
``{"type": "tool", "tool_name": "<name>"}`` to force one tool."""


class Provider(Protocol):
    """Unified interface for LLM providers.

    Each provider combines two orthogonal concepts:

    - **api_type**: the wire protocol used (e.g. ``"openai-chat-completion"``,
      ``"anthropic-messages"``).
    - **name**: the vendor / supplier name (e.g. ``"openai"``,
      ``"deepseek"``, ``"groq"``, ``"anthropic"``).

    Implementors must supply :meth:`stream`, which returns an async
    iterator of wire :mod:`~llmkit.parts` together with a *store* dict.
    The iterator must start each step with ``StreamStart`` and end it with
    ``Finish``; errors the vendor reports mid-stream are yielded as
    ``Error`` parts rather than raised.

    Tools are passed as ``list[dict]`` in OpenAI function format, exactly
    as produced by :meth:`llmkit.tools.Tool.spec`.
    """

    @property
    def api_type(self) -> str:
        """Wire protocol identifier."""
        ...

    @property
    def name(self) -> str:
        """Vendor / supplier name, also the key for provider options."""
        ...

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
        """Open a streaming completion.

        Raises whatever the vendor SDK raises when the stream cannot be
        established at all.
        """
        ...
