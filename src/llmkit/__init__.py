"""llmkit -- Unified streaming LLM interface with tool loops.

Public API re-exports for convenient access::

    import llmkit
    from llmkit.providers import OpenAIChatCompletionProvider

    client = llmkit.LLMClient(OpenAIChatCompletionProvider(), "gpt-4o-mini")
    result = await client.stream_text(
        [llmkit.system("You are helpful."), llmkit.user("What is 2+2?")]
    )
    async for event in result:
        if isinstance(event, llmkit.events.TextDelta):
            print(event.text, end="")
"""

from . import events, parts
from .callbacks import ChunkEvent, ErrorEvent, FinishEvent
from .client import GenerateTextResult, LLMClient
from .exceptions import (
    InvalidArgumentError,
    InvalidPromptError,
    InvalidToolInputError,
    LLMKitError,
    NoOutputGeneratedError,
)
from .prepare_step import PrepareStep, PrepareStepOptions, PrepareStepResult
from .provider import Provider, ProviderStream, Store, ToolChoice
from .settings import CallSettings, load_settings
from .stop_conditions import StopCondition, has_tool_call, step_count_is
from .stream_text import StreamText, StreamTextResult
from .tools import Tool, ToolSet
from .transforms import StreamTransform, batch_text, filter_events, map_events, throttle
from .types import (
    CallWarning,
    ContentPart,
    DictItem,
    DynamicToolCall,
    DynamicToolResult,
    FileItem,
    FinishReason,
    History,
    ImageItem,
    Item,
    Message,
    ReasoningPart,
    RequestMetadata,
    Source,
    StaticToolCall,
    StaticToolResult,
    StepResponseMetadata,
    StepResult,
    TextItem,
    TextPart,
    ToolCallItem,
    ToolError,
    ToolResultItem,
    TypedToolCall,
    TypedToolResult,
    Usage,
    # Helper functions for constructing messages
    assistant,
    response_messages,
    system,
    tool,
    user,
)

from . import providers

__all__ = [
    # Entry points
    "LLMClient",
    "GenerateTextResult",
    "StreamText",
    "StreamTextResult",
    # Provider protocol
    "Provider",
    "ProviderStream",
    "Store",
    "ToolChoice",
    # Settings
    "CallSettings",
    "load_settings",
    # Tools & stop conditions
    "Tool",
    "ToolSet",
    "StopCondition",
    "step_count_is",
    "has_tool_call",
    # Per-step overrides & event transforms
    "PrepareStep",
    "PrepareStepOptions",
    "PrepareStepResult",
    "StreamTransform",
    "filter_events",
    "map_events",
    "throttle",
    "batch_text",
    # Callback payloads
    "ChunkEvent",
    "ErrorEvent",
    "FinishEvent",
    # Errors
    "LLMKitError",
    "InvalidArgumentError",
    "InvalidPromptError",
    "InvalidToolInputError",
    "NoOutputGeneratedError",
    # Content item types (TypedDict)
    "Item",
    "DictItem",
    "ToolCallItem",
    "ToolResultItem",
    "TextItem",
    "ImageItem",
    "FileItem",
    # Message types & helpers
    "Message",
    "History",
    "system",
    "user",
    "assistant",
    "tool",
    "response_messages",
    # Step results
    "StepResult",
    "ContentPart",
    "TextPart",
    "ReasoningPart",
    "Source",
    "StaticToolCall",
    "DynamicToolCall",
    "StaticToolResult",
    "DynamicToolResult",
    "ToolError",
    "TypedToolCall",
    "TypedToolResult",
    "FinishReason",
    "Usage",
    "CallWarning",
    "RequestMetadata",
    "StepResponseMetadata",
    # Event vocabularies & providers
    "events",
    "parts",
    "providers",
]
