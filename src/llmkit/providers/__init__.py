"""Built-in LLM providers."""

from .anthropic import AnthropicMessagesProvider
from .openai import OpenAIChatCompletionProvider

__all__ = [
    "OpenAIChatCompletionProvider",
    "AnthropicMessagesProvider",
]
