"""Exceptions raised by llmkit.

Only call-setup problems and result-accessor misuse are raised.  Anything
that goes wrong after a stream has started is reported in-band as an
:class:`~llmkit.events.Error` event instead.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "InvalidArgumentError",
    "InvalidPromptError",
    "InvalidToolInputError",
    "LLMKitError",
    "NoOutputGeneratedError",
]


class LLMKitError(Exception):
    """Base exception for all llmkit errors."""


class InvalidArgumentError(LLMKitError):
    """A call setting has a value the model cannot accept."""

    def __init__(self, argument: str, value: Any, message: str) -> None:
        super().__init__(f"Invalid argument for {argument!r}: {message}")
        self.argument = argument
        self.value = value


class InvalidPromptError(LLMKitError):
    """The prompt is empty or malformed."""


class InvalidToolInputError(LLMKitError):
    """A tool call's input could not be decoded or validated."""

    def __init__(self, tool_name: str, tool_input: str, message: str) -> None:
        super().__init__(f"Invalid input for tool {tool_name!r}: {message}")
        self.tool_name = tool_name
        self.tool_input = tool_input


class NoOutputGeneratedError(LLMKitError):
    """The run finished without completing a single step."""
