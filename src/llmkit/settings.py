"""Call settings and their YAML configuration file.

A settings file is a flat YAML mapping using the field names of
:class:`CallSettings`::

    temperature: 0.2
    max_output_tokens: 1024
    stop_sequences: ["\\n\\nHuman:"]
    headers:
      x-team: research
"""

from __future__ import annotations

import math
from pathlib import Path

import msgspec
import yaml

from .exceptions import InvalidArgumentError


class CallSettings(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """Sampling and transport settings shared by every provider.

    Providers map what they support and report the rest as
    ``unsupported-setting`` warnings at stream start.
    """

    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: list[str] | None = None
    seed: int | None = None
    max_retries: int | None = None
    headers: dict[str, str] | None = None

    def validate(self) -> CallSettings:
        """Return ``self`` or raise :class:`InvalidArgumentError`.

        Called before any provider activity so that a bad setting fails
        the call up front rather than as a stream event.
        """
        if self.max_output_tokens is not None and self.max_output_tokens < 1:
            raise InvalidArgumentError(
                "max_output_tokens",
                self.max_output_tokens,
                "max_output_tokens must be >= 1",
            )
        for name in ("temperature", "top_p", "presence_penalty", "frequency_penalty"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise InvalidArgumentError(
                    name, value, f"{name} must be a finite number"
                )
        if self.max_retries is not None and self.max_retries < 0:
            raise InvalidArgumentError(
                "max_retries", self.max_retries, "max_retries must be >= 0"
            )
        return self

    def merge(self, overrides: CallSettings | None) -> CallSettings:
        """Return a copy where every field set in *overrides* wins."""
        if overrides is None:
            return self
        changes = {
            name: getattr(overrides, name)
            for name in overrides.__struct_fields__
            if getattr(overrides, name) is not None
        }
        return msgspec.structs.replace(self, **changes)


def load_settings(path: str | Path) -> CallSettings:
    """Load and validate :class:`CallSettings` from a YAML file."""
    with Path(path).open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return CallSettings()
    if not isinstance(data, dict):
        raise InvalidArgumentError(
            "settings", str(path), "settings file must contain a mapping"
        )

    try:
        settings = msgspec.convert(data, CallSettings)
    except msgspec.ValidationError as exc:
        raise InvalidArgumentError("settings", str(path), str(exc)) from exc
    return settings.validate()
