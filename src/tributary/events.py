"""Typed events decoded from a streaming response."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tributary.errors import ErrorKind


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ContentDelta(StreamEvent):
    """Incremental assistant text."""

    text: str = ""


@dataclass
class ToolCallDelta(StreamEvent):
    """A fragment of one tool call.

    ``index`` identifies the call for the lifetime of the stream. Any of
    the other fields may be absent from a given fragment.
    """

    index: int = 0
    call_id: str | None = None
    name_fragment: str | None = None
    arguments_fragment: str | None = None


@dataclass
class Completed(StreamEvent):
    """Terminal success."""

    finish_reason: str = "stop"


@dataclass
class Failed(StreamEvent):
    """Terminal error, reported by the provider or synthesized locally."""

    message: str = ""
    kind: ErrorKind = ErrorKind.UPSTREAM


@dataclass
class ResponseStarted(StreamEvent):
    response_id: str | None = None
    model: str | None = None


@dataclass
class OutputItemAdded(StreamEvent):
    """An output item marker. Informational only."""

    output_index: int = 0
    item: dict = field(default_factory=dict)


@dataclass
class UsageReported(StreamEvent):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class Informational(StreamEvent):
    """A recognised typed event that carries nothing the processor uses."""

    type: str = ""
    data: dict[str, Any] = field(default_factory=dict)


TERMINAL_EVENTS = (Completed, Failed)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)
