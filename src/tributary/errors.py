"""Error types raised and reported by the stream processor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tributary.events import Failed


class ErrorKind(str, Enum):
    """Stable error kinds, carried on ``Failed`` events and exceptions."""

    TRANSPORT = "transport"
    FRAME_PARSE = "frame_parse"
    PREMATURE_TERMINATION = "premature_termination"
    PROTOCOL_VIOLATION = "protocol_violation"
    MALFORMED_TOOL_ARGUMENTS = "malformed_tool_arguments"
    UPSTREAM = "upstream"
    CANCELLED = "cancelled"


@dataclass
class StreamError(Exception):
    """Base error for everything the processor reports.

    Attributes:
        message: Human-readable description.
        cause: Original exception, when there is one.
    """

    message: str
    cause: BaseException | None = None

    kind = ErrorKind.UPSTREAM

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


@dataclass
class TransportError(StreamError):
    """Connection-level failure. Not retried by the processor."""

    kind = ErrorKind.TRANSPORT


@dataclass
class FrameParseError(StreamError):
    """A single frame could not be decoded. Recovered; the stream goes on."""

    frame: str = ""

    kind = ErrorKind.FRAME_PARSE


@dataclass
class PrematureTermination(StreamError):
    """The transport closed before a terminal event arrived."""

    kind = ErrorKind.PREMATURE_TERMINATION


@dataclass
class ProtocolViolation(StreamError):
    kind = ErrorKind.PROTOCOL_VIOLATION


@dataclass
class MalformedToolArguments(StreamError):
    """Accumulated tool-call arguments are not valid JSON.

    Attached to the offending call of a ``FinalResponse``; never raised
    out of ``collect()``.
    """

    index: int = 0
    arguments: str = ""

    kind = ErrorKind.MALFORMED_TOOL_ARGUMENTS


@dataclass
class UpstreamError(StreamError):
    """The provider reported a failure in-band."""

    kind = ErrorKind.UPSTREAM


@dataclass
class StreamCancelled(StreamError):
    kind = ErrorKind.CANCELLED


_ERRORS_BY_KIND: dict[ErrorKind, type[StreamError]] = {
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.FRAME_PARSE: FrameParseError,
    ErrorKind.PREMATURE_TERMINATION: PrematureTermination,
    ErrorKind.PROTOCOL_VIOLATION: ProtocolViolation,
    ErrorKind.MALFORMED_TOOL_ARGUMENTS: MalformedToolArguments,
    ErrorKind.UPSTREAM: UpstreamError,
    ErrorKind.CANCELLED: StreamCancelled,
}


def error_from_failed(event: Failed) -> StreamError:
    """Build the exception matching a terminal ``Failed`` event."""
    return _ERRORS_BY_KIND[event.kind](event.message)
