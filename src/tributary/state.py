from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from tributary.errors import FrameParseError, StreamError
from tributary.events import UsageReported
from tributary.streaming import ToolCallAccumulator


class StreamPhase(Enum):
    OPEN = "open"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not StreamPhase.OPEN


@dataclass
class StreamState:
    """Everything one stream has accumulated so far.

    Owned by a single :class:`~tributary.processor.ResponseStream` and
    mutated only by it.  Nothing here is shared between streams.
    """

    phase: StreamPhase = StreamPhase.OPEN
    content: str = ""
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    finish_reason: str | None = None
    error: StreamError | None = None
    usage: UsageReported | None = None
    parse_errors: list[FrameParseError] = field(default_factory=list)

    def discard(self) -> None:
        """Drop partial results; used when the consumer cancels."""
        self.content = ""
        self.tool_calls.clear()
        self.usage = None
