"""The stream state machine and its consumer-facing surface."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from tributary.config import ProcessorConfig
from tributary.errors import (
    ErrorKind,
    FrameParseError,
    MalformedToolArguments,
    ProtocolViolation,
    StreamCancelled,
    TransportError,
    error_from_failed,
)
from tributary.events import (
    Completed,
    ContentDelta,
    Failed,
    StreamEvent,
    ToolCallDelta,
    UsageReported,
    is_terminal,
)
from tributary.instrumentation import (
    end_stream_span,
    record_error,
    record_usage,
    start_stream_span,
)
from tributary.sse import FrameDecoder
from tributary.state import StreamPhase, StreamState
from tributary.streaming import AccumulatedToolCall
from tributary.transport import StreamHandle, StreamRequest, Transport

logger = logging.getLogger(__name__)


@dataclass
class FinalToolCall:
    """A completed tool call with its arguments parsed.

    ``error`` is set, and ``parsed_arguments`` left ``None``, when the
    accumulated argument text is not valid JSON.
    """

    index: int
    call_id: str | None
    name: str
    arguments: str
    parsed_arguments: Any = None
    error: MalformedToolArguments | None = None

    @property
    def malformed(self) -> bool:
        return self.error is not None

    @classmethod
    def from_accumulated(cls, tc: AccumulatedToolCall) -> FinalToolCall:
        call = cls(
            index=tc.index, call_id=tc.call_id,
            name=tc.name, arguments=tc.arguments,
        )
        if not tc.arguments.strip():
            call.parsed_arguments = {}
            return call
        try:
            call.parsed_arguments = json.loads(tc.arguments)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in arguments for {tc.name}: {e}")
            call.error = MalformedToolArguments(
                f"arguments for tool call {tc.index} ({tc.name}) are not "
                f"valid JSON: {e}",
                cause=e, index=tc.index, arguments=tc.arguments,
            )
        return call


@dataclass
class FinalResponse:
    """The fully materialized result of a successfully completed stream."""

    content: str
    finish_reason: str
    tool_calls: list[FinalToolCall] = field(default_factory=list)
    usage: UsageReported | None = None
    parse_errors: list[FrameParseError] = field(default_factory=list)

    @property
    def malformed_tool_calls(self) -> list[FinalToolCall]:
        return [tc for tc in self.tool_calls if tc.malformed]

    @classmethod
    def from_state(cls, state: StreamState) -> FinalResponse:
        return cls(
            content=state.content,
            finish_reason=state.finish_reason or "stop",
            tool_calls=[
                FinalToolCall.from_accumulated(tc)
                for tc in state.tool_calls.finalize()
            ],
            usage=state.usage,
            parse_errors=list(state.parse_errors),
        )


class ResponseStream:
    """One streaming response, consumed as an async iterator of events.

    Nothing is requested from the transport until the first event is
    pulled, and each further pull reads at most as many chunks as it takes
    to decode one more event.  The stream ends after the terminal
    ``Completed`` or ``Failed`` event and cannot be iterated again.

    ``collect()`` drains the stream into a :class:`FinalResponse`.

    Leaving the stream before its terminal event, through :meth:`aclose`,
    an ``async with`` block, or a cancelled read (e.g. a timeout around the
    consumer), cancels it: the transport is told to abort and partial
    results are dropped.  An ``async for`` loop that is abandoned without
    closing the stream is cancelled when the event loop finalizes it.

    Example::

        async with ResponseStream(transport, request) as stream:
            async for event in stream:
                if isinstance(event, ContentDelta):
                    print(event.text, end="")

    Args:
        transport: Opens and releases the underlying response.
        request: The serialized request and its framing.
        config: Frame decoding settings.
    """

    def __init__(
        self,
        transport: Transport,
        request: StreamRequest,
        config: ProcessorConfig | None = None,
    ):
        self.transport = transport
        self.request = request
        self.config = config or ProcessorConfig()
        self.state = StreamState()
        self._handle: StreamHandle | None = None
        self._decoder: FrameDecoder | None = None
        self._span = None
        self._released = False

    @property
    def phase(self) -> StreamPhase:
        return self.state.phase

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[StreamEvent]:
        # An abandoned ``async for`` is finalized by the event loop, which
        # closes this generator and so cancels the stream.
        try:
            while True:
                try:
                    event = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield event
        finally:
            await self.aclose()

    async def __anext__(self) -> StreamEvent:
        if self.state.phase.is_terminal:
            raise StopAsyncIteration
        try:
            event = self._apply(await self._next_event())
            if is_terminal(event):
                await self._release()
        except BaseException:
            await self.aclose()
            raise
        return event

    async def collect(self) -> FinalResponse:
        """Drain the stream and return its final response.

        Raises:
            StreamError: The subclass matching the failure when the stream
                ends with ``Failed``.
            StreamCancelled: If the stream was cancelled.
        """
        try:
            async for _ in self:
                pass
        finally:
            await self.aclose()
        return self.final_response()

    async def collect_text(self) -> str:
        return (await self.collect()).content

    def final_response(self) -> FinalResponse:
        """Snapshot of a stream that has ended."""
        if self.state.phase is StreamPhase.OPEN:
            raise RuntimeError("stream has not finished; use collect()")
        if self.state.phase is StreamPhase.CANCELLED:
            raise StreamCancelled("stream was cancelled before completion")
        if self.state.phase is StreamPhase.FAILED:
            raise self.state.error
        return FinalResponse.from_state(self.state)

    async def aclose(self) -> None:
        """Cancel the stream if it is still open; no-op otherwise."""
        if self.state.phase is not StreamPhase.OPEN:
            return
        self.state.phase = StreamPhase.CANCELLED
        self.state.discard()
        self._decoder = None
        self._released = True
        logger.info(f"Stream to {self.request.endpoint} cancelled")
        if self._handle is None:
            end_stream_span(self._span, self.state.phase.value)
            return
        try:
            await self.transport.cancel(self._handle)
        finally:
            end_stream_span(self._span, self.state.phase.value)

    async def _next_event(self) -> StreamEvent:
        if self._decoder is None:
            failure = await self._open()
            if failure is not None:
                return failure
        event = await self._decoder.next_event()
        if event is None:
            raise RuntimeError("frame decoder finished without a terminal event")
        return event

    async def _open(self) -> Failed | None:
        self._span = start_stream_span(
            self.transport.system, self.request.endpoint, self.request.model,
        )
        try:
            self._handle = await self.transport.open(self.request)
        except TransportError as e:
            logger.warning(f"Could not open stream to {self.request.endpoint}: {e.message}")
            return Failed(message=e.message, kind=ErrorKind.TRANSPORT)
        self._decoder = FrameDecoder(
            self._handle.chunks,
            delimiter=self.request.delimiter,
            framing=self.request.framing,
            config=self.config,
        )
        self.state.parse_errors = self._decoder.errors
        return None

    def _apply(self, event: StreamEvent) -> StreamEvent:
        state = self.state
        if isinstance(event, ContentDelta):
            state.content += event.text
        elif isinstance(event, ToolCallDelta):
            try:
                state.tool_calls.apply(event)
            except ProtocolViolation as e:
                event = Failed(message=e.message, kind=ErrorKind.PROTOCOL_VIOLATION)
        elif isinstance(event, UsageReported):
            state.usage = event

        if isinstance(event, Completed):
            state.phase = StreamPhase.COMPLETED
            state.finish_reason = event.finish_reason
        elif isinstance(event, Failed):
            state.phase = StreamPhase.FAILED
            state.error = error_from_failed(event)
        return event

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        state = self.state
        if state.phase is StreamPhase.COMPLETED:
            logger.info(
                f"Stream to {self.request.endpoint} completed "
                f"({state.finish_reason}, {len(state.parse_errors)} frame(s) skipped)"
            )
        else:
            logger.warning(f"Stream to {self.request.endpoint} failed: {state.error}")
        try:
            if self._handle is not None:
                await self.transport.close(self._handle)
        except TransportError as e:
            logger.warning(f"Error releasing stream: {e.message}")
        except BaseException:
            logger.warning(
                f"Release of stream to {self.request.endpoint} interrupted; "
                "cancelling transport"
            )
            await self.transport.cancel(self._handle)
            raise
        finally:
            record_usage(self._span, state.usage)
            if state.error is not None:
                record_error(self._span, state.error)
            end_stream_span(self._span, state.phase.value, state.finish_reason)
