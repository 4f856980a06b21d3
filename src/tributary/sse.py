"""Server-Sent Events framing.

:class:`FrameDecoder` turns a byte stream into :class:`StreamEvent` objects;
:func:`sse_generator` goes the other way, for relaying decoded events to a
downstream client.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable
from dataclasses import asdict
from typing import Literal

from tributary.config import ProcessorConfig
from tributary.errors import ErrorKind, FrameParseError, TransportError
from tributary.events import Completed, Failed, StreamEvent, is_terminal
from tributary.payloads import PayloadTranslator

logger = logging.getLogger(__name__)

Framing = Literal["sse", "ndjson"]


class FrameDecoder:
    """Decodes delimited frames of JSON payloads into stream events.

    The decoder can be driven two ways: push bytes with :meth:`feed` and
    :meth:`finish`, or hand it an async byte source and pull with
    :meth:`next_event`, which reads only as many chunks as it needs.

    A malformed frame is logged, recorded in :attr:`errors` and skipped.
    Once a terminal event (``Completed`` or ``Failed``) has been produced
    the decoder is :attr:`finished` and produces nothing further.

    Args:
        source: Async iterator of raw chunks, required for
            :meth:`next_event`.
        delimiter: Byte sequence separating frames.
        framing: ``"sse"`` frames carry their payload in ``data:`` fields;
            ``"ndjson"`` frames are the payload.
        config: Decoding limits and sentinel.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes] | None = None,
        *,
        delimiter: bytes = b"\n\n",
        framing: Framing = "sse",
        config: ProcessorConfig | None = None,
    ):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.config = config or ProcessorConfig()
        self.delimiter = delimiter
        self.framing = framing
        self.errors: list[FrameParseError] = []
        self.finished = False
        self._source = source
        self._translator = PayloadTranslator(
            primary_choice=self.config.primary_choice,
        )
        self._buffer = b""
        self._ready: deque[StreamEvent] = deque()

    async def next_event(self) -> StreamEvent | None:
        """Return the next event, or ``None`` after the terminal one."""
        while not self._ready:
            if self.finished:
                return None
            if self._source is None:
                raise RuntimeError("FrameDecoder.next_event() needs a source")
            try:
                chunk = await anext(self._source)
            except StopAsyncIteration:
                self._ready.extend(self.finish())
            except TransportError as e:
                logger.warning(f"Transport failed mid-stream: {e.message}")
                self._ready.extend(self._accept([
                    Failed(message=e.message, kind=ErrorKind.TRANSPORT),
                ]))
            else:
                self._ready.extend(self.feed(chunk))
        return self._ready.popleft()

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Buffer *chunk* and decode every frame it completes."""
        if self.finished:
            logger.debug(f"Ignoring {len(chunk)} bytes after terminal event")
            return []
        buffer = self._buffer + chunk
        if self.config.normalize_newlines and self.framing == "sse":
            buffer = buffer.replace(b"\r\n", b"\n")

        events: list[StreamEvent] = []
        while not self.finished:
            frame, sep, rest = buffer.partition(self.delimiter)
            if not sep:
                break
            buffer = rest
            events.extend(self._decode_frame(frame))

        if self.finished:
            buffer = b""
        elif len(buffer) > self.config.max_frame_bytes:
            buffer = b""
            events.extend(self._accept([Failed(
                message=(
                    f"frame exceeds {self.config.max_frame_bytes} bytes "
                    "without a delimiter"
                ),
                kind=ErrorKind.PROTOCOL_VIOLATION,
            )]))
        self._buffer = buffer
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the buffer after the transport closed.

        If no terminal event was seen, a chat-completion stream that
        already reported its finish reason completes; anything else fails
        as a premature termination.
        """
        if self.finished:
            return []
        events: list[StreamEvent] = []
        rest, self._buffer = self._buffer, b""
        if rest.strip():
            events.extend(self._decode_frame(rest))
        if self.finished:
            return events

        if self._translator.finish_reason is not None:
            events.extend(self._accept([
                Completed(finish_reason=self._translator.finish_reason),
            ]))
        else:
            logger.warning("Transport closed before a terminal event")
            events.extend(self._accept([Failed(
                message="stream ended unexpectedly",
                kind=ErrorKind.PREMATURE_TERMINATION,
            )]))
        return events

    def _decode_frame(self, frame: bytes) -> list[StreamEvent]:
        try:
            text = frame.decode(self.config.encoding)
        except UnicodeDecodeError as e:
            self._skip(FrameParseError(
                f"frame is not valid {self.config.encoding}",
                cause=e, frame=repr(frame[:200]),
            ))
            return []

        payload = self._payload(text)
        if payload is None:
            return []
        if payload == self.config.done_sentinel:
            return self._accept([
                Completed(finish_reason=self._translator.finish_reason or "stop"),
            ])

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            self._skip(FrameParseError(
                f"invalid JSON: {e.msg}", cause=e, frame=payload[:200],
            ))
            return []
        try:
            events = self._translator.translate(data)
        except FrameParseError as e:
            e.frame = payload[:200]
            self._skip(e)
            return []
        return self._accept(events)

    def _payload(self, text: str) -> str | None:
        if self.framing == "ndjson":
            return text.strip() or None
        data_lines = []
        for line in text.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name == "data":
                data_lines.append(value.removeprefix(" "))
        if not data_lines:
            return None
        return "\n".join(data_lines).strip() or None

    def _accept(self, events: Iterable[StreamEvent]) -> list[StreamEvent]:
        accepted = []
        for event in events:
            accepted.append(event)
            if is_terminal(event):
                self.finished = True
                break
        return accepted

    def _skip(self, error: FrameParseError) -> None:
        logger.warning(f"Skipping malformed frame: {error.message}")
        self.errors.append(error)


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        event_type = type(event).__name__
        data = json.dumps(asdict(event))
        yield f"event: {event_type}\ndata: {data}\n\n"
    yield "event: done\ndata: {}\n\n"
