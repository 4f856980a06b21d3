import json

import pytest

from tributary.errors import TransportError
from tributary.transport import StreamHandle, StreamRequest, Transport


# ---------------------------------------------------------------------------
# Frame builders (mirror the chat-completion chunk shape)
# ---------------------------------------------------------------------------

def sse(payload) -> bytes:
    """Encode one SSE frame; dicts are JSON-encoded, strings sent as-is."""
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {data}\n\n".encode()


def content_chunk(text: str, chunk_id: str = "chatcmpl-1") -> dict:
    return {
        "id": chunk_id,
        "model": "mock-model",
        "choices": [{"index": 0, "delta": {"content": text}}],
    }


def tool_chunk(
    index: int,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> dict:
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    call = {"index": index, "function": function}
    if call_id is not None:
        call["id"] = call_id
        call["type"] = "function"
    return {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "delta": {"tool_calls": [call]}}],
    }


def finish_chunk(reason: str = "stop") -> dict:
    return {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "delta": {}, "finish_reason": reason}],
    }


DONE = sse("[DONE]")


# ---------------------------------------------------------------------------
# Mock transport
# ---------------------------------------------------------------------------

class MockTransport(Transport):
    """Transport that replays scripted chunks. No network calls.

    Items in *chunks* are yielded in order; an exception instance is
    raised instead of yielded.  ``reads`` counts chunks handed out so
    tests can check that reading is driven by the consumer.
    """

    system = "mock"

    def __init__(self, chunks=(), open_error: Exception | None = None):
        self.chunks = list(chunks)
        self.open_error = open_error
        self.opened: list[StreamRequest] = []
        self.cancelled: list[StreamHandle] = []
        self.closed: list[StreamHandle] = []
        self.reads = 0

    async def open(self, request):
        self.opened.append(request)
        if self.open_error is not None:
            raise self.open_error
        return StreamHandle(chunks=self._iter(), request=request)

    async def _iter(self):
        for item in self.chunks:
            if isinstance(item, BaseException):
                raise item
            self.reads += 1
            yield item

    async def cancel(self, handle):
        self.cancelled.append(handle)

    async def close(self, handle):
        self.closed.append(handle)


def connection_reset() -> TransportError:
    return TransportError("ConnectError: connection reset by peer")


@pytest.fixture
def request_payload():
    return StreamRequest.from_payload({
        "model": "mock-model",
        "messages": [{"role": "user", "content": "hi"}],
    })


@pytest.fixture
def make_transport():
    """Factory fixture building a MockTransport from frame payloads.

    Dicts and strings are wrapped as SSE frames; bytes and exceptions are
    passed through untouched.
    """
    def _make(*items, open_error=None):
        chunks = []
        for item in items:
            if isinstance(item, (bytes, BaseException)):
                chunks.append(item)
            else:
                chunks.append(sse(item))
        return MockTransport(chunks, open_error=open_error)
    return _make
