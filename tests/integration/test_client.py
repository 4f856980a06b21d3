"""End-to-end tests for StreamProcessor over mock and httpx transports."""

import json

import httpx
import pytest

from tributary import (
    ContentDelta,
    HttpxTransport,
    ProcessorConfig,
    StreamProcessor,
    StreamRequest,
    TransportError,
)
from tributary.state import StreamPhase

from tests.conftest import DONE, content_chunk, finish_chunk, sse, tool_chunk


class TestStreamProcessor:
    @pytest.mark.asyncio
    async def test_collect_from_dict_payload(self, make_transport):
        transport = make_transport(content_chunk("Hi "), content_chunk("there"), DONE)
        processor = StreamProcessor(transport)

        response = await processor.collect({"model": "m", "messages": []})

        assert response.content == "Hi there"
        request = transport.opened[0]
        assert json.loads(request.body)["stream"] is True
        assert request.model == "m"

    @pytest.mark.asyncio
    async def test_collect_text(self, make_transport, request_payload):
        processor = StreamProcessor(make_transport(content_chunk("ok"), DONE))
        assert await processor.collect_text(request_payload) == "ok"

    @pytest.mark.asyncio
    async def test_streams_are_independent(self, make_transport, request_payload):
        processor = StreamProcessor(make_transport(content_chunk("x"), DONE))

        first = processor.stream(request_payload)
        second = processor.stream(request_payload)
        await first.collect()

        assert first.phase is StreamPhase.COMPLETED
        assert second.phase is StreamPhase.OPEN
        assert second.state.content == ""
        await second.aclose()

    @pytest.mark.asyncio
    async def test_config_is_passed_to_streams(self, make_transport, request_payload):
        config = ProcessorConfig(done_sentinel="END")
        transport = make_transport(content_chunk("a"), sse("END"), content_chunk("late"))
        processor = StreamProcessor(transport, config=config)

        stream = processor.stream(request_payload)
        response = await stream.collect()

        assert stream.config is config
        assert response.content == "a"


# ---------------------------------------------------------------------------
# Over HTTP
# ---------------------------------------------------------------------------

def _split(data: bytes, size: int):
    async def chunks():
        for i in range(0, len(data), size):
            yield data[i:i + size]
    return chunks()


class TestOverHttp:
    @pytest.mark.asyncio
    async def test_sse_body_split_across_reads(self):
        body = b"".join([
            b": keep-alive\n\n",
            sse(tool_chunk(0, call_id="call_1", name="get_weather")),
            sse(tool_chunk(0, arguments='{"city": ')),
            sse(tool_chunk(0, arguments='"Paris"}')),
            sse(finish_chunk("tool_calls")),
            DONE,
        ])

        def handler(request):
            return httpx.Response(200, content=_split(body, 7))

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test",
        )
        processor = StreamProcessor(HttpxTransport(client=client))

        response = await processor.collect({"model": "m"})
        await client.aclose()

        assert response.finish_reason == "tool_calls"
        call = response.tool_calls[0]
        assert (call.call_id, call.name) == ("call_1", "get_weather")
        assert call.parsed_arguments == {"city": "Paris"}
        assert response.parse_errors == []

    @pytest.mark.asyncio
    async def test_ndjson_stream(self):
        lines = [
            {"type": "response.created", "response": {"id": "r1"}},
            {"type": "response.output_text.delta", "delta": "line one"},
            {"type": "response.completed", "response": {"status": "completed"}},
        ]
        body = b"".join(json.dumps(line).encode() + b"\n" for line in lines)

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body)),
            base_url="http://test",
        )
        processor = StreamProcessor(HttpxTransport(client=client))
        request = StreamRequest.from_payload(
            {"model": "m"}, endpoint="/v1/stream", delimiter=b"\n", framing="ndjson",
        )

        events = [e async for e in processor.stream(request)]
        await client.aclose()

        assert [e.text for e in events if isinstance(e, ContentDelta)] == ["line one"]
        assert events[-1].finish_reason == "completed"

    @pytest.mark.asyncio
    async def test_http_error_raises_transport_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(500, content=b"internal error"),
            ),
            base_url="http://test",
        )
        processor = StreamProcessor(HttpxTransport(client=client))

        with pytest.raises(TransportError, match="HTTP 500"):
            await processor.collect({"model": "m"})
        await client.aclose()
