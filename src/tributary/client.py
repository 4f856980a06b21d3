from collections.abc import Mapping
from typing import Any

from tributary.config import ProcessorConfig
from tributary.processor import FinalResponse, ResponseStream
from tributary.transport import StreamRequest, Transport


class StreamProcessor:
    """Opens streams over one transport with shared decoding settings.

    ``collect()`` drains ``stream()``.  ``stream()`` is the incremental
    entry point.

    Args:
        transport: Transport used for every request.
        config: Decoding settings applied to every stream.
    """

    def __init__(
        self,
        transport: Transport,
        config: ProcessorConfig | None = None,
    ):
        self.transport = transport
        self.config = config or ProcessorConfig()

    def stream(
        self, request: StreamRequest | Mapping[str, Any],
    ) -> ResponseStream:
        """Create a stream for *request*; nothing is sent until iterated.

        A mapping is serialized with :meth:`StreamRequest.from_payload`.
        """
        if not isinstance(request, StreamRequest):
            request = StreamRequest.from_payload(request)
        return ResponseStream(self.transport, request, config=self.config)

    async def collect(
        self, request: StreamRequest | Mapping[str, Any],
    ) -> FinalResponse:
        return await self.stream(request).collect()

    async def collect_text(
        self, request: StreamRequest | Mapping[str, Any],
    ) -> str:
        return (await self.collect(request)).content
