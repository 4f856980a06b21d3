"""Byte transports for streaming responses.

A :class:`Transport` opens a request and hands back a
:class:`StreamHandle` whose ``chunks`` yield raw response bytes.  It does
no decoding.  Library errors are translated into
:class:`~tributary.errors.TransportError` so the processor can report
them as a failed stream.
"""

import json
import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Literal

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from tributary.errors import TransportError

logger = logging.getLogger(__name__)


class StreamRequest(BaseModel):
    """An already-serialized streaming request.

    The body is opaque to the processor; ``delimiter`` and ``framing``
    tell the frame decoder how the response is laid out.

    Example:
        request = StreamRequest.from_payload({
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "hi"}],
        })
    """

    body: bytes
    endpoint: str = "/chat/completions"
    delimiter: bytes = b"\n\n"
    framing: Literal["sse", "ndjson"] = "sse"
    headers: dict[str, str] = Field(default_factory=dict)
    model: str | None = None

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], **kwargs: Any,
    ) -> "StreamRequest":
        """Serialize *payload* with ``"stream": true`` forced on."""
        body = dict(payload)
        body["stream"] = True
        kwargs.setdefault("model", body.get("model"))
        return cls(body=json.dumps(body).encode(), **kwargs)


@dataclass
class StreamHandle:
    """An open response.

    ``resource`` is whatever the transport needs to release the response
    later.
    """

    chunks: AsyncIterator[bytes]
    request: StreamRequest
    resource: Any = None


class Transport:
    system = "generic"

    async def open(self, request: StreamRequest) -> StreamHandle:
        raise NotImplementedError

    async def cancel(self, handle: StreamHandle) -> None:
        """Abort an in-flight response."""
        pass

    async def close(self, handle: StreamHandle) -> None:
        """Release a response that reached its end."""
        pass


def _transport_error(e: Exception) -> TransportError:
    return TransportError(f"{type(e).__name__}: {e}", cause=e)


class OpenAITransport(Transport):
    """Streams through the ``openai`` SDK's raw streaming-response API.

    Supports the ``/chat/completions`` and ``/responses`` endpoints.
    """

    system = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int = 5,
        timeout: float = 600.0,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    def _resource(self, endpoint: str):
        path = endpoint.strip("/")
        if path == "chat/completions":
            return self.client.chat.completions
        if path == "responses":
            return self.client.responses
        raise TransportError(f"{type(self).__name__} cannot stream {endpoint!r}")

    async def open(self, request: StreamRequest) -> StreamHandle:
        try:
            payload = json.loads(request.body)
        except ValueError as e:
            raise TransportError("request body is not JSON", cause=e) from e
        if not isinstance(payload, dict):
            raise TransportError("request body must be a JSON object")
        payload["stream"] = True
        resource = self._resource(request.endpoint)

        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(
                resource.with_streaming_response.create(
                    **payload, extra_headers=request.headers or None,
                )
            )
        except openai.APIError as e:
            await stack.aclose()
            raise _transport_error(e) from e
        except BaseException:
            await stack.aclose()
            raise
        logger.info(f"Streaming {request.endpoint} from {self.client.base_url}")
        return StreamHandle(
            chunks=self._chunks(response), request=request, resource=stack,
        )

    @staticmethod
    async def _chunks(response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.iter_bytes():
                yield chunk
        except (httpx.HTTPError, openai.APIError) as e:
            raise _transport_error(e) from e

    async def cancel(self, handle: StreamHandle) -> None:
        await handle.chunks.aclose()
        await handle.resource.aclose()

    async def close(self, handle: StreamHandle) -> None:
        await handle.chunks.aclose()
        await handle.resource.aclose()


class OpenRouter(OpenAITransport):
    system = "openrouter"

    def __init__(self, api_key: str | None = None, timeout: float = 180.0):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        super().__init__(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1",
            timeout=timeout,
        )


class VLLMTransport(OpenAITransport):
    system = "vllm"

    def __init__(self, url: str, port: int):
        self.base_url = f"http://{url}:{port}/v1"
        super().__init__(api_key="DUMMY", base_url=self.base_url)


class HttpxTransport(Transport):
    """POSTs the request body as-is and streams the raw response bytes.

    Args:
        base_url: Prefix for ``StreamRequest.endpoint``.
        api_key: Sent as a bearer token when given.
        client: An existing ``httpx.AsyncClient``; one is created from
            *base_url* and *timeout* otherwise.
    """

    system = "http"

    def __init__(
        self,
        base_url: str = "",
        api_key: str | None = None,
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout,
        )

    async def open(self, request: StreamRequest) -> StreamHandle:
        headers = {
            "Content-Type": "application/json",
            "Accept": (
                "text/event-stream" if request.framing == "sse"
                else "application/x-ndjson"
            ),
            **request.headers,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        http_request = self.client.build_request(
            "POST", request.endpoint, content=request.body, headers=headers,
        )
        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise _transport_error(e) from e

        if response.is_error:
            try:
                detail = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise TransportError(
                f"HTTP {response.status_code}: {detail[:500]}"
            )
        logger.info(f"Streaming {request.endpoint} ({response.status_code})")
        return StreamHandle(
            chunks=self._chunks(response), request=request, resource=response,
        )

    @staticmethod
    async def _chunks(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise _transport_error(e) from e

    async def cancel(self, handle: StreamHandle) -> None:
        await handle.chunks.aclose()
        await handle.resource.aclose()

    async def close(self, handle: StreamHandle) -> None:
        await handle.chunks.aclose()
        await handle.resource.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()
