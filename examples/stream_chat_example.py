"""Streaming chat example: print tokens as they arrive.

Demonstrates:
- Choosing a transport for an OpenAI-compatible endpoint
- Iterating a ResponseStream event by event
- Reading tool calls and usage from the final response
- Cancelling a stream with a timeout

Usage:
    uv run --env-file=.env examples/stream_chat_example.py --provider openai --model gpt-4o-mini --trace
    uv run examples/stream_chat_example.py --provider vllm --url localhost:8000 --model Qwen/Qwen3-8B
"""

import argparse
import asyncio
import logging

from tributary import (
    ContentDelta,
    OpenAITransport,
    OpenRouter,
    StreamError,
    StreamProcessor,
    ToolCallDelta,
    Transport,
    VLLMTransport,
)


def _vllm(url: str) -> VLLMTransport:
    host, _, port = url.partition(":")
    return VLLMTransport(host, int(port or 8000))


PROVIDERS = {
    "openai": lambda url: OpenAITransport(),
    "openrouter": lambda url: OpenRouter(),
    "vllm": _vllm,
}

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Current weather for a city.",
        "parameters": {
            "type": "object",
            "properties": {"location": {"type": "string"}},
            "required": ["location"],
        },
    },
}


def make_transport(provider: str, url: str | None) -> Transport:
    if provider == "vllm" and not url:
        raise SystemExit("--url is required for vllm provider")
    return PROVIDERS[provider](url)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from tributary.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


async def stream_once(processor: StreamProcessor, model: str, prompt: str):
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "tools": [WEATHER_TOOL],
        "stream_options": {"include_usage": True},
    }
    async with processor.stream(payload) as stream:
        async for event in stream:
            if isinstance(event, ContentDelta):
                print(event.text, end="", flush=True)
            elif isinstance(event, ToolCallDelta) and event.name_fragment:
                print(f"\n[tool call {event.index}: {event.name_fragment}]", flush=True)
        print()
        response = stream.final_response()

    for call in response.tool_calls:
        if call.malformed:
            print(f"  {call.name}: malformed arguments {call.arguments!r}")
        else:
            print(f"  {call.name}({call.parsed_arguments})")
    if response.usage is not None:
        print(f"  tokens: {response.usage.total_tokens}")


async def main():
    parser = argparse.ArgumentParser(description="Streaming chat")
    parser.add_argument("--provider", choices=PROVIDERS, default="openai")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--url", default=None)
    parser.add_argument("--timeout", type=float, default=60.0)
    parser.add_argument("--trace", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    if args.trace:
        setup_tracing("stream-chat")

    processor = StreamProcessor(make_transport(args.provider, args.url))

    print("Streaming chat (try: what's the weather in Paris?)\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        print("Assistant: ", end="")
        try:
            await asyncio.wait_for(
                stream_once(processor, args.model, user_input), args.timeout,
            )
        except asyncio.TimeoutError:
            print("\n[timed out; stream cancelled]")
        except StreamError as e:
            print(f"\n[{e}]")


if __name__ == "__main__":
    asyncio.run(main())
