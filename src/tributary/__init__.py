from tributary.client import StreamProcessor
from tributary.config import ProcessorConfig
from tributary.errors import (
    ErrorKind,
    FrameParseError,
    MalformedToolArguments,
    PrematureTermination,
    ProtocolViolation,
    StreamCancelled,
    StreamError,
    TransportError,
    UpstreamError,
)
from tributary.events import (
    Completed,
    ContentDelta,
    Failed,
    Informational,
    OutputItemAdded,
    ResponseStarted,
    StreamEvent,
    ToolCallDelta,
    UsageReported,
)
from tributary.instrumentation import instrument, uninstrument
from tributary.processor import FinalResponse, FinalToolCall, ResponseStream
from tributary.sse import FrameDecoder, sse_generator
from tributary.state import StreamPhase, StreamState
from tributary.streaming import AccumulatedToolCall, ToolCallAccumulator
from tributary.transport import (
    HttpxTransport,
    OpenAITransport,
    OpenRouter,
    StreamHandle,
    StreamRequest,
    Transport,
    VLLMTransport,
)

__all__ = [
    "AccumulatedToolCall",
    "Completed",
    "ContentDelta",
    "ErrorKind",
    "Failed",
    "FinalResponse",
    "FinalToolCall",
    "FrameDecoder",
    "FrameParseError",
    "HttpxTransport",
    "Informational",
    "MalformedToolArguments",
    "OpenAITransport",
    "OpenRouter",
    "OutputItemAdded",
    "PrematureTermination",
    "ProcessorConfig",
    "ProtocolViolation",
    "ResponseStarted",
    "ResponseStream",
    "StreamCancelled",
    "StreamError",
    "StreamEvent",
    "StreamHandle",
    "StreamPhase",
    "StreamProcessor",
    "StreamRequest",
    "StreamState",
    "ToolCallAccumulator",
    "ToolCallDelta",
    "Transport",
    "TransportError",
    "UpstreamError",
    "UsageReported",
    "VLLMTransport",
    "instrument",
    "sse_generator",
    "uninstrument",
]
