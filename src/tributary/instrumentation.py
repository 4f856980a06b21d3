"""Optional OpenTelemetry instrumentation for tributary.

Call ``tributary.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; streams behave
identically without it.
"""

import importlib.util
import logging

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "tributary") -> None:
    """Enable OpenTelemetry tracing for every stream.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install tributary[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import tributary
        tributary.instrument()

    Each stream then produces one CLIENT span, opened when the transport
    is opened and ended when the stream completes, fails or is
    cancelled.

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install tributary[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Tributary instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing.

    Streams opened afterwards will not emit spans.
    """
    global _tracer
    _tracer = None


def start_stream_span(system: str, endpoint: str, model: str | None = None):
    """Start a ``chat`` span for one stream, or return ``None``.

    The span is not made current: a stream outlives the call that opens
    it, so the caller ends it with :func:`end_stream_span`.
    """
    if _tracer is None:
        return None
    from opentelemetry.trace import SpanKind

    attributes = {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
        "url.path": endpoint,
    }
    if model:
        attributes["gen_ai.request.model"] = model
    return _tracer.start_span(
        f"chat {model or endpoint}",
        kind=SpanKind.CLIENT,
        attributes=attributes,
    )


def record_usage(span, usage) -> None:
    """Set token-usage attributes on a span."""
    if span is None or usage is None:
        return
    if getattr(usage, "prompt_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.input_tokens", usage.prompt_tokens,
        )
    if getattr(usage, "completion_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.output_tokens", usage.completion_tokens,
        )


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    Sets ``error.type`` per GenAI semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )


def end_stream_span(
    span, phase: str, finish_reason: str | None = None,
) -> None:
    if span is None:
        return
    span.set_attribute("tributary.stream.phase", phase)
    if finish_reason:
        span.set_attribute(
            "gen_ai.response.finish_reasons", [finish_reason],
        )
    span.end()
