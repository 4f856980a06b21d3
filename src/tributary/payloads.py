"""Wire payload models and their translation into stream events.

Two payload shapes are understood: chat-completion chunks (a ``choices``
array of deltas) and typed events (a ``type`` discriminator, as sent by
the responses endpoint).  Anything else is a :class:`FrameParseError`.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from tributary.errors import ErrorKind, FrameParseError
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

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Chat-completion chunks
# ---------------------------------------------------------------------------

class FunctionDelta(BaseModel):
    name: str | None = None
    arguments: str | None = None


class ToolCallChunk(BaseModel):
    index: int = Field(ge=0)
    id: str | None = None
    type: str | None = None
    function: FunctionDelta | None = None


class ChoiceDelta(BaseModel):
    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallChunk] | None = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChoiceDelta = Field(default_factory=ChoiceDelta)
    finish_reason: str | None = None


class ChunkUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionChunk(BaseModel):
    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice]
    usage: ChunkUsage | None = None


# ---------------------------------------------------------------------------
# Typed events
# ---------------------------------------------------------------------------

class ErrorBody(BaseModel):
    message: str = "unknown error"
    code: str | None = None


class ResponseUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class IncompleteDetails(BaseModel):
    reason: str | None = None


class ResponseBody(BaseModel):
    id: str | None = None
    model: str | None = None
    status: str | None = None
    usage: ResponseUsage | None = None
    error: ErrorBody | None = None
    incomplete_details: IncompleteDetails | None = None


class ResponseLifecycle(BaseModel):
    response: ResponseBody = Field(default_factory=ResponseBody)
    response_id: str | None = None
    error: ErrorBody | str | None = None


class TextDelta(BaseModel):
    delta: str


class OutputItem(BaseModel):
    output_index: int = Field(default=0, ge=0)
    item: dict[str, Any] = Field(default_factory=dict)


class IndexedArgumentsDelta(BaseModel):
    output_index: int = Field(ge=0)
    delta: str


class CallStarted(BaseModel):
    call_id: str
    function_name: str


class KeyedArgumentsDelta(BaseModel):
    call_id: str
    delta: str


class PayloadTranslator:
    """Turns decoded JSON payloads into :class:`StreamEvent` lists.

    Holds the little state the wire formats need across frames: whether
    the stream has announced itself, the finish reason of a chat-completion
    stream (reported before the ``[DONE]`` sentinel), and the indexes
    assigned to calls that are keyed by id instead of position.

    Args:
        primary_choice: The chat-completion choice to follow. Deltas for
            other choices are skipped.
    """

    def __init__(self, primary_choice: int = 0) -> None:
        self.primary_choice = primary_choice
        self.finish_reason: str | None = None
        self._started = False
        self._call_indexes: dict[str, int] = {}

    def translate(self, data: Any) -> list[StreamEvent]:
        if not isinstance(data, dict):
            raise FrameParseError(
                f"expected a JSON object, got {type(data).__name__}"
            )
        try:
            if "type" in data:
                return self._typed(data)
            if "choices" in data:
                return self._chunk(CompletionChunk.model_validate(data))
            if "error" in data:
                return [self._error(data["error"])]
        except ValidationError as e:
            raise FrameParseError(
                f"payload does not match a known event: {e.error_count()} "
                "validation error(s)",
                cause=e,
            ) from e
        raise FrameParseError("payload does not match a known event")

    def _chunk(self, chunk: CompletionChunk) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        if not self._started:
            self._started = True
            events.append(ResponseStarted(response_id=chunk.id, model=chunk.model))

        for choice in chunk.choices:
            if choice.index != self.primary_choice:
                logger.debug(f"Skipping delta for choice {choice.index}")
                continue
            if choice.delta.content:
                events.append(ContentDelta(text=choice.delta.content))
            for tc in choice.delta.tool_calls or []:
                function = tc.function or FunctionDelta()
                events.append(ToolCallDelta(
                    index=tc.index,
                    call_id=tc.id,
                    name_fragment=function.name,
                    arguments_fragment=function.arguments,
                ))
            if choice.finish_reason:
                self.finish_reason = choice.finish_reason

        if chunk.usage is not None:
            events.append(UsageReported(
                prompt_tokens=chunk.usage.prompt_tokens,
                completion_tokens=chunk.usage.completion_tokens,
                total_tokens=chunk.usage.total_tokens,
            ))
        return events

    def _typed(self, data: dict[str, Any]) -> list[StreamEvent]:
        event_type = data["type"]
        if not isinstance(event_type, str):
            raise FrameParseError("event type is not a string")

        if event_type in ("response.created", "response.started"):
            body = ResponseLifecycle.model_validate(data)
            self._started = True
            return [ResponseStarted(
                response_id=body.response.id or body.response_id,
                model=body.response.model,
            )]

        if event_type in ("response.output_text.delta", "response.delta"):
            return [ContentDelta(text=TextDelta.model_validate(data).delta)]

        if event_type == "response.output_item.added":
            added = OutputItem.model_validate(data)
            events: list[StreamEvent] = [
                OutputItemAdded(output_index=added.output_index, item=added.item)
            ]
            if added.item.get("type") == "function_call":
                events.append(ToolCallDelta(
                    index=added.output_index,
                    call_id=added.item.get("call_id"),
                    name_fragment=added.item.get("name") or None,
                    arguments_fragment=added.item.get("arguments") or None,
                ))
            return events

        if event_type == "response.function_call_arguments.delta":
            delta = IndexedArgumentsDelta.model_validate(data)
            return [ToolCallDelta(
                index=delta.output_index, arguments_fragment=delta.delta,
            )]

        if event_type == "response.function_call.started":
            started = CallStarted.model_validate(data)
            return [ToolCallDelta(
                index=self._index_for(started.call_id),
                call_id=started.call_id,
                name_fragment=started.function_name,
            )]

        if event_type == "response.function_call.arguments.delta":
            delta = KeyedArgumentsDelta.model_validate(data)
            return [ToolCallDelta(
                index=self._index_for(delta.call_id),
                call_id=delta.call_id,
                arguments_fragment=delta.delta,
            )]

        if event_type in ("response.completed", "response.incomplete"):
            return self._finished(ResponseLifecycle.model_validate(data), event_type)

        if event_type == "response.failed":
            body = ResponseLifecycle.model_validate(data)
            return [Failed(message=self._failure_message(body), kind=ErrorKind.UPSTREAM)]

        if event_type == "error":
            return [self._error(data.get("error", data))]

        return [Informational(type=event_type, data=data)]

    def _finished(
        self, body: ResponseLifecycle, event_type: str,
    ) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        usage = body.response.usage
        if usage is not None:
            events.append(UsageReported(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.total_tokens
                or usage.input_tokens + usage.output_tokens,
            ))
        if event_type == "response.incomplete":
            details = body.response.incomplete_details
            reason = (details.reason if details else None) or "incomplete"
        else:
            reason = body.response.status or "completed"
        events.append(Completed(finish_reason=reason))
        return events

    @staticmethod
    def _error(error: Any) -> Failed:
        if isinstance(error, str):
            return Failed(message=error, kind=ErrorKind.UPSTREAM)
        body = ErrorBody.model_validate(error)
        return Failed(message=body.message, kind=ErrorKind.UPSTREAM)

    @staticmethod
    def _failure_message(body: ResponseLifecycle) -> str:
        if isinstance(body.error, str):
            return body.error
        if body.error is not None:
            return body.error.message
        if body.response.error is not None:
            return body.response.error.message
        return "response failed"

    def _index_for(self, call_id: str) -> int:
        if call_id not in self._call_indexes:
            self._call_indexes[call_id] = len(self._call_indexes)
        return self._call_indexes[call_id]
