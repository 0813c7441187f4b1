"""Streaming response events and their assembly into a ModelResponse."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from agent_runtime.errors import UnexpectedModelBehavior
from agent_runtime.models.messages import ModelResponse, TextPart, ThinkingPart, ToolCallPart
from agent_runtime.usage import RequestUsage


@dataclass
class TextDelta:
    content: str


@dataclass
class ThinkingDelta:
    content: str


@dataclass
class ToolCallDelta:
    """A fragment of a tool call. Fragments sharing ``index`` belong together."""

    index: int
    tool_call_id: str | None = None
    tool_name: str | None = None
    args_delta: str = ""


@dataclass
class UsageEvent:
    usage: RequestUsage


@dataclass
class FinishEvent:
    finish_reason: str | None = None
    model_name: str | None = None


ModelResponseEvent = Union[TextDelta, ThinkingDelta, ToolCallDelta, UsageEvent, FinishEvent]


@dataclass
class _PendingCall:
    tool_call_id: str | None = None
    tool_name: str = ""
    args: list[str] = field(default_factory=list)


class ResponseAssembler:
    """Folds a stream of events into a single response.

    Consecutive text (or thinking) deltas merge into one part; part order
    follows the order in which each part first appeared in the stream.
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._parts: list[Any] = []
        self._calls: dict[int, _PendingCall] = {}
        self._usage = RequestUsage()
        self._finish_reason: str | None = None
        self._model_name = model_name

    def feed(self, event: ModelResponseEvent) -> None:
        if isinstance(event, TextDelta):
            self._append_text("text", event.content)
        elif isinstance(event, ThinkingDelta):
            self._append_text("thinking", event.content)
        elif isinstance(event, ToolCallDelta):
            call = self._calls.get(event.index)
            if call is None:
                call = _PendingCall()
                self._calls[event.index] = call
                self._parts.append(call)
            if event.tool_call_id:
                call.tool_call_id = event.tool_call_id
            if event.tool_name:
                call.tool_name += event.tool_name
            if event.args_delta:
                call.args.append(event.args_delta)
        elif isinstance(event, UsageEvent):
            self._usage = event.usage
        elif isinstance(event, FinishEvent):
            self._finish_reason = event.finish_reason
            self._model_name = event.model_name or self._model_name
        else:
            raise UnexpectedModelBehavior(f"Unknown stream event: {event!r}")

    def _append_text(self, kind: str, content: str) -> None:
        if self._parts and isinstance(self._parts[-1], list) and self._parts[-1][0] == kind:
            self._parts[-1][1].append(content)
        else:
            self._parts.append([kind, [content]])

    def build(self) -> ModelResponse:
        parts: list[Any] = []
        for pending in self._parts:
            if isinstance(pending, _PendingCall):
                if not pending.tool_name:
                    raise UnexpectedModelBehavior("Streamed tool call has no tool name")
                call_kwargs: dict[str, Any] = {"tool_name": pending.tool_name, "args": "".join(pending.args)}
                if pending.tool_call_id:
                    call_kwargs["tool_call_id"] = pending.tool_call_id
                parts.append(ToolCallPart(**call_kwargs))
            else:
                kind, chunks = pending
                content = "".join(chunks)
                parts.append(TextPart(content=content) if kind == "text" else ThinkingPart(content=content))
        return ModelResponse(
            parts=parts,
            usage=self._usage,
            model_name=self._model_name,
            finish_reason=self._finish_reason,
        )


def response_to_events(response: ModelResponse) -> list[ModelResponseEvent]:
    """Replay a complete response as the events that would have produced it."""
    events: list[ModelResponseEvent] = []
    call_index = 0
    for part in response.parts:
        if isinstance(part, TextPart):
            events.append(TextDelta(part.content))
        elif isinstance(part, ThinkingPart):
            events.append(ThinkingDelta(part.content))
        elif isinstance(part, ToolCallPart):
            events.append(
                ToolCallDelta(
                    index=call_index,
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    args_delta=part.args_as_json_str(),
                )
            )
            call_index += 1
    events.append(UsageEvent(response.usage))
    events.append(FinishEvent(response.finish_reason, response.model_name))
    return events
