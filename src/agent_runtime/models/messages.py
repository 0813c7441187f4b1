"""Message history exchanged with a model.

A run's history is an append-only list of :data:`ModelMessage`, alternating
between :class:`ModelRequest` (what we send) and :class:`ModelResponse`
(what the model returned).
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from agent_runtime.tools.returns import ErrorReturn, TextReturn, ToolReturn
from agent_runtime.usage import RequestUsage


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


# ---------------------------------------------------------------------------
# Request parts
# ---------------------------------------------------------------------------


class SystemPromptPart(BaseModel):
    part_kind: Literal["system-prompt"] = "system-prompt"
    content: str


class UserPromptPart(BaseModel):
    part_kind: Literal["user-prompt"] = "user-prompt"
    content: str
    timestamp: datetime = Field(default_factory=_now)


class ToolReturnPart(BaseModel):
    part_kind: Literal["tool-return"] = "tool-return"
    tool_name: str
    content: ToolReturn = Field(default_factory=TextReturn)
    tool_call_id: str
    timestamp: datetime = Field(default_factory=_now)

    @property
    def is_error(self) -> bool:
        return isinstance(self.content, ErrorReturn)

    def model_response_str(self) -> str:
        return self.content.as_text()


class RetryPromptPart(BaseModel):
    """Corrective feedback asking the model to try again."""

    part_kind: Literal["retry-prompt"] = "retry-prompt"
    content: str
    tool_name: str | None = None
    tool_call_id: str | None = None
    timestamp: datetime = Field(default_factory=_now)

    def model_response(self) -> str:
        from agent_runtime.prompts.prompt_layer import render_prompt

        return render_prompt("retry_feedback", content=self.content)


RequestPart = Annotated[
    Union[SystemPromptPart, UserPromptPart, ToolReturnPart, RetryPromptPart],
    Field(discriminator="part_kind"),
]


class ModelRequest(BaseModel):
    kind: Literal["request"] = "request"
    parts: list[RequestPart] = Field(default_factory=list)

    @classmethod
    def user_text(cls, prompt: str) -> ModelRequest:
        return cls(parts=[UserPromptPart(content=prompt)])


# ---------------------------------------------------------------------------
# Response parts
# ---------------------------------------------------------------------------


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_kind: Literal["text"] = "text"
    content: str


class ThinkingPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_kind: Literal["thinking"] = "thinking"
    content: str


class ToolCallPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_kind: Literal["tool-call"] = "tool-call"
    tool_name: str
    args: str | dict[str, Any] | None = None
    tool_call_id: str = Field(default_factory=_new_call_id)

    def args_as_dict(self) -> dict[str, Any]:
        """Decode the arguments. Raises ``ValueError`` for malformed JSON."""
        if self.args is None or self.args == "":
            return {}
        if isinstance(self.args, dict):
            return dict(self.args)
        decoded = json.loads(self.args)
        if not isinstance(decoded, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(decoded).__name__}")
        return decoded

    def args_as_json_str(self) -> str:
        if self.args is None:
            return "{}"
        if isinstance(self.args, str):
            return self.args
        return json.dumps(self.args, ensure_ascii=False)


ResponsePart = Annotated[
    Union[TextPart, ToolCallPart, ThinkingPart],
    Field(discriminator="part_kind"),
]


class ModelResponse(BaseModel):
    """A model's reply. Immutable once received."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["response"] = "response"
    parts: list[ResponsePart] = Field(default_factory=list)
    usage: RequestUsage = Field(default_factory=RequestUsage)
    model_name: str | None = None
    finish_reason: str | None = None
    timestamp: datetime = Field(default_factory=_now)

    @property
    def text(self) -> str:
        return "\n\n".join(part.content for part in self.parts if isinstance(part, TextPart) and part.content)

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]


ModelMessage = Annotated[Union[ModelRequest, ModelResponse], Field(discriminator="kind")]

ModelMessagesTypeAdapter = TypeAdapter(list[ModelMessage])
