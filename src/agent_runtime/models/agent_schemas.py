"""Result envelopes for agent runs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from agent_runtime.models.messages import ModelMessage, ModelResponse, ToolCallPart
from agent_runtime.usage import RunUsage


class ToolDenied(BaseModel):
    message: str = "The tool call was denied."


class DeferredToolRequests(BaseModel):
    """Tool calls the run could not finish on its own.

    ``approvals`` need a yes/no from the caller; ``calls`` must be executed by
    the caller and their results passed back.
    """

    calls: list[ToolCallPart] = Field(default_factory=list)
    approvals: list[ToolCallPart] = Field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.calls or self.approvals)


class DeferredToolResults(BaseModel):
    """Caller-supplied answers for :class:`DeferredToolRequests`, keyed by tool call id."""

    calls: dict[str, Any] = Field(default_factory=dict)
    approvals: dict[str, bool | ToolDenied] = Field(default_factory=dict)


class AgentRunResult(BaseModel):
    output: Any = None
    messages: list[ModelMessage] = Field(default_factory=list)
    usage: RunUsage = Field(default_factory=RunUsage)
    run_id: str = ""
    status: Literal["done", "paused"] = "done"
    finish_reason: str | None = None
    steps: int = 0
    step_durations: list[float] = Field(default_factory=list)
    deferred: DeferredToolRequests | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def responses(self) -> list[ModelResponse]:
        return [m for m in self.messages if isinstance(m, ModelResponse)]

    @property
    def tool_calls_made(self) -> int:
        return self.usage.tool_calls

    @property
    def is_paused(self) -> bool:
        return self.status == "paused"
