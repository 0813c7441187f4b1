"""The model contract the agent loop talks to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from agent_runtime.models.messages import ModelMessage, ModelResponse
from agent_runtime.models.settings import ModelSettings
from agent_runtime.output.mode import OutputMode
from agent_runtime.prompts.prompt_layer import load_prompt
from agent_runtime.services.streaming import ModelResponseEvent, response_to_events
from agent_runtime.tools import ToolDefinition


class ModelCapability(str, Enum):
    TOOLS = "tools"
    PARALLEL_TOOL_CALLS = "parallel_tool_calls"
    NATIVE_STRUCTURED_OUTPUT = "native_structured_output"
    STREAMING = "streaming"
    THINKING = "thinking"
    SYSTEM_PROMPT = "system_prompt"


@dataclass
class ModelProfile:
    supports_tools: bool = True
    supports_parallel_tool_calls: bool = True
    supports_native_structured_output: bool = False
    supports_streaming: bool = True
    supports_thinking: bool = False
    supports_system_prompt: bool = True
    default_output_mode: OutputMode = OutputMode.TOOL
    prompted_output_template: str = field(default_factory=lambda: load_prompt("prompted_output"))

    def supports(self, capability: ModelCapability) -> bool:
        return {
            ModelCapability.TOOLS: self.supports_tools,
            ModelCapability.PARALLEL_TOOL_CALLS: self.supports_parallel_tool_calls,
            ModelCapability.NATIVE_STRUCTURED_OUTPUT: self.supports_native_structured_output,
            ModelCapability.STREAMING: self.supports_streaming,
            ModelCapability.THINKING: self.supports_thinking,
            ModelCapability.SYSTEM_PROMPT: self.supports_system_prompt,
        }[capability]


@dataclass
class ModelRequestParameters:
    """Everything besides the messages that shapes one model request."""

    function_tools: list[ToolDefinition] = field(default_factory=list)
    output_tools: list[ToolDefinition] = field(default_factory=list)
    output_mode: OutputMode = OutputMode.TEXT
    output_schema: dict[str, Any] | None = None
    allow_text_output: bool = True
    instructions: str | None = None

    @property
    def all_tools(self) -> list[ToolDefinition]:
        return [*self.function_tools, *self.output_tools]


class Model(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def system(self) -> str:
        """Provider identifier, e.g. ``openai``."""
        return "unknown"

    @property
    def profile(self) -> ModelProfile:
        return ModelProfile()

    def supports(self, capability: ModelCapability) -> bool:
        return self.profile.supports(capability)

    @abstractmethod
    async def request(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> ModelResponse: ...

    async def request_stream(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> AsyncIterator[ModelResponseEvent]:
        """Stream a response. Models without native streaming replay ``request``."""
        response = await self.request(messages, settings, params)
        for event in response_to_events(response):
            yield event

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
