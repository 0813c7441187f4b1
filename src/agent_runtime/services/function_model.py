"""In-process models: a function-backed model and a scripted one.

Both are meant for tests and local experiments; neither talks to a network.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, Union

from agent_runtime.errors import ModelAPIError
from agent_runtime.models.messages import ModelMessage, ModelResponse, TextPart
from agent_runtime.models.settings import ModelSettings
from agent_runtime.output.mode import OutputMode
from agent_runtime.services.model import Model, ModelProfile, ModelRequestParameters
from agent_runtime.tools import ToolDefinition


@dataclass
class AgentInfo:
    """What the agent told the model on this request."""

    function_tools: list[ToolDefinition]
    output_tools: list[ToolDefinition]
    output_mode: OutputMode
    allow_text_output: bool
    model_settings: ModelSettings | None
    instructions: str | None = None


ResponseLike = Union[ModelResponse, str]
ModelFunction = Callable[[list[ModelMessage], AgentInfo], Union[ResponseLike, Awaitable[ResponseLike]]]


def _as_response(value: ResponseLike, model_name: str) -> ModelResponse:
    if isinstance(value, str):
        return ModelResponse(parts=[TextPart(content=value)], model_name=model_name)
    if value.model_name is None:
        return value.model_copy(update={"model_name": model_name})
    return value


class FunctionModel(Model):
    def __init__(
        self,
        function: ModelFunction,
        *,
        model_name: str = "function",
        profile: ModelProfile | None = None,
    ) -> None:
        self.function = function
        self._name = model_name
        self._profile = profile or ModelProfile()

    @property
    def name(self) -> str:
        return self._name

    @property
    def system(self) -> str:
        return "function"

    @property
    def profile(self) -> ModelProfile:
        return self._profile

    async def request(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> ModelResponse:
        info = AgentInfo(
            function_tools=list(params.function_tools),
            output_tools=list(params.output_tools),
            output_mode=params.output_mode,
            allow_text_output=params.allow_text_output,
            model_settings=settings,
            instructions=params.instructions,
        )
        result = self.function(list(messages), info)
        if inspect.isawaitable(result):
            result = await result
        return _as_response(result, self._name)


@dataclass
class RecordedRequest:
    messages: list[ModelMessage]
    settings: ModelSettings | None
    params: ModelRequestParameters


class ScriptedModel(Model):
    """Returns pre-scripted responses in order and records every request.

    A scripted entry that is an exception instance is raised instead of
    returned, which lets tests simulate transport failures.
    """

    def __init__(
        self,
        responses: Sequence[ResponseLike | BaseException],
        *,
        model_name: str = "scripted",
        profile: ModelProfile | None = None,
    ) -> None:
        self._responses = list(responses)
        self._name = model_name
        self._profile = profile or ModelProfile()
        self.requests: list[RecordedRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def system(self) -> str:
        return "scripted"

    @property
    def profile(self) -> ModelProfile:
        return self._profile

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def request(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> ModelResponse:
        self.requests.append(RecordedRequest(list(messages), settings, params))
        if not self._responses:
            raise ModelAPIError(f"ScriptedModel ran out of responses after {len(self.requests) - 1} requests")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return _as_response(item, self._name)


def text_response(content: str, **kwargs: Any) -> ModelResponse:
    return ModelResponse(parts=[TextPart(content=content)], **kwargs)
