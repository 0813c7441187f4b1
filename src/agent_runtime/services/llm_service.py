"""OpenAI-compatible chat-completions model."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import openai
from openai import AsyncOpenAI

from agent_runtime.config import ModelConfig, get_model_config, settings
from agent_runtime.errors import (
    ContextLengthExceeded,
    ModelAPIError,
    ModelConnectionError,
    ModelError,
    ModelHTTPError,
    ModelTimeout,
    RateLimited,
)
from agent_runtime.models.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    RetryPromptPart,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from agent_runtime.models.settings import ModelSettings
from agent_runtime.output.mode import OutputMode
from agent_runtime.services.model import Model, ModelProfile, ModelRequestParameters
from agent_runtime.services.streaming import (
    FinishEvent,
    ModelResponseEvent,
    TextDelta,
    ToolCallDelta,
    UsageEvent,
)
from agent_runtime.usage import RequestUsage

logger = logging.getLogger(__name__)

_SETTINGS_TO_KWARGS = {
    "max_tokens": "max_tokens",
    "temperature": "temperature",
    "top_p": "top_p",
    "frequency_penalty": "frequency_penalty",
    "presence_penalty": "presence_penalty",
    "stop": "stop",
    "seed": "seed",
    "timeout": "timeout",
}


def _create_openai_client(base_url: str = "") -> AsyncOpenAI:
    return AsyncOpenAI(api_key=settings.llm_api_key or "unset", base_url=base_url or settings.llm_base_url)


def map_messages(messages: list[ModelMessage], instructions: str | None = None) -> list[dict[str, Any]]:
    """Translate run history into chat-completions messages."""
    result: list[dict[str, Any]] = []
    if instructions:
        result.append({"role": "system", "content": instructions})
    for message in messages:
        if isinstance(message, ModelRequest):
            for part in message.parts:
                if isinstance(part, SystemPromptPart):
                    result.append({"role": "system", "content": part.content})
                elif isinstance(part, UserPromptPart):
                    result.append({"role": "user", "content": part.content})
                elif isinstance(part, ToolReturnPart):
                    result.append(
                        {"role": "tool", "tool_call_id": part.tool_call_id, "content": part.model_response_str()}
                    )
                elif isinstance(part, RetryPromptPart):
                    if part.tool_call_id:
                        result.append(
                            {"role": "tool", "tool_call_id": part.tool_call_id, "content": part.model_response()}
                        )
                    else:
                        result.append({"role": "user", "content": part.model_response()})
        else:
            texts = [part.content for part in message.parts if isinstance(part, TextPart)]
            calls = [part for part in message.parts if isinstance(part, ToolCallPart)]
            assistant: dict[str, Any] = {"role": "assistant", "content": "\n\n".join(texts) or None}
            if calls:
                assistant["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": call.args_as_json_str()},
                    }
                    for call in calls
                ]
            result.append(assistant)
    return result


def map_error(error: Exception) -> ModelError:
    if isinstance(error, openai.RateLimitError):
        return RateLimited(str(error))
    if isinstance(error, openai.APITimeoutError):
        return ModelTimeout(str(error))
    if isinstance(error, openai.APIConnectionError):
        return ModelConnectionError(str(error))
    if isinstance(error, openai.APIStatusError):
        if getattr(error, "code", None) == "context_length_exceeded":
            return ContextLengthExceeded(str(error))
        return ModelHTTPError(error.status_code, str(error), body=error.body)
    return ModelAPIError(str(error))


class OpenAIChatModel(Model):
    def __init__(self, config: ModelConfig | None = None, client: AsyncOpenAI | None = None) -> None:
        if config is None:
            config = get_model_config()
        self._config = config
        self.client = client or _create_openai_client(config.base_url)
        self.model = config.model or settings.llm_model

    @property
    def name(self) -> str:
        return self.model

    @property
    def system(self) -> str:
        return "openai"

    @property
    def profile(self) -> ModelProfile:
        return ModelProfile(supports_native_structured_output=True)

    def _request_kwargs(
        self,
        messages: list[ModelMessage],
        model_settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": map_messages(messages, params.instructions),
        }
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        if self._config.timeout is not None:
            kwargs["timeout"] = self._config.timeout
        if model_settings is not None:
            for field, key in _SETTINGS_TO_KWARGS.items():
                value = getattr(model_settings, field)
                if value is not None:
                    kwargs[key] = value
            if model_settings.extra:
                kwargs["extra_body"] = dict(model_settings.extra)

        tools = [tool.to_openai_tool() for tool in params.all_tools]
        if tools:
            kwargs["tools"] = tools
            if not params.allow_text_output:
                kwargs["tool_choice"] = "required"
            if model_settings is not None and model_settings.parallel_tool_calls is not None:
                kwargs["parallel_tool_calls"] = model_settings.parallel_tool_calls
        if params.output_mode is OutputMode.NATIVE and params.output_schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "final_result", "schema": params.output_schema, "strict": True},
            }
        return kwargs

    async def request(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> ModelResponse:
        kwargs = self._request_kwargs(messages, settings, params)
        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise map_error(e) from e
        return self._process_completion(completion)

    def _process_completion(self, completion: Any) -> ModelResponse:
        if not completion.choices:
            raise ModelAPIError("Completion has no choices")
        choice = completion.choices[0]
        message = choice.message
        parts: list[Any] = []
        if message.content:
            parts.append(TextPart(content=message.content))
        for call in message.tool_calls or []:
            parts.append(
                ToolCallPart(tool_name=call.function.name, args=call.function.arguments, tool_call_id=call.id)
            )
        usage = RequestUsage()
        if completion.usage is not None:
            usage = RequestUsage(
                input_tokens=completion.usage.prompt_tokens or 0,
                output_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens,
            )
        return ModelResponse(
            parts=parts,
            usage=usage,
            model_name=completion.model or self.model,
            finish_reason=choice.finish_reason,
        )

    async def request_stream(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> AsyncIterator[ModelResponseEvent]:
        kwargs = self._request_kwargs(messages, settings, params)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}
        try:
            stream = await self.client.chat.completions.create(**kwargs)
            finish_reason = None
            async for chunk in stream:
                if chunk.usage is not None:
                    yield UsageEvent(
                        RequestUsage(
                            input_tokens=chunk.usage.prompt_tokens or 0,
                            output_tokens=chunk.usage.completion_tokens or 0,
                            total_tokens=chunk.usage.total_tokens,
                        )
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                finish_reason = choice.finish_reason or finish_reason
                delta = choice.delta
                if delta.content:
                    yield TextDelta(delta.content)
                for call in delta.tool_calls or []:
                    yield ToolCallDelta(
                        index=call.index,
                        tool_call_id=call.id,
                        tool_name=call.function.name if call.function else None,
                        args_delta=(call.function.arguments or "") if call.function else "",
                    )
        except openai.OpenAIError as e:
            raise map_error(e) from e
        yield FinishEvent(finish_reason=finish_reason, model_name=self.model)
