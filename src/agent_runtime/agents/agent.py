"""Agent: configuration shared by runs, and the entry points that start them."""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Generic, Sequence

from agent_runtime.agents.history import HistoryProcessor
from agent_runtime.agents.run import AgentRun, StepCallback
from agent_runtime.config import settings
from agent_runtime.context import DepsT, RunContext
from agent_runtime.errors import ConfigurationError
from agent_runtime.models.agent_schemas import AgentRunResult, DeferredToolResults
from agent_runtime.models.messages import ModelMessage, ModelRequest, SystemPromptPart, UserPromptPart
from agent_runtime.models.settings import ModelSettings
from agent_runtime.output.mode import OutputMode
from agent_runtime.output.schema import OutputSchema, build_output_schema
from agent_runtime.output.validators import ValidatorChain
from agent_runtime.retries.backoff import RetryStrategy
from agent_runtime.services.model import Model, ModelCapability
from agent_runtime.tools import Tool
from agent_runtime.toolsets.base import AbstractToolset
from agent_runtime.toolsets.combined import CombinedToolset
from agent_runtime.toolsets.function import FunctionToolset
from agent_runtime.usage import UsageLimits

logger = logging.getLogger(__name__)


class Agent(Generic[DepsT]):
    """A model plus tools, output type and limits, reusable across runs.

    Example::

        agent = Agent(model, output_type=Invoice, instructions="Extract the invoice.")

        @agent.tool
        def lookup_vendor(ctx: RunContext[Db], name: str) -> dict:
            return ctx.deps.vendor(name)

        result = await agent.run("...", deps=db)
    """

    def __init__(
        self,
        model: Model,
        *,
        output_type: Any = str,
        output_mode: OutputMode | str | None = None,
        instructions: str | None = None,
        system_prompt: str | Sequence[str] = (),
        tools: Sequence[Tool | Callable[..., Any]] = (),
        toolsets: Sequence[AbstractToolset] = (),
        max_retries: int | None = None,
        usage_limits: UsageLimits | None = None,
        model_settings: ModelSettings | None = None,
        parallel_tool_calls: bool | None = None,
        max_concurrent_tools: int | None = None,
        history_processors: Sequence[HistoryProcessor] = (),
        tool_retry_strategy: RetryStrategy | None = None,
        callback: StepCallback | None = None,
        run_timeout: float | None = None,
        name: str | None = None,
    ) -> None:
        self.model = model
        self.name = name
        self.output_schema: OutputSchema = build_output_schema(output_type, output_mode)
        self.instructions = instructions
        self._system_prompts = [system_prompt] if isinstance(system_prompt, str) else list(system_prompt)
        self._system_prompt_functions: list[Callable[..., Any]] = []
        self._function_toolset = FunctionToolset(tools, id="agent")
        self._toolsets = list(toolsets)
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.usage_limits = usage_limits
        self.model_settings = model_settings or ModelSettings()
        self.parallel_tool_calls = parallel_tool_calls if parallel_tool_calls is not None else settings.parallel_tool_calls
        self.max_concurrent_tools = (
            max_concurrent_tools if max_concurrent_tools is not None else settings.max_concurrent_tools
        )
        self.history_processors = list(history_processors)
        self.tool_retry_strategy = tool_retry_strategy
        self.callback = callback
        self.run_timeout = run_timeout if run_timeout is not None else settings.run_timeout
        self.validators = ValidatorChain()
        self._check_output_capabilities()

    def _check_output_capabilities(self) -> None:
        mode = self.output_schema.mode
        if mode is OutputMode.TOOL and not self.model.supports(ModelCapability.TOOLS):
            raise ConfigurationError(f"Model {self.model.name!r} does not support tools, required by tool output mode")
        if mode is OutputMode.NATIVE and not self.model.supports(ModelCapability.NATIVE_STRUCTURED_OUTPUT):
            raise ConfigurationError(f"Model {self.model.name!r} does not support native structured output")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def tool(self, function: Callable[..., Any] | None = None, **kwargs: Any) -> Any:
        """Register a tool taking ``RunContext`` as its first argument."""
        return self._function_toolset.tool(function, **kwargs)

    def tool_plain(self, function: Callable[..., Any] | None = None, **kwargs: Any) -> Any:
        return self._function_toolset.tool_plain(function, **kwargs)

    def system_prompt(self, function: Callable[..., Any]) -> Callable[..., Any]:
        """Register a function producing a system prompt at the start of each new conversation."""
        self._system_prompt_functions.append(function)
        return function

    def output_validator(self, function: Callable[..., Any]) -> Callable[..., Any]:
        self.validators.add(function)
        return function

    @property
    def toolsets(self) -> list[AbstractToolset]:
        return [self._function_toolset, *self._toolsets]

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(self, prompt: str | None = None, **kwargs: Any) -> AgentRunResult:
        async with self.iter(prompt, **kwargs) as agent_run:
            return await agent_run.run_to_completion()

    def run_sync(self, prompt: str | None = None, **kwargs: Any) -> AgentRunResult:
        return asyncio.run(self.run(prompt, **kwargs))

    @asynccontextmanager
    async def iter(
        self,
        prompt: str | None = None,
        *,
        deps: Any = None,
        message_history: Sequence[ModelMessage] | None = None,
        usage_limits: UsageLimits | None = None,
        model_settings: ModelSettings | None = None,
        metadata: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
        deferred_tool_results: DeferredToolResults | None = None,
        stream: bool = False,
        callback: StepCallback | None = None,
    ) -> AsyncIterator[AgentRun]:
        """Start a run and hand it over for step-by-step driving.

        The toolsets stay entered for the duration of the ``async with``.
        """
        run_settings = self.model_settings.merge(model_settings)
        ctx: RunContext[Any] = RunContext(
            deps=deps,
            model_name=self.model.name,
            model_settings=run_settings,
            max_retries=self.max_retries,
            metadata=dict(metadata or {}),
        )
        messages = list(message_history or [])
        resume_prompt = None
        if deferred_tool_results is not None:
            resume_prompt = prompt
        elif not messages:
            if prompt is None:
                raise ConfigurationError("A prompt is required to start a new conversation")
            parts = await self._system_prompt_parts(ctx)
            parts.append(UserPromptPart(content=prompt))
            messages.append(ModelRequest(parts=parts))
        elif prompt is not None:
            messages.append(ModelRequest.user_text(prompt))

        if (len(self._function_toolset.registry) or self._toolsets) and not self.model.supports(ModelCapability.TOOLS):
            raise ConfigurationError(f"Model {self.model.name!r} does not support tools")

        parallel = self.parallel_tool_calls
        if run_settings.parallel_tool_calls is not None:
            parallel = run_settings.parallel_tool_calls
        parallel = parallel and self.model.supports(ModelCapability.PARALLEL_TOOL_CALLS)

        toolset = CombinedToolset(self.toolsets)
        agent_run = AgentRun(
            model=self.model,
            toolset=toolset,
            output_schema=self.output_schema,
            ctx=ctx,
            messages=messages,
            validators=self.validators,
            usage_limits=usage_limits or self.usage_limits or UsageLimits(request_limit=settings.request_limit),
            model_settings=run_settings,
            max_retries=self.max_retries,
            instructions=self._instructions(),
            history_processors=self.history_processors,
            callback=callback or self.callback,
            cancel_event=cancel_event,
            timeout=timeout if timeout is not None else self.run_timeout,
            parallel_tool_calls=parallel,
            max_concurrent_tools=self.max_concurrent_tools,
            tool_retry_strategy=self.tool_retry_strategy,
            stream=stream,
            deferred_results=deferred_tool_results,
            resume_prompt=resume_prompt,
        )
        logger.info("Starting run %s with model %s", ctx.run_id, self.model.name)
        async with toolset:
            yield agent_run

    def _instructions(self) -> str | None:
        pieces = [self.instructions] if self.instructions else []
        prompted = self.output_schema.instructions(self.model.profile.prompted_output_template)
        if prompted:
            pieces.append(prompted)
        return "\n\n".join(pieces) or None

    async def _system_prompt_parts(self, ctx: RunContext[Any]) -> list[Any]:
        parts: list[Any] = [SystemPromptPart(content=text) for text in self._system_prompts if text]
        for function in self._system_prompt_functions:
            takes_ctx = bool(inspect.signature(function).parameters)
            content = function(ctx) if takes_ctx else function()
            if inspect.isawaitable(content):
                content = await content
            if content:
                parts.append(SystemPromptPart(content=content))
        return parts
