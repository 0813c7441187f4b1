"""The agent run loop.

One :class:`AgentRun` drives a conversation with a model until a validated
output is produced, the run pauses on deferred tool calls, or an error ends
it. Each ``step()`` is one model request plus the handling of its response:

    REQUESTING -> RESPONDING -> TOOL_DISPATCH -> REQUESTING ...
    REQUESTING -> RESPONDING -> OUTPUT_CANDIDATE -> VALIDATING -> DONE
                                                             \\-> RETRYING -> REQUESTING

Tool failures the model can fix (unknown tool, bad arguments, ``ModelRetry``)
are returned to it as error tool returns and counted per tool name. Output
parse and validation failures are sent back as retry prompts and counted
separately. Both counters share ``max_retries``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Protocol, Sequence

from pydantic import BaseModel

from agent_runtime.agents.history import HistoryProcessor, apply_history_processors
from agent_runtime.context import RunContext
from agent_runtime.errors import (
    AgentRunError,
    ApprovalRequired,
    CallDeferred,
    ConfigurationError,
    MaxRetriesExceeded,
    ModelError,
    ModelRequestFailed,
    ModelRetry,
    OutputParseError,
    OutputParseFailed,
    OutputValidationError,
    OutputValidationFailed,
    RunCancelled,
    RunFailed,
    RunTimeout,
    ToolError,
    ToolFailed,
    ToolFatalError,
    ToolNotFound,
    UnexpectedModelBehavior,
)
from agent_runtime.models.agent_schemas import (
    AgentRunResult,
    DeferredToolRequests,
    DeferredToolResults,
    ToolDenied,
)
from agent_runtime.models.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    RetryPromptPart,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from agent_runtime.models.settings import ModelSettings
from agent_runtime.output.mode import OutputMode
from agent_runtime.output.schema import OutputSchema
from agent_runtime.output.validators import ValidatorChain
from agent_runtime.prompts.prompt_layer import render_prompt
from agent_runtime.retries.backoff import RetryStrategy
from agent_runtime.services.model import Model, ModelRequestParameters
from agent_runtime.services.streaming import ResponseAssembler
from agent_runtime.tools.invoker import ToolInvoker
from agent_runtime.tools.returns import ErrorReturn, TextReturn, ToolReturn, to_tool_return
from agent_runtime.toolsets.base import AbstractToolset, ToolsetTool
from agent_runtime.usage import RunUsage, UsageLimits

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    REQUESTING = "requesting"
    RESPONDING = "responding"
    TOOL_DISPATCH = "tool_dispatch"
    OUTPUT_CANDIDATE = "output_candidate"
    VALIDATING = "validating"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"
    PAUSED = "paused"


TERMINAL_STATES = frozenset({RunState.DONE, RunState.FAILED, RunState.PAUSED})


class StepCallback(Protocol):
    def on_step_start(self, step: int, max_steps: int | None) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, name: str, args: dict[str, Any]) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_retry(self, reason: str, attempt: int) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...


class NullCallback:
    def on_step_start(self, step: int, max_steps: int | None) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, name: str, args: dict[str, Any]) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_retry(self, reason: str, attempt: int) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...


@dataclass
class StepResult:
    step: int
    state: RunState
    response: ModelResponse | None
    duration: float


@dataclass
class _CallOutcome:
    call: ToolCallPart
    part: ToolReturnPart | None = None
    succeeded: bool = False
    executed: bool = False
    max_retries: int | None = None
    approval: bool = False
    deferred: bool = False
    skipped: bool = False
    fatal: ToolFatalError | None = None


def output_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


class AgentRun:
    def __init__(
        self,
        *,
        model: Model,
        toolset: AbstractToolset,
        output_schema: OutputSchema,
        ctx: RunContext[Any],
        messages: list[ModelMessage],
        validators: ValidatorChain | None = None,
        usage_limits: UsageLimits | None = None,
        model_settings: ModelSettings | None = None,
        max_retries: int = 1,
        instructions: str | None = None,
        history_processors: Sequence[HistoryProcessor] = (),
        callback: StepCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
        parallel_tool_calls: bool = True,
        max_concurrent_tools: int | None = None,
        tool_retry_strategy: RetryStrategy | None = None,
        stream: bool = False,
        deferred_results: DeferredToolResults | None = None,
        resume_prompt: str | None = None,
    ) -> None:
        self.model = model
        self.toolset = toolset
        self.output_schema = output_schema
        self.ctx = ctx
        self.messages = messages
        self.validators = validators or ValidatorChain()
        self.usage_limits = usage_limits or UsageLimits()
        self.model_settings = model_settings
        self.max_retries = max_retries
        self.instructions = instructions
        self.history_processors = list(history_processors)
        self.callback: StepCallback = callback or NullCallback()
        self.cancel_event = cancel_event
        self.timeout = timeout
        self.parallel_tool_calls = parallel_tool_calls
        self.max_concurrent_tools = max_concurrent_tools
        self.tool_retry_strategy = tool_retry_strategy
        self.stream = stream

        self.state = RunState.REQUESTING
        self.step_count = 0
        self.step_durations: list[float] = []
        self._deadline = ctx.start_time + timeout if timeout is not None else None
        self._tool_retries: dict[str, int] = {}
        self._output_retries = 0
        self._deferred = DeferredToolRequests()
        self._approved_ids: set[str] = set()
        self._pending_resume = deferred_results
        self._resume_prompt = resume_prompt
        self._result: AgentRunResult | None = None

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def usage(self) -> RunUsage:
        return self.ctx.usage

    @property
    def result(self) -> AgentRunResult | None:
        return self._result

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def __aiter__(self) -> AsyncIterator[StepResult]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StepResult]:
        while not self.is_finished:
            yield await self.step()

    async def run_to_completion(self) -> AgentRunResult:
        async for _ in self:
            pass
        if self._result is None:
            raise RuntimeError(f"Run {self.ctx.run_id} stopped in state {self.state.value} without a result")
        return self._result

    async def step(self) -> StepResult:
        if self.is_finished:
            raise RuntimeError(f"Run {self.ctx.run_id} already finished ({self.state.value})")
        self.step_count += 1
        self.ctx.step = self.step_count
        started = time.monotonic()
        try:
            response = await self._step()
        except AgentRunError as e:
            self._fail(e)
            raise
        except Exception as e:
            failure = RunFailed(e)
            self._fail(failure)
            raise failure from e
        finally:
            self.step_durations.append(time.monotonic() - started)
        if self._result is not None:
            self._result.step_durations = list(self.step_durations)
        return StepResult(self.step_count, self.state, response, self.step_durations[-1])

    # ------------------------------------------------------------------
    # Step phases
    # ------------------------------------------------------------------

    async def _step(self) -> ModelResponse | None:
        self._check_boundary()
        self.state = RunState.REQUESTING
        self.callback.on_step_start(self.step_count, self.usage_limits.request_limit)

        tools = await self.toolset.get_tools(self.ctx)
        self._check_output_tool_names(tools)
        if self._pending_resume is not None:
            await self._resume_deferred(tools)
            if self._deferred:
                self._pause()
                return None

        params = self._request_parameters(tools)
        self.usage_limits.check_before_request(self.usage)
        response = await self._request(params)
        self.usage.add_request(response.usage)
        self.messages.append(response)
        self.usage_limits.check_tokens(self.usage)
        logger.debug(
            "Step %d: response with %d part(s), usage %d/%d tokens",
            self.step_count,
            len(response.parts),
            self.usage.input_tokens,
            self.usage.output_tokens,
        )

        self._check_boundary()
        self.state = RunState.RESPONDING
        await self._handle_response(response, tools)
        return response

    def _request_parameters(self, tools: dict[str, ToolsetTool]) -> ModelRequestParameters:
        schema = self.output_schema
        return ModelRequestParameters(
            function_tools=[tool.tool_def for tool in tools.values()],
            output_tools=schema.tool_definitions(),
            output_mode=schema.mode,
            output_schema=schema.json_schema(),
            allow_text_output=schema.allows_text_output,
            instructions=self.instructions,
        )

    async def _request(self, params: ModelRequestParameters) -> ModelResponse:
        messages = await apply_history_processors(self.history_processors, self.messages)
        # the deadline is checked once the response is recorded, never mid-request
        try:
            if self.stream:
                response = await self._stream_response(messages, params)
            else:
                response = await self.model.request(messages, self.model_settings, params)
        except ModelError as e:
            raise ModelRequestFailed(e) from e
        if not isinstance(response, ModelResponse):
            raise UnexpectedModelBehavior(f"Model returned {type(response).__name__}, expected ModelResponse")
        return response

    async def _stream_response(self, messages: list[ModelMessage], params: ModelRequestParameters) -> ModelResponse:
        assembler = ResponseAssembler(model_name=self.model.name)
        async for event in self.model.request_stream(messages, self.model_settings, params):
            assembler.feed(event)
        return assembler.build()

    async def _handle_response(self, response: ModelResponse, tools: dict[str, ToolsetTool]) -> None:
        output_names = self.output_schema.tool_names()
        texts: list[str] = []
        tool_calls: list[ToolCallPart] = []
        output_calls: list[ToolCallPart] = []
        for part in response.parts:
            if isinstance(part, TextPart):
                if part.content.strip():
                    texts.append(part.content)
            elif isinstance(part, ThinkingPart):
                self.callback.on_thinking(part.content)
            elif isinstance(part, ToolCallPart):
                if part.tool_name in output_names:
                    output_calls.append(part)
                else:
                    tool_calls.append(part)
            else:
                raise UnexpectedModelBehavior(f"Unexpected response part: {part!r}", body=response)

        text = "\n\n".join(texts)
        if tool_calls:
            if text:
                self.callback.on_thinking(text)
            await self._dispatch(tool_calls, output_calls, tools)
            return

        self.state = RunState.OUTPUT_CANDIDATE
        await self._handle_output_candidate(text, output_calls)

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        calls: list[ToolCallPart],
        postponed_output_calls: list[ToolCallPart],
        tools: dict[str, ToolsetTool],
    ) -> None:
        self._check_boundary()
        self.state = RunState.TOOL_DISPATCH
        invoker = ToolInvoker(self.toolset, tools, self.tool_retry_strategy)
        logger.info("Step %d: dispatching %d tool call(s)", self.step_count, len(calls))

        if self.parallel_tool_calls and len(calls) > 1:
            semaphore = asyncio.Semaphore(self.max_concurrent_tools) if self.max_concurrent_tools else None
            outcomes = list(await asyncio.gather(*(self._run_call(call, invoker, semaphore) for call in calls)))
        else:
            outcomes = []
            for call in calls:
                if self._cancelled():
                    outcomes.append(_CallOutcome(call, skipped=True))
                    continue
                outcomes.append(await self._execute_call(call, invoker))

        parts, failure = self._process_outcomes(outcomes)
        for call in postponed_output_calls:
            parts.append(
                ToolReturnPart(
                    tool_name=call.tool_name,
                    content=TextReturn(text=render_prompt("output_not_processed", tool_name=call.tool_name)),
                    tool_call_id=call.tool_call_id,
                )
            )
        self.messages.append(ModelRequest(parts=parts))
        self.usage.add_tool_calls(sum(1 for outcome in outcomes if outcome.executed))

        if failure is not None:
            raise failure
        self.usage_limits.check_tool_calls(self.usage)
        if self._deferred:
            self._pause()
            return
        self._check_boundary()
        self.state = RunState.REQUESTING

    async def _run_call(
        self,
        call: ToolCallPart,
        invoker: ToolInvoker,
        semaphore: asyncio.Semaphore | None,
    ) -> _CallOutcome:
        if semaphore is None:
            return await self._execute_call(call, invoker)
        async with semaphore:
            if self._cancelled():
                return _CallOutcome(call, skipped=True)
            return await self._execute_call(call, invoker)

    async def _execute_call(self, call: ToolCallPart, invoker: ToolInvoker) -> _CallOutcome:
        name = call.tool_name
        try:
            args = call.args_as_dict()
        except ValueError as e:
            self.callback.on_tool_call(name, {})
            return self._error_outcome(call, f"Invalid JSON arguments for tool '{name}': {e}")
        self.callback.on_tool_call(name, args)

        tool = invoker.resolve(name)
        if tool is None:
            return self._error_outcome(call, ToolNotFound(name, invoker.available).message)

        ctx = self.ctx.for_tool(
            name,
            call.tool_call_id,
            retry_count=self._tool_retries.get(name, 0),
            approved=call.tool_call_id in self._approved_ids,
        )
        try:
            content = await invoker.invoke(tool, args, ctx)
        except ApprovalRequired:
            return _CallOutcome(call, approval=True)
        except CallDeferred:
            return _CallOutcome(call, deferred=True)
        except ToolFatalError as e:
            return _CallOutcome(call, fatal=e, executed=True)
        except ModelRetry as e:
            return self._error_outcome(call, e.message, tool.max_retries, executed=True)
        except ToolError as e:
            return self._error_outcome(call, e.message, tool.max_retries, executed=not isinstance(e, ToolNotFound))
        part = ToolReturnPart(tool_name=name, content=content, tool_call_id=call.tool_call_id)
        return _CallOutcome(call, part=part, succeeded=True, executed=True, max_retries=tool.max_retries)

    @staticmethod
    def _error_outcome(
        call: ToolCallPart,
        message: str,
        max_retries: int | None = None,
        executed: bool = False,
    ) -> _CallOutcome:
        part = ToolReturnPart(
            tool_name=call.tool_name,
            content=ErrorReturn(message=message),
            tool_call_id=call.tool_call_id,
        )
        return _CallOutcome(call, part=part, executed=executed, max_retries=max_retries)

    def _process_outcomes(self, outcomes: list[_CallOutcome]) -> tuple[list[ToolReturnPart], AgentRunError | None]:
        """Fold outcomes in call order into return parts and retry counters."""
        parts: list[ToolReturnPart] = []
        failure: AgentRunError | None = None
        for outcome in outcomes:
            name = outcome.call.tool_name
            if outcome.skipped:
                continue
            if outcome.approval:
                self._deferred.approvals.append(outcome.call)
                continue
            if outcome.deferred:
                self._deferred.calls.append(outcome.call)
                continue
            if outcome.fatal is not None:
                if failure is None:
                    failure = ToolFailed(name, outcome.fatal.message)
                    failure.__cause__ = outcome.fatal
                continue

            assert outcome.part is not None
            parts.append(outcome.part)
            self.callback.on_tool_result(name, outcome.part.model_response_str())
            if outcome.succeeded:
                self._tool_retries.pop(name, None)
                continue

            count = self._tool_retries.get(name, 0) + 1
            self._tool_retries[name] = count
            limit = outcome.max_retries if outcome.max_retries is not None else self.max_retries
            self.callback.on_retry(outcome.part.model_response_str(), count)
            logger.warning("Tool '%s' failed (retry %d/%d): %s", name, count, limit, outcome.part.model_response_str())
            if count > limit and failure is None:
                failure = MaxRetriesExceeded(f"Tool '{name}' exceeded max retries count of {limit}")
        return parts, failure

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def _handle_output_candidate(self, text: str, output_calls: list[ToolCallPart]) -> None:
        schema = self.output_schema
        if schema.mode is OutputMode.TOOL:
            tool_name = next(iter(sorted(schema.tool_names())), "final_result")
            if output_calls:
                call, extra = output_calls[0], output_calls[1:]
                await self._validate(lambda: schema.parse_tool_call(call.tool_name, call.args), call, extra)
            elif text:
                await self._output_retry(render_prompt("plain_text_retry", tool_name=tool_name))
            else:
                await self._output_retry(render_prompt("empty_response_retry", expected=f"a call to `{tool_name}`"))
            return

        if not text:
            await self._output_retry(render_prompt("empty_response_retry", expected="a final answer"))
            return
        if schema.mode is OutputMode.NATIVE:
            await self._validate(lambda: schema.parse_native(text))
        else:
            await self._validate(lambda: schema.parse_text(text))

    async def _validate(
        self,
        parse: Callable[[], Any],
        call: ToolCallPart | None = None,
        extra: Sequence[ToolCallPart] = (),
    ) -> None:
        self._check_boundary()
        self.state = RunState.VALIDATING
        try:
            value = parse()
        except OutputParseError as e:
            message = render_prompt("output_parse_retry", error=str(e))
            await self._output_retry(message, call, extra, cause=OutputParseFailed(message))
            return

        ctx = dataclasses.replace(self.ctx, retry_count=self._output_retries)
        try:
            value = await self.validators.validate(value, ctx)
        except ModelRetry as e:
            await self._output_retry(e.message, call, extra, cause=OutputValidationFailed(e.message))
            return
        except OutputValidationError as e:
            if e.retry:
                await self._output_retry(e.message, call, extra, cause=OutputValidationFailed(e.message))
                return
            raise OutputValidationFailed(e.message) from e
        self._finish(value, call, extra)

    async def _output_retry(
        self,
        message: str,
        call: ToolCallPart | None = None,
        extra: Sequence[ToolCallPart] = (),
        cause: AgentRunError | None = None,
    ) -> None:
        self.state = RunState.RETRYING
        self._output_retries += 1
        parts: list[Any] = [
            RetryPromptPart(
                content=message,
                tool_name=call.tool_name if call else None,
                tool_call_id=call.tool_call_id if call else None,
            )
        ]
        parts.extend(self._extra_output_returns(extra, "output_not_processed"))
        self.messages.append(ModelRequest(parts=parts))
        self.callback.on_retry(message, self._output_retries)
        logger.warning("Output rejected (retry %d/%d): %s", self._output_retries, self.max_retries, message)
        if self._output_retries > self.max_retries:
            raise MaxRetriesExceeded(
                f"Exceeded maximum retries ({self.max_retries}) for output validation: {message}"
            ) from cause
        self.state = RunState.REQUESTING

    def _extra_output_returns(self, extra: Sequence[ToolCallPart], template: str) -> list[ToolReturnPart]:
        return [
            ToolReturnPart(
                tool_name=call.tool_name,
                content=TextReturn(text=render_prompt(template, tool_name=call.tool_name)),
                tool_call_id=call.tool_call_id,
            )
            for call in extra
        ]

    def _finish(self, value: Any, call: ToolCallPart | None, extra: Sequence[ToolCallPart]) -> None:
        self._output_retries = 0
        if call is not None:
            parts = [
                ToolReturnPart(
                    tool_name=call.tool_name,
                    content=TextReturn(text=render_prompt("final_result_processed")),
                    tool_call_id=call.tool_call_id,
                ),
                *self._extra_output_returns(extra, "output_already_processed"),
            ]
            self.messages.append(ModelRequest(parts=parts))
        self.state = RunState.DONE
        self._result = self._build_result(value, "done")
        logger.info(
            "Run %s finished after %d step(s), %d request(s), %d tool call(s)",
            self.ctx.run_id,
            self.step_count,
            self.usage.requests,
            self.usage.tool_calls,
        )
        self.callback.on_finish(output_text(value), self.step_count, self.usage.tool_calls)

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def _pause(self) -> None:
        self.state = RunState.PAUSED
        self._result = self._build_result(None, "paused", deferred=self._deferred)
        logger.info(
            "Run %s paused: %d approval(s), %d external call(s) pending",
            self.ctx.run_id,
            len(self._deferred.approvals),
            len(self._deferred.calls),
        )

    async def _resume_deferred(self, tools: dict[str, ToolsetTool]) -> None:
        results = self._pending_resume
        assert results is not None
        self._pending_resume = None
        if (
            len(self.messages) < 2
            or not isinstance(self.messages[-1], ModelRequest)
            or not isinstance(self.messages[-2], ModelResponse)
        ):
            raise ConfigurationError("Deferred tool results require the message history of a paused run")
        trailing: ModelRequest = self.messages[-1]
        response: ModelResponse = self.messages[-2]

        answered = {
            part.tool_call_id: part
            for part in trailing.parts
            if isinstance(part, (ToolReturnPart, RetryPromptPart)) and part.tool_call_id
        }
        pending = [call for call in response.tool_calls if call.tool_call_id not in answered]
        self._approved_ids = {cid for cid, approval in results.approvals.items() if approval is True}

        resolved: dict[str, Any] = {}
        to_run: list[ToolCallPart] = []
        for call in pending:
            cid = call.tool_call_id
            if cid in results.calls:
                resolved[cid] = ToolReturnPart(
                    tool_name=call.tool_name,
                    content=_deferred_return(results.calls[cid]),
                    tool_call_id=cid,
                )
            elif cid in results.approvals:
                approval = results.approvals[cid]
                if approval is True:
                    to_run.append(call)
                else:
                    denied = approval if isinstance(approval, ToolDenied) else ToolDenied()
                    resolved[cid] = ToolReturnPart(
                        tool_name=call.tool_name,
                        content=ErrorReturn(message=denied.message, retryable=False),
                        tool_call_id=cid,
                    )
            else:
                raise ConfigurationError(f"No deferred result supplied for tool call {cid!r} ({call.tool_name})")

        failure: AgentRunError | None = None
        if to_run:
            self.state = RunState.TOOL_DISPATCH
            invoker = ToolInvoker(self.toolset, tools, self.tool_retry_strategy)
            outcomes = [await self._execute_call(call, invoker) for call in to_run]
            parts, failure = self._process_outcomes(outcomes)
            resolved.update({part.tool_call_id: part for part in parts})
            self.usage.add_tool_calls(sum(1 for outcome in outcomes if outcome.executed))

        merged: list[Any] = []
        call_ids = [call.tool_call_id for call in response.tool_calls]
        for cid in call_ids:
            if cid in answered:
                merged.append(answered[cid])
            elif cid in resolved:
                merged.append(resolved[cid])
        merged.extend(
            part
            for part in trailing.parts
            if not (isinstance(part, (ToolReturnPart, RetryPromptPart)) and part.tool_call_id in call_ids)
        )
        if self._resume_prompt:
            merged.append(UserPromptPart(content=self._resume_prompt))
        self.messages[-1] = ModelRequest(parts=merged)
        if failure is not None:
            raise failure
        self.state = RunState.REQUESTING

    # ------------------------------------------------------------------
    # Limits and termination
    # ------------------------------------------------------------------

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _check_boundary(self) -> None:
        if self._cancelled():
            raise RunCancelled()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise RunTimeout(self.timeout or 0)
        self.usage_limits.check_time(self.ctx.elapsed_seconds)

    def _check_output_tool_names(self, tools: dict[str, ToolsetTool]) -> None:
        clashes = self.output_schema.tool_names() & set(tools)
        if clashes:
            raise ConfigurationError(
                f"Tool name(s) {', '.join(sorted(clashes))} conflict with the output tool; rename the tool"
            )

    def _fail(self, error: AgentRunError) -> None:
        if error.phase is None:
            error.phase = self.state.value
        self.state = RunState.FAILED
        error.usage = self.usage.model_copy()
        error.messages = list(self.messages)
        logger.error("Run %s failed during %s: %s", self.ctx.run_id, error.phase, error.message)

    def _build_result(
        self,
        output: Any,
        status: str,
        deferred: DeferredToolRequests | None = None,
    ) -> AgentRunResult:
        responses = [m for m in self.messages if isinstance(m, ModelResponse)]
        return AgentRunResult(
            output=output,
            messages=list(self.messages),
            usage=self.usage.model_copy(),
            run_id=self.ctx.run_id,
            status=status,
            finish_reason=responses[-1].finish_reason if responses else None,
            steps=self.step_count,
            step_durations=list(self.step_durations),
            deferred=deferred,
            metadata=dict(self.ctx.metadata),
        )


def _deferred_return(value: Any) -> ToolReturn:
    if isinstance(value, ModelRetry):
        return ErrorReturn(message=value.message)
    if isinstance(value, ToolDenied):
        return ErrorReturn(message=value.message, retryable=False)
    return to_tool_return(value)
