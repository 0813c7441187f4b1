"""Transport-level retries driven by a RetryStrategy, executed with tenacity.

These retries happen inside a single model request or tool call and are
invisible to the run loop, which only ever sees the final outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, before_sleep_log, stop_never

from agent_runtime.models.messages import ModelMessage, ModelResponse
from agent_runtime.models.settings import ModelSettings
from agent_runtime.retries.backoff import RetryStrategy
from agent_runtime.services.model import Model, ModelProfile, ModelRequestParameters
from agent_runtime.services.streaming import ModelResponseEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _StrategyHooks:
    """Adapts a RetryStrategy to tenacity's ``retry`` and ``wait`` hooks.

    tenacity calls ``retry`` then ``wait`` for the same failed attempt, so the
    delay decided in ``retry`` is the one handed back by ``wait``.
    """

    def __init__(self, strategy: RetryStrategy) -> None:
        self.strategy = strategy
        self._delay = 0.0

    def retry(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        delay = self.strategy.should_retry(outcome.exception(), retry_state.attempt_number)
        if delay is None:
            return False
        self._delay = delay
        return True

    def wait(self, retry_state: RetryCallState) -> float:
        return self._delay


async def retry_async(
    strategy: RetryStrategy,
    fn: Callable[[], Awaitable[T]],
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` until it succeeds or ``strategy`` gives up.

    When the strategy gives up the last error is re-raised unchanged.
    """
    hooks = _StrategyHooks(strategy)
    retrying = AsyncRetrying(
        retry=hooks.retry,
        wait=hooks.wait,
        stop=stop_never,
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return await retrying(fn)


class RetryingModel(Model):
    """Wraps a model so rate limits, 5xx and connection errors are retried in place."""

    def __init__(
        self,
        wrapped: Model,
        strategy: RetryStrategy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.wrapped = wrapped
        self.strategy = strategy
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.wrapped.name

    @property
    def system(self) -> str:
        return self.wrapped.system

    @property
    def profile(self) -> ModelProfile:
        return self.wrapped.profile

    async def request(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> ModelResponse:
        return await retry_async(
            self.strategy,
            lambda: self.wrapped.request(messages, settings, params),
            sleep=self._sleep,
        )

    async def request_stream(
        self,
        messages: list[ModelMessage],
        settings: ModelSettings | None,
        params: ModelRequestParameters,
    ) -> AsyncIterator[ModelResponseEvent]:
        # Only the opening of the stream is retried; a stream that fails
        # midway has already yielded events and propagates.
        async def _open():
            stream = self.wrapped.request_stream(messages, settings, params)
            first = await stream.__anext__()
            return stream, first

        try:
            stream, first = await retry_async(self.strategy, _open, sleep=self._sleep)
        except StopAsyncIteration:
            return
        yield first
        async for event in stream:
            yield event
