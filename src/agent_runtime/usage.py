"""Token, request and tool-call accounting for a run."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel

from agent_runtime.errors import (
    InputTokensLimitExceeded,
    OutputTokensLimitExceeded,
    RequestLimitExceeded,
    TimeLimitExceeded,
    ToolCallsLimitExceeded,
    TotalTokensLimitExceeded,
)


class RequestUsage(BaseModel):
    """Usage reported by the model for a single request."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int | None = None
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.input_tokens + self.output_tokens


class RunUsage(BaseModel):
    """Cumulative usage of a run. Counters only ever grow."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    tool_calls: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    def add_request(self, usage: RequestUsage | None = None) -> None:
        self.requests += 1
        if usage is None:
            return
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.total_tokens += usage.total
        self.cache_write_tokens += usage.cache_write_tokens
        self.cache_read_tokens += usage.cache_read_tokens

    def add_tool_calls(self, count: int = 1) -> None:
        self.tool_calls += count

    def __add__(self, other: RunUsage) -> RunUsage:
        return RunUsage(
            requests=self.requests + other.requests,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            tool_calls=self.tool_calls + other.tool_calls,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )


@dataclass
class UsageLimits:
    """Optional ceilings for a run. ``None`` means unlimited."""

    request_limit: int | None = 50
    input_tokens_limit: int | None = None
    output_tokens_limit: int | None = None
    total_tokens_limit: int | None = None
    tool_calls_limit: int | None = None
    time_limit: float | None = None

    def has_token_limits(self) -> bool:
        return any(
            limit is not None
            for limit in (self.input_tokens_limit, self.output_tokens_limit, self.total_tokens_limit)
        )

    def check_before_request(self, usage: RunUsage) -> None:
        """Fail if making one more request would exceed ``request_limit``."""
        if self.request_limit is not None and usage.requests + 1 > self.request_limit:
            raise RequestLimitExceeded(usage.requests + 1, self.request_limit)

    def check_tokens(self, usage: RunUsage) -> None:
        if self.input_tokens_limit is not None and usage.input_tokens > self.input_tokens_limit:
            raise InputTokensLimitExceeded(usage.input_tokens, self.input_tokens_limit)
        if self.output_tokens_limit is not None and usage.output_tokens > self.output_tokens_limit:
            raise OutputTokensLimitExceeded(usage.output_tokens, self.output_tokens_limit)
        if self.total_tokens_limit is not None and usage.total_tokens > self.total_tokens_limit:
            raise TotalTokensLimitExceeded(usage.total_tokens, self.total_tokens_limit)

    def check_tool_calls(self, usage: RunUsage) -> None:
        if self.tool_calls_limit is not None and usage.tool_calls > self.tool_calls_limit:
            raise ToolCallsLimitExceeded(usage.tool_calls, self.tool_calls_limit)

    def check_time(self, elapsed: float) -> None:
        if self.time_limit is not None and elapsed > self.time_limit:
            raise TimeLimitExceeded(elapsed, self.time_limit)
