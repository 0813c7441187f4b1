"""Tests for usage accounting and limits."""

from __future__ import annotations

import pytest

from agent_runtime.errors import (
    AgentRunError,
    InputTokensLimitExceeded,
    OutputTokensLimitExceeded,
    RequestLimitExceeded,
    TimeLimitExceeded,
    ToolCallsLimitExceeded,
    TotalTokensLimitExceeded,
    UsageLimitExceeded,
)
from agent_runtime.usage import RequestUsage, RunUsage, UsageLimits


class TestRunUsage:
    def test_add_request_counts_request_and_tokens(self):
        usage = RunUsage()
        usage.add_request(RequestUsage(input_tokens=10, output_tokens=5))
        usage.add_request(RequestUsage(input_tokens=3, output_tokens=2, cache_read_tokens=1))
        assert usage.requests == 2
        assert usage.input_tokens == 13
        assert usage.output_tokens == 7
        assert usage.total_tokens == 20
        assert usage.cache_read_tokens == 1

    def test_reported_total_wins_over_sum(self):
        usage = RunUsage()
        usage.add_request(RequestUsage(input_tokens=10, output_tokens=5, total_tokens=40))
        assert usage.total_tokens == 40

    def test_add_request_without_usage(self):
        usage = RunUsage()
        usage.add_request()
        assert usage.requests == 1
        assert usage.total_tokens == 0

    def test_add_tool_calls(self):
        usage = RunUsage()
        usage.add_tool_calls(3)
        usage.add_tool_calls()
        assert usage.tool_calls == 4

    def test_sum_of_usages(self):
        total = RunUsage(requests=1, input_tokens=5) + RunUsage(requests=2, tool_calls=1)
        assert total.requests == 3
        assert total.input_tokens == 5
        assert total.tool_calls == 1


class TestUsageLimits:
    def test_request_limit_checked_before_request(self):
        limits = UsageLimits(request_limit=2)
        limits.check_before_request(RunUsage(requests=0))
        limits.check_before_request(RunUsage(requests=1))
        with pytest.raises(RequestLimitExceeded) as exc_info:
            limits.check_before_request(RunUsage(requests=2))
        assert exc_info.value.used == 3
        assert exc_info.value.limit == 2
        assert str(exc_info.value) == "Request count limit exceeded: 3 > 2"

    def test_unlimited_requests(self):
        UsageLimits(request_limit=None).check_before_request(RunUsage(requests=10_000))

    @pytest.mark.parametrize(
        ("limits", "usage", "error"),
        [
            (UsageLimits(input_tokens_limit=10), RunUsage(input_tokens=11), InputTokensLimitExceeded),
            (UsageLimits(output_tokens_limit=10), RunUsage(output_tokens=11), OutputTokensLimitExceeded),
            (UsageLimits(total_tokens_limit=10), RunUsage(total_tokens=11), TotalTokensLimitExceeded),
        ],
    )
    def test_token_limits(self, limits, usage, error):
        with pytest.raises(error):
            limits.check_tokens(usage)

    def test_token_limit_is_inclusive(self):
        UsageLimits(total_tokens_limit=10).check_tokens(RunUsage(total_tokens=10))

    def test_tool_call_limit(self):
        limits = UsageLimits(tool_calls_limit=2)
        limits.check_tool_calls(RunUsage(tool_calls=2))
        with pytest.raises(ToolCallsLimitExceeded):
            limits.check_tool_calls(RunUsage(tool_calls=3))

    def test_time_limit(self):
        limits = UsageLimits(time_limit=1.0)
        limits.check_time(0.5)
        with pytest.raises(TimeLimitExceeded) as exc_info:
            limits.check_time(1.5)
        assert "1.50s > 1.0s" in str(exc_info.value)

    def test_has_token_limits(self):
        assert not UsageLimits().has_token_limits()
        assert UsageLimits(output_tokens_limit=5).has_token_limits()

    def test_limit_errors_are_never_retryable(self):
        error = TotalTokensLimitExceeded(11, 10)
        assert isinstance(error, UsageLimitExceeded)
        assert isinstance(error, AgentRunError)
        assert not error.is_retryable()
