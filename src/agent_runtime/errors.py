"""Exception taxonomy for agent runs, models and tools."""

from __future__ import annotations

from typing import Any


# ---------------------------------------------------------------------------
# Model (transport) errors, raised by Model implementations
# ---------------------------------------------------------------------------


class ModelError(Exception):
    """Base class for errors surfaced by a model collaborator."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ModelHTTPError(ModelError):
    def __init__(self, status_code: int, message: str = "", body: Any = None) -> None:
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.retryable = status_code == 429 or status_code >= 500


class RateLimited(ModelError):
    retryable = True

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ModelTimeout(ModelError):
    retryable = True


class ModelConnectionError(ModelError):
    retryable = True


class ContextLengthExceeded(ModelError):
    """The request does not fit in the model's context window."""


class ModelAPIError(ModelError):
    """Any other non-retryable provider failure."""


# ---------------------------------------------------------------------------
# Tool errors, raised by tools, toolsets and the tool invoker
# ---------------------------------------------------------------------------


class ModelRetry(Exception):
    """Raised by a tool or output validator to ask the model to try again.

    The message is sent back to the model verbatim.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ToolError(Exception):
    retryable: bool = False

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message


class ToolNotFound(ToolError):
    def __init__(self, tool_name: str, available: list[str] | None = None) -> None:
        available = sorted(available or [])
        message = f"Unknown tool name: '{tool_name}'."
        if available:
            message += " Available tools: " + ", ".join(available)
        else:
            message += " No tools available."
        super().__init__(tool_name, message)
        self.available = available


class ToolArgumentsInvalid(ToolError):
    pass


class ToolExecutionFailed(ToolError):
    def __init__(self, tool_name: str, message: str, transient: bool = False) -> None:
        super().__init__(tool_name, message)
        self.transient = transient
        self.retryable = transient


class ToolTimeout(ToolError):
    retryable = True

    def __init__(self, tool_name: str, seconds: float) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' timed out after {seconds}s")
        self.seconds = seconds


class ToolFatalError(ToolError):
    """A tool failure the run cannot recover from."""


class ApprovalRequired(ToolError):
    """Pause signal: the call must be approved by the caller before it runs."""

    def __init__(self, tool_name: str, args: dict[str, Any] | None = None, metadata: Any = None) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' requires approval")
        self.tool_args = args or {}
        self.metadata = metadata


class CallDeferred(ToolError):
    """Pause signal: the call is executed outside the run by the caller."""

    def __init__(self, tool_name: str, args: dict[str, Any] | None = None, metadata: Any = None) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' call deferred")
        self.tool_args = args or {}
        self.metadata = metadata


# ---------------------------------------------------------------------------
# Output errors, raised by output schemas and validators
# ---------------------------------------------------------------------------


class OutputParseError(Exception):
    """The model's output candidate could not be parsed into the output type."""


class NoJsonFound(OutputParseError):
    def __init__(self, text: str) -> None:
        preview = text if len(text) <= 80 else text[:80] + "..."
        super().__init__(f"No valid JSON found in response: {preview!r}")


class OutputValidationError(Exception):
    """Raised by an output validator.

    With ``retry=True`` the message is sent back to the model; otherwise the
    run fails with :class:`OutputValidationFailed`.
    """

    def __init__(self, message: str, retry: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retry = retry


# ---------------------------------------------------------------------------
# Run errors, raised to the caller of Agent.run
# ---------------------------------------------------------------------------


class AgentRunError(Exception):
    """Base class for every failure that terminates a run.

    The loop fills in ``phase``, ``usage`` and ``messages`` before the error
    reaches the caller.
    """

    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.phase: str | None = None
        self.usage: Any = None
        self.messages: list[Any] = []

    def is_retryable(self) -> bool:
        return self.retryable

    def __str__(self) -> str:
        if self.phase:
            return f"{self.message} (phase: {self.phase})"
        return self.message


class ConfigurationError(AgentRunError):
    pass


class UnexpectedModelBehavior(AgentRunError):
    def __init__(self, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class ModelRequestFailed(AgentRunError):
    def __init__(self, error: ModelError) -> None:
        super().__init__(f"Model request failed: {error}")
        self.error = error

    def is_retryable(self) -> bool:
        return self.error.retryable


class ToolFailed(AgentRunError):
    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class OutputValidationFailed(AgentRunError):
    retryable = True


class OutputParseFailed(AgentRunError):
    retryable = True


class MaxRetriesExceeded(AgentRunError):
    pass


class RunFailed(AgentRunError):
    """An exception outside the error taxonomy escaped a step.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, error: Exception) -> None:
        super().__init__(f"Unexpected error: {type(error).__name__}: {error}")
        self.error = error


class RunCancelled(AgentRunError):
    def __init__(self, message: str = "Run was cancelled") -> None:
        super().__init__(message)


class RunTimeout(AgentRunError):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"Run timed out after {seconds}s")
        self.seconds = seconds


class UsageLimitExceeded(AgentRunError):
    """A configured usage limit was hit. Never retried."""

    kind = "usage"

    def __init__(self, used: float, limit: float) -> None:
        super().__init__(self._format(used, limit))
        self.used = used
        self.limit = limit

    def _format(self, used: float, limit: float) -> str:
        return f"Usage limit exceeded: {used} > {limit}"


class RequestLimitExceeded(UsageLimitExceeded):
    kind = "requests"

    def _format(self, used: float, limit: float) -> str:
        return f"Request count limit exceeded: {used} > {limit}"


class InputTokensLimitExceeded(UsageLimitExceeded):
    kind = "input_tokens"

    def _format(self, used: float, limit: float) -> str:
        return f"Input token limit exceeded: {used} > {limit}"


class OutputTokensLimitExceeded(UsageLimitExceeded):
    kind = "output_tokens"

    def _format(self, used: float, limit: float) -> str:
        return f"Output token limit exceeded: {used} > {limit}"


class TotalTokensLimitExceeded(UsageLimitExceeded):
    kind = "total_tokens"

    def _format(self, used: float, limit: float) -> str:
        return f"Total token limit exceeded: {used} > {limit}"


class ToolCallsLimitExceeded(UsageLimitExceeded):
    kind = "tool_calls"

    def _format(self, used: float, limit: float) -> str:
        return f"Tool call limit exceeded: {used} > {limit}"


class TimeLimitExceeded(UsageLimitExceeded):
    kind = "time"

    def _format(self, used: float, limit: float) -> str:
        return f"Time limit exceeded: {used:.2f}s > {limit}s"
