"""Resolves and executes tool calls against one step's toolset snapshot."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from agent_runtime.context import RunContext
from agent_runtime.errors import ModelRetry, ToolError, ToolExecutionFailed, ToolTimeout
from agent_runtime.retries.backoff import NoRetry, RetryStrategy
from agent_runtime.retries.transport import retry_async
from agent_runtime.tools.returns import ToolReturn
from agent_runtime.toolsets.base import AbstractToolset, ToolsetTool

logger = logging.getLogger(__name__)


class ToolInvoker:
    """Runs tool calls for a single step.

    ``tools`` is the snapshot returned by the toolset's ``get_tools`` at the
    start of the step; resolution never consults the live toolset, so tools
    registered or removed mid-step do not affect calls already dispatched.

    Transient failures (a ``ToolExecutionFailed`` marked transient, or a
    timeout) are retried here according to ``retry_strategy`` and only the
    final outcome is reported.
    """

    def __init__(
        self,
        toolset: AbstractToolset,
        tools: dict[str, ToolsetTool],
        retry_strategy: RetryStrategy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.toolset = toolset
        self.tools = tools
        self.retry_strategy = retry_strategy or NoRetry()
        self._sleep = sleep

    @property
    def available(self) -> list[str]:
        return sorted(self.tools)

    def resolve(self, name: str) -> ToolsetTool | None:
        return self.tools.get(name)

    async def invoke(self, tool: ToolsetTool, args: dict[str, Any], ctx: RunContext[Any]) -> ToolReturn:
        return await retry_async(self.retry_strategy, lambda: self._invoke_once(tool, args, ctx), sleep=self._sleep)

    async def _invoke_once(self, tool: ToolsetTool, args: dict[str, Any], ctx: RunContext[Any]) -> ToolReturn:
        call = self.toolset.call_tool(tool.name, args, ctx, tool)
        try:
            if tool.timeout is not None:
                return await asyncio.wait_for(call, timeout=tool.timeout)
            return await call
        except asyncio.TimeoutError as e:
            raise ToolTimeout(tool.name, tool.timeout or 0) from e
        except (ToolError, ModelRetry):
            raise
        except Exception as e:
            logger.error("Tool '%s' failed: %s", tool.name, e)
            raise ToolExecutionFailed(tool.name, f"Error executing '{tool.name}': {type(e).__name__}: {e}") from e
