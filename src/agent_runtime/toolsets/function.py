"""Toolsets backed by Python functions."""

from __future__ import annotations

import threading
from typing import Any, Callable, Sequence

from agent_runtime.context import RunContext
from agent_runtime.tools import Tool, ToolRegistry
from agent_runtime.tools.returns import ToolReturn, to_tool_return
from agent_runtime.toolsets.base import AbstractToolset, ToolsetTool


class FunctionToolset(AbstractToolset):
    """Exposes a :class:`ToolRegistry` of function tools.

    Functions can be added directly, or with the ``tool`` / ``tool_plain``
    decorators::

        toolset = FunctionToolset()

        @toolset.tool
        def lookup(ctx: RunContext[Db], key: str) -> str:
            return ctx.deps.get(key)
    """

    def __init__(
        self,
        tools: Sequence[Tool | Callable[..., Any]] = (),
        *,
        id: str | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._id = id
        self.max_retries = max_retries
        self.registry = ToolRegistry()
        for tool in tools:
            self.add_tool(tool if isinstance(tool, Tool) else Tool.from_function(tool))

    @property
    def id(self) -> str | None:
        return self._id

    def add_tool(self, tool: Tool) -> None:
        self.registry.register(tool)

    def add_function(self, function: Callable[..., Any], **kwargs: Any) -> Tool:
        tool = Tool.from_function(function, **kwargs)
        self.add_tool(tool)
        return tool

    def tool(self, function: Callable[..., Any] | None = None, **kwargs: Any) -> Any:
        """Register a tool whose first parameter is the run context."""
        return self._decorator(function, takes_ctx=True, **kwargs)

    def tool_plain(self, function: Callable[..., Any] | None = None, **kwargs: Any) -> Any:
        """Register a tool that does not take the run context."""
        return self._decorator(function, takes_ctx=False, **kwargs)

    def _decorator(self, function: Callable[..., Any] | None, **kwargs: Any) -> Any:
        def register(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add_function(fn, **kwargs)
            return fn

        if function is None:
            return register
        return register(function)

    def _tools_snapshot(self) -> list[Tool]:
        return self.registry.list_all()

    def _toolset_tool(self, tool: Tool) -> ToolsetTool:
        max_retries = tool.max_retries if tool.max_retries is not None else self.max_retries
        return ToolsetTool(
            tool_def=tool.definition(),
            toolset=self,
            max_retries=max_retries,
            timeout=tool.timeout,
            function_tool=tool,
        )

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]:
        return {tool.name: self._toolset_tool(tool) for tool in self._tools_snapshot()}

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn:
        if tool.function_tool is not None:
            return to_tool_return(await tool.function_tool.call(tool_args, ctx))
        return await self.registry.execute(name, tool_args, ctx)


class DynamicToolset(FunctionToolset):
    """A function toolset that may change while a run is in progress.

    Registration is guarded by a lock so each ``get_tools`` call sees a
    consistent snapshot. Calls dispatched from a snapshot keep running the
    tool they were resolved to, even if it is unregistered meanwhile.
    """

    def __init__(self, tools: Sequence[Tool | Callable[..., Any]] = (), **kwargs: Any) -> None:
        self._lock = threading.Lock()
        super().__init__(tools, **kwargs)

    def add_tool(self, tool: Tool) -> None:
        with self._lock:
            self.registry.register(tool)

    def remove_tool(self, name: str) -> Tool | None:
        with self._lock:
            return self.registry.unregister(name)

    def _tools_snapshot(self) -> list[Tool]:
        with self._lock:
            return self.registry.list_all()
