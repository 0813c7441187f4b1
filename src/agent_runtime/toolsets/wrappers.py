"""Toolsets that decorate another toolset."""

from __future__ import annotations

from typing import Any, Callable

from agent_runtime.context import RunContext
from agent_runtime.errors import ApprovalRequired, CallDeferred
from agent_runtime.tools import ToolDefinition
from agent_runtime.tools.returns import ToolReturn
from agent_runtime.toolsets.base import AbstractToolset, ToolsetTool


class WrapperToolset(AbstractToolset):
    """Delegates to ``wrapped``; subclasses override the hooks they need."""

    def __init__(self, wrapped: AbstractToolset) -> None:
        self.wrapped = wrapped

    @property
    def id(self) -> str | None:
        return self.wrapped.id

    @property
    def label(self) -> str:
        return f"{type(self).__name__}({self.wrapped.label})"

    async def __aenter__(self) -> WrapperToolset:
        await self.wrapped.__aenter__()
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        return await self.wrapped.__aexit__(*exc_info)

    def _visible_name(self, name: str) -> str | None:
        """Name under which an inner tool is exposed; ``None`` hides it."""
        return name

    def _include(self, ctx: RunContext[Any], tool_def: ToolDefinition) -> bool:
        return True

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]:
        tools: dict[str, ToolsetTool] = {}
        for inner_name, inner in (await self.wrapped.get_tools(ctx)).items():
            name = self._visible_name(inner_name)
            if name is None or not self._include(ctx, inner.tool_def):
                continue
            tool_def = inner.tool_def if name == inner_name else inner.tool_def.model_copy(update={"name": name})
            tools[name] = ToolsetTool(
                tool_def=tool_def,
                toolset=self,
                max_retries=inner.max_retries,
                timeout=inner.timeout,
                wrapped=inner,
            )
        return tools

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn:
        inner = tool.wrapped
        if inner is None:
            raise ValueError(f"{self.label} was asked to call '{name}', which it did not provide")
        return await self.wrapped.call_tool(inner.name, tool_args, ctx, inner)


class PrefixedToolset(WrapperToolset):
    def __init__(self, wrapped: AbstractToolset, prefix: str, separator: str = "_") -> None:
        super().__init__(wrapped)
        self.prefix = prefix
        self.separator = separator

    def _visible_name(self, name: str) -> str | None:
        return f"{self.prefix}{self.separator}{name}"


class FilteredToolset(WrapperToolset):
    def __init__(
        self,
        wrapped: AbstractToolset,
        predicate: Callable[[RunContext[Any], ToolDefinition], bool],
    ) -> None:
        super().__init__(wrapped)
        self.predicate = predicate

    def _include(self, ctx: RunContext[Any], tool_def: ToolDefinition) -> bool:
        return self.predicate(ctx, tool_def)


class RenamedToolset(WrapperToolset):
    """Renames tools via ``{original_name: new_name}``; unmapped names pass through."""

    def __init__(self, wrapped: AbstractToolset, name_map: dict[str, str]) -> None:
        super().__init__(wrapped)
        self.name_map = dict(name_map)

    def _visible_name(self, name: str) -> str | None:
        return self.name_map.get(name, name)


class ApprovalRequiredToolset(WrapperToolset):
    """Pauses the run for caller approval before selected tools execute.

    ``checker(ctx, tool_def, args)`` decides per call; without one every call
    needs approval. Calls resumed with an approval run normally.
    """

    def __init__(
        self,
        wrapped: AbstractToolset,
        checker: Callable[[RunContext[Any], ToolDefinition, dict[str, Any]], bool] | None = None,
    ) -> None:
        super().__init__(wrapped)
        self.checker = checker

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]:
        tools = await super().get_tools(ctx)
        if self.checker is None:
            for tool in tools.values():
                tool.tool_def = tool.tool_def.model_copy(update={"kind": "unapproved"})
        return tools

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn:
        if not ctx.tool_call_approved:
            needs_approval = self.checker is None or self.checker(ctx, tool.tool_def, tool_args)
            if needs_approval:
                raise ApprovalRequired(name, tool_args)
        return await super().call_tool(name, tool_args, ctx, tool)


class ExternalToolset(AbstractToolset):
    """Tools the model may call but the caller executes outside the run.

    Every call pauses the run with a deferred request; the caller resumes it
    with the call's result.
    """

    def __init__(self, tool_defs: list[ToolDefinition], *, id: str | None = None) -> None:
        self.tool_defs = [d.model_copy(update={"kind": "external"}) for d in tool_defs]
        self._id = id

    @property
    def id(self) -> str | None:
        return self._id

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]:
        return {d.name: ToolsetTool(tool_def=d, toolset=self) for d in self.tool_defs}

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn:
        raise CallDeferred(name, tool_args)
