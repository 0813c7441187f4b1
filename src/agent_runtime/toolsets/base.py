"""The toolset contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from agent_runtime.context import RunContext
from agent_runtime.tools import Tool, ToolDefinition
from agent_runtime.tools.returns import ToolReturn

if TYPE_CHECKING:
    from agent_runtime.toolsets.wrappers import (
        ApprovalRequiredToolset,
        FilteredToolset,
        PrefixedToolset,
        RenamedToolset,
    )


@dataclass
class ToolsetTool:
    """A tool as offered by a toolset for one step.

    ``toolset`` is the toolset whose ``call_tool`` runs it. Wrapping toolsets
    keep the tool they wrap in ``wrapped``; function toolsets keep the
    underlying :class:`Tool` in ``function_tool`` so a call always runs the
    tool that was visible when the step's snapshot was taken.
    """

    tool_def: ToolDefinition
    toolset: AbstractToolset
    max_retries: int | None = None
    timeout: float | None = None
    function_tool: Tool | None = None
    wrapped: ToolsetTool | None = None

    @property
    def name(self) -> str:
        return self.tool_def.name


class AbstractToolset(ABC):
    @property
    def id(self) -> str | None:
        return None

    @property
    def label(self) -> str:
        label = type(self).__name__
        if self.id:
            label += f" {self.id!r}"
        return label

    @abstractmethod
    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]: ...

    @abstractmethod
    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn: ...

    async def __aenter__(self) -> AbstractToolset:
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        return None

    def prefixed(self, prefix: str) -> PrefixedToolset:
        from agent_runtime.toolsets.wrappers import PrefixedToolset

        return PrefixedToolset(self, prefix)

    def filtered(self, predicate: Callable[[RunContext[Any], ToolDefinition], bool]) -> FilteredToolset:
        from agent_runtime.toolsets.wrappers import FilteredToolset

        return FilteredToolset(self, predicate)

    def renamed(self, name_map: dict[str, str]) -> RenamedToolset:
        from agent_runtime.toolsets.wrappers import RenamedToolset

        return RenamedToolset(self, name_map)

    def approval_required(
        self,
        checker: Callable[[RunContext[Any], ToolDefinition, dict[str, Any]], bool] | None = None,
    ) -> ApprovalRequiredToolset:
        from agent_runtime.toolsets.wrappers import ApprovalRequiredToolset

        return ApprovalRequiredToolset(self, checker)
