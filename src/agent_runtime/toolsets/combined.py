from __future__ import annotations

import logging
from typing import Any, Sequence

from agent_runtime.context import RunContext
from agent_runtime.errors import ConfigurationError
from agent_runtime.tools.returns import ToolReturn
from agent_runtime.toolsets.base import AbstractToolset, ToolsetTool

logger = logging.getLogger(__name__)


class CombinedToolset(AbstractToolset):
    """Merges several toolsets into one. Tool names must be unique across them."""

    def __init__(self, toolsets: Sequence[AbstractToolset]) -> None:
        self.toolsets = list(toolsets)
        self._entered: list[AbstractToolset] = []

    async def __aenter__(self) -> CombinedToolset:
        try:
            for toolset in self.toolsets:
                await toolset.__aenter__()
                self._entered.append(toolset)
                logger.debug("Entered %s", toolset.label)
        except BaseException:
            await self._exit_entered(None, None, None)
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        await self._exit_entered(*exc_info)
        return None

    async def _exit_entered(self, *exc_info: Any) -> None:
        while self._entered:
            toolset = self._entered.pop()
            await toolset.__aexit__(*exc_info)

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool]:
        combined: dict[str, ToolsetTool] = {}
        for toolset in self.toolsets:
            for name, tool in (await toolset.get_tools(ctx)).items():
                existing = combined.get(name)
                if existing is not None:
                    raise ConfigurationError(
                        f"{toolset.label} defines a tool whose name conflicts with existing tool "
                        f"from {existing.toolset.label}: {name!r}. Consider renaming the tool or "
                        "wrapping the toolset in a `PrefixedToolset` to avoid name conflicts."
                    )
                combined[name] = tool
        return combined

    async def call_tool(
        self,
        name: str,
        tool_args: dict[str, Any],
        ctx: RunContext[Any],
        tool: ToolsetTool,
    ) -> ToolReturn:
        return await tool.toolset.call_tool(name, tool_args, ctx, tool)
