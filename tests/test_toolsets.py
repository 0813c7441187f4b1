"""Tests for function, combined and wrapper toolsets."""

from __future__ import annotations

import pytest

from agent_runtime.context import RunContext
from agent_runtime.errors import ApprovalRequired, CallDeferred, ConfigurationError
from agent_runtime.tools import ToolDefinition
from agent_runtime.tools.returns import JsonReturn, TextReturn
from agent_runtime.toolsets.base import AbstractToolset
from agent_runtime.toolsets.combined import CombinedToolset
from agent_runtime.toolsets.function import DynamicToolset, FunctionToolset
from agent_runtime.toolsets.wrappers import ExternalToolset


def echo(text: str) -> str:
    return text


def shout(text: str) -> str:
    return text.upper()


@pytest.fixture
def ctx():
    return RunContext(deps=None)


async def _call(toolset: AbstractToolset, name: str, args: dict, ctx: RunContext):
    tools = await toolset.get_tools(ctx)
    return await toolset.call_tool(name, args, ctx, tools[name])


class _TrackingToolset(FunctionToolset):
    def __init__(self, label: str, log: list, fail_on_enter: bool = False):
        super().__init__(id=label)
        self.log = log
        self.fail_on_enter = fail_on_enter

    async def __aenter__(self):
        if self.fail_on_enter:
            raise RuntimeError(f"cannot enter {self.id}")
        self.log.append(f"enter {self.id}")
        return self

    async def __aexit__(self, *exc_info):
        self.log.append(f"exit {self.id}")
        return None


# ---------------------------------------------------------------------------
# FunctionToolset / DynamicToolset
# ---------------------------------------------------------------------------


class TestFunctionToolset:
    @pytest.mark.asyncio
    async def test_decorators(self, ctx):
        toolset = FunctionToolset()

        @toolset.tool
        def whoami(run_ctx: RunContext[None]) -> str:
            return run_ctx.run_id

        @toolset.tool_plain(name="double")
        def twice(n: int) -> int:
            return n * 2

        tools = await toolset.get_tools(ctx)
        assert set(tools) == {"whoami", "double"}
        assert await _call(toolset, "double", {"n": 4}, ctx) == JsonReturn(value=8)
        assert await _call(toolset, "whoami", {}, ctx) == TextReturn(text=ctx.run_id)

    @pytest.mark.asyncio
    async def test_toolset_max_retries_applies_when_tool_has_none(self, ctx):
        toolset = FunctionToolset(max_retries=4)
        toolset.add_function(echo)
        toolset.add_function(shout, max_retries=1)
        tools = await toolset.get_tools(ctx)
        assert tools["echo"].max_retries == 4
        assert tools["shout"].max_retries == 1

    @pytest.mark.asyncio
    async def test_dynamic_snapshot_survives_removal(self, ctx):
        toolset = DynamicToolset([echo])
        snapshot = await toolset.get_tools(ctx)

        toolset.remove_tool("echo")
        toolset.add_function(shout)

        assert set(await toolset.get_tools(ctx)) == {"shout"}
        result = await toolset.call_tool("echo", {"text": "still here"}, ctx, snapshot["echo"])
        assert result == TextReturn(text="still here")


# ---------------------------------------------------------------------------
# CombinedToolset
# ---------------------------------------------------------------------------


class TestCombinedToolset:
    @pytest.mark.asyncio
    async def test_merges_and_dispatches(self, ctx):
        combined = CombinedToolset([FunctionToolset([echo]), FunctionToolset([shout])])
        assert set(await combined.get_tools(ctx)) == {"echo", "shout"}
        assert await _call(combined, "shout", {"text": "hi"}, ctx) == TextReturn(text="HI")

    @pytest.mark.asyncio
    async def test_name_conflict(self, ctx):
        combined = CombinedToolset([FunctionToolset([echo], id="a"), FunctionToolset([echo], id="b")])
        with pytest.raises(ConfigurationError, match="PrefixedToolset"):
            await combined.get_tools(ctx)

    @pytest.mark.asyncio
    async def test_prefix_resolves_conflict(self, ctx):
        combined = CombinedToolset([FunctionToolset([echo]), FunctionToolset([echo]).prefixed("other")])
        assert set(await combined.get_tools(ctx)) == {"echo", "other_echo"}
        assert await _call(combined, "other_echo", {"text": "x"}, ctx) == TextReturn(text="x")

    @pytest.mark.asyncio
    async def test_enter_and_exit_order(self):
        log: list[str] = []
        combined = CombinedToolset([_TrackingToolset("a", log), _TrackingToolset("b", log)])
        async with combined:
            pass
        assert log == ["enter a", "enter b", "exit b", "exit a"]

    @pytest.mark.asyncio
    async def test_partial_enter_failure_exits_entered(self):
        log: list[str] = []
        combined = CombinedToolset([_TrackingToolset("a", log), _TrackingToolset("b", log, fail_on_enter=True)])
        with pytest.raises(RuntimeError, match="cannot enter b"):
            async with combined:
                pass
        assert log == ["enter a", "exit a"]


# ---------------------------------------------------------------------------
# Wrappers
# ---------------------------------------------------------------------------


class TestWrappers:
    @pytest.mark.asyncio
    async def test_renamed(self, ctx):
        toolset = FunctionToolset([echo, shout]).renamed({"echo": "repeat"})
        assert set(await toolset.get_tools(ctx)) == {"repeat", "shout"}
        assert await _call(toolset, "repeat", {"text": "a"}, ctx) == TextReturn(text="a")

    @pytest.mark.asyncio
    async def test_filtered(self, ctx):
        toolset = FunctionToolset([echo, shout]).filtered(lambda c, d: d.name != "shout")
        assert set(await toolset.get_tools(ctx)) == {"echo"}

    @pytest.mark.asyncio
    async def test_wrappers_compose(self, ctx):
        toolset = FunctionToolset([echo]).prefixed("fs").renamed({"fs_echo": "say"})
        tools = await toolset.get_tools(ctx)
        assert list(tools) == ["say"]
        assert await _call(toolset, "say", {"text": "hey"}, ctx) == TextReturn(text="hey")

    @pytest.mark.asyncio
    async def test_approval_required_without_checker(self, ctx):
        toolset = FunctionToolset([echo]).approval_required()
        tools = await toolset.get_tools(ctx)
        assert tools["echo"].tool_def.kind == "unapproved"

        with pytest.raises(ApprovalRequired) as exc_info:
            await toolset.call_tool("echo", {"text": "x"}, ctx, tools["echo"])
        assert exc_info.value.tool_args == {"text": "x"}

        approved = ctx.for_tool("echo", "call_1", approved=True)
        assert await toolset.call_tool("echo", {"text": "x"}, approved, tools["echo"]) == TextReturn(text="x")

    @pytest.mark.asyncio
    async def test_approval_checker_per_call(self, ctx):
        toolset = FunctionToolset([echo]).approval_required(lambda c, d, args: args["text"] == "rm -rf")
        tools = await toolset.get_tools(ctx)
        assert tools["echo"].tool_def.kind == "function"
        assert await toolset.call_tool("echo", {"text": "ls"}, ctx, tools["echo"]) == TextReturn(text="ls")
        with pytest.raises(ApprovalRequired):
            await toolset.call_tool("echo", {"text": "rm -rf"}, ctx, tools["echo"])

    @pytest.mark.asyncio
    async def test_external_defers_every_call(self, ctx):
        toolset = ExternalToolset([ToolDefinition(name="browser_open")], id="frontend")
        tools = await toolset.get_tools(ctx)
        assert tools["browser_open"].tool_def.kind == "external"
        with pytest.raises(CallDeferred) as exc_info:
            await toolset.call_tool("browser_open", {"url": "x"}, ctx, tools["browser_open"])
        assert exc_info.value.tool_name == "browser_open"

    def test_labels(self):
        toolset = FunctionToolset([echo], id="files").prefixed("fs")
        assert toolset.label == "PrefixedToolset(FunctionToolset 'files')"
        assert toolset.id == "files"
