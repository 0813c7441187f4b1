"""Tests for function tools, the tool registry, tool returns and the invoker."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from agent_runtime.context import RunContext
from agent_runtime.errors import (
    ModelRetry,
    ToolArgumentsInvalid,
    ToolExecutionFailed,
    ToolNotFound,
    ToolTimeout,
)
from agent_runtime.retries.backoff import FixedDelay
from agent_runtime.tools import Tool, ToolDefinition, ToolRegistry
from agent_runtime.tools.invoker import ToolInvoker
from agent_runtime.tools.returns import (
    ErrorReturn,
    ImageReturn,
    JsonReturn,
    MultipleReturn,
    TextReturn,
    is_error,
    to_tool_return,
)
from agent_runtime.toolsets.function import FunctionToolset


def add(a: int, b: int = 2) -> int:
    """Add two numbers.

    Longer explanation that is not part of the description.
    """
    return a + b


async def greet(ctx: RunContext[str], name: str) -> str:
    return f"{ctx.deps}, {name}"


class Point(BaseModel):
    x: int
    y: int


# ---------------------------------------------------------------------------
# Tool.from_function
# ---------------------------------------------------------------------------


class TestToolFromFunction:
    def test_schema_from_signature(self):
        tool = Tool.from_function(add)
        assert tool.name == "add"
        assert tool.description == "Add two numbers."
        assert tool.parameters["type"] == "object"
        assert set(tool.parameters["properties"]) == {"a", "b"}
        assert tool.parameters["required"] == ["a"]
        assert "title" not in tool.parameters
        assert not tool.takes_ctx

    def test_ctx_parameter_detected_and_hidden(self):
        tool = Tool.from_function(greet)
        assert tool.takes_ctx
        assert set(tool.parameters["properties"]) == {"name"}

    def test_ctx_parameter_detected_by_name(self):
        def lookup(ctx, key: str) -> str:
            return key

        tool = Tool.from_function(lookup)
        assert tool.takes_ctx
        assert set(tool.parameters["properties"]) == {"key"}

    def test_overrides(self):
        tool = Tool.from_function(add, name="plus", description="Sum.", timeout=1.5, strict=True)
        definition = tool.definition()
        assert definition.name == "plus"
        assert definition.description == "Sum."
        assert definition.strict is True
        assert tool.timeout == 1.5

    def test_to_openai_tool(self):
        payload = Tool.from_function(add).definition().to_openai_tool()
        assert payload["type"] == "function"
        assert payload["function"]["name"] == "add"
        assert "strict" not in payload["function"]

    def test_validate_args_rejects_bad_types(self):
        with pytest.raises(ToolArgumentsInvalid, match="Invalid arguments for tool 'add'"):
            Tool.from_function(add).validate_args({"a": "not a number"})

    def test_validate_args_applies_defaults(self):
        assert Tool.from_function(add).validate_args({"a": 1}) == {"a": 1, "b": 2}

    def test_validate_args_without_model_checks_required(self):
        tool = Tool(
            name="raw",
            description="",
            parameters={"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]},
            function=lambda q: q,
        )
        with pytest.raises(ToolArgumentsInvalid, match="missing required argument"):
            tool.validate_args({})
        assert tool.validate_args({"q": "x"}) == {"q": "x"}

    @pytest.mark.asyncio
    async def test_call_sync_and_async(self):
        assert await Tool.from_function(add).call({"a": 1, "b": 5}) == 6
        assert await Tool.from_function(greet).call({"name": "Ada"}, RunContext(deps="Hello")) == "Hello, Ada"

    @pytest.mark.asyncio
    async def test_call_with_unexpected_argument(self):
        tool = Tool(
            name="raw",
            description="",
            parameters={"type": "object", "properties": {}},
            function=lambda: "ok",
        )
        with pytest.raises(ToolArgumentsInvalid):
            await tool.call({"surprise": 1})


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_register_and_lookup(self):
        registry = ToolRegistry()
        registry.register_many([Tool.from_function(add), Tool.from_function(greet)])
        assert "add" in registry
        assert len(registry) == 2
        assert [d.name for d in registry.definitions()] == ["add", "greet"]
        assert registry.to_openai_tools()[0]["function"]["name"] == "add"

    def test_unknown_tool_lists_available(self):
        registry = ToolRegistry()
        registry.register(Tool.from_function(add))
        with pytest.raises(ToolNotFound) as exc_info:
            registry.get("sub")
        assert exc_info.value.available == ["add"]
        assert "Available tools: add" in str(exc_info.value)

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register(Tool.from_function(add))
        assert registry.unregister("add").name == "add"
        assert registry.unregister("add") is None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_execute_wraps_return(self):
        registry = ToolRegistry()
        registry.register(Tool.from_function(add))
        assert await registry.execute("add", {"a": 1}) == JsonReturn(value=3)


# ---------------------------------------------------------------------------
# Tool returns
# ---------------------------------------------------------------------------


class TestToolReturns:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("hi", TextReturn(text="hi")),
            (None, TextReturn(text="")),
            ({"a": 1}, JsonReturn(value={"a": 1})),
            ((1, 2), JsonReturn(value=[1, 2])),
            (Point(x=1, y=2), JsonReturn(value={"x": 1, "y": 2})),
        ],
    )
    def test_to_tool_return(self, value, expected):
        assert to_tool_return(value) == expected

    def test_bytes_become_image(self):
        content = to_tool_return(b"\x89PNG")
        assert isinstance(content, ImageReturn)
        assert content.as_text() == "[image: image/png]"

    def test_existing_return_passes_through(self):
        error = ErrorReturn(message="boom")
        assert to_tool_return(error) is error
        assert is_error(error)
        assert error.as_text() == "Error: boom"

    def test_multiple_return_text(self):
        content = MultipleReturn(items=[TextReturn(text="a"), JsonReturn(value=[1])])
        assert content.as_text() == "a\n[1]"


# ---------------------------------------------------------------------------
# ToolInvoker
# ---------------------------------------------------------------------------


async def _no_sleep(delay: float) -> None:
    return None


async def _invoker_for(toolset: FunctionToolset, strategy=None) -> tuple[ToolInvoker, RunContext]:
    ctx = RunContext(deps=None)
    tools = await toolset.get_tools(ctx)
    return ToolInvoker(toolset, tools, retry_strategy=strategy, sleep=_no_sleep), ctx


class TestToolInvoker:
    @pytest.mark.asyncio
    async def test_resolve_from_snapshot(self):
        invoker, _ = await _invoker_for(FunctionToolset([add]))
        assert invoker.available == ["add"]
        assert invoker.resolve("add").name == "add"
        assert invoker.resolve("missing") is None

    @pytest.mark.asyncio
    async def test_invoke(self):
        invoker, ctx = await _invoker_for(FunctionToolset([add]))
        result = await invoker.invoke(invoker.resolve("add"), {"a": 2, "b": 3}, ctx)
        assert result == JsonReturn(value=5)

    @pytest.mark.asyncio
    async def test_generic_exception_becomes_execution_failure(self):
        def explode() -> str:
            raise KeyError("gone")

        invoker, ctx = await _invoker_for(FunctionToolset([explode]))
        with pytest.raises(ToolExecutionFailed, match="Error executing 'explode': KeyError"):
            await invoker.invoke(invoker.resolve("explode"), {}, ctx)

    @pytest.mark.asyncio
    async def test_model_retry_passes_through(self):
        def picky() -> str:
            raise ModelRetry("try another value")

        invoker, ctx = await _invoker_for(FunctionToolset([picky]))
        with pytest.raises(ModelRetry, match="try another value"):
            await invoker.invoke(invoker.resolve("picky"), {}, ctx)

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow() -> str:
            await asyncio.sleep(5)
            return "late"

        toolset = FunctionToolset()
        toolset.add_function(slow, timeout=0.01)
        invoker, ctx = await _invoker_for(toolset)
        with pytest.raises(ToolTimeout) as exc_info:
            await invoker.invoke(invoker.resolve("slow"), {}, ctx)
        assert exc_info.value.seconds == 0.01

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        attempts = []

        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ToolExecutionFailed("flaky", "temporarily unavailable", transient=True)
            return "ok"

        invoker, ctx = await _invoker_for(FunctionToolset([flaky]), FixedDelay(delay=0, max_retries=3))
        assert await invoker.invoke(invoker.resolve("flaky"), {}, ctx) == TextReturn(text="ok")
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self):
        attempts = []

        def broken() -> str:
            attempts.append(1)
            raise ToolExecutionFailed("broken", "disk full")

        invoker, ctx = await _invoker_for(FunctionToolset([broken]), FixedDelay(delay=0, max_retries=3))
        with pytest.raises(ToolExecutionFailed):
            await invoker.invoke(invoker.resolve("broken"), {}, ctx)
        assert len(attempts) == 1

    def test_tool_definition_defaults(self):
        definition = ToolDefinition(name="t")
        assert definition.kind == "function"
        assert definition.parameters_json_schema == {"type": "object", "properties": {}}
