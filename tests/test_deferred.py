"""Tests for pausing runs on deferred tool calls and resuming them."""

from __future__ import annotations

import pytest

from agent_runtime.agents.agent import Agent
from agent_runtime.agents.run import RunState
from agent_runtime.errors import ConfigurationError, ModelRetry
from agent_runtime.models.agent_schemas import DeferredToolResults, ToolDenied
from agent_runtime.models.messages import ModelRequest, ModelResponse, ToolCallPart, ToolReturnPart, UserPromptPart
from agent_runtime.services.function_model import FunctionModel
from agent_runtime.tools import ToolDefinition
from agent_runtime.tools.returns import ErrorReturn, TextReturn
from agent_runtime.toolsets.function import FunctionToolset
from agent_runtime.toolsets.wrappers import ExternalToolset


def _returns_by_id(message: ModelRequest) -> dict[str, ToolReturnPart]:
    return {p.tool_call_id: p for p in message.parts if isinstance(p, ToolReturnPart)}


def _scripted_calls(*calls: ToolCallPart):
    """Model that makes ``calls`` once, then echoes the tool results it got back."""

    def fn(messages, info):
        last = messages[-1]
        returns = _returns_by_id(last) if isinstance(last, ModelRequest) else {}
        if not returns:
            return ModelResponse(parts=list(calls))
        return " | ".join(f"{cid}={ret.content.as_text()}" for cid, ret in returns.items())

    return fn


@pytest.fixture
def deleted():
    return []


@pytest.fixture
def approval_agent(deleted):
    files = FunctionToolset()

    @files.tool_plain
    def delete_file(path: str) -> str:
        deleted.append(path)
        return f"deleted {path}"

    def add(a: int, b: int) -> int:
        return a + b

    model = FunctionModel(
        _scripted_calls(
            ToolCallPart(tool_name="add", args={"a": 1, "b": 1}, tool_call_id="t1"),
            ToolCallPart(tool_name="delete_file", args={"path": "a.txt"}, tool_call_id="d1"),
        )
    )
    return Agent(model, tools=[add], toolsets=[files.approval_required()])


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------


class TestApproval:
    @pytest.mark.asyncio
    async def test_pauses_for_approval(self, approval_agent, deleted):
        result = await approval_agent.run("clean up")

        assert result.is_paused
        assert result.output is None
        assert [c.tool_call_id for c in result.deferred.approvals] == ["d1"]
        assert result.deferred.calls == []
        assert deleted == []
        # the regular call ran and its return is already in history
        assert list(_returns_by_id(result.messages[-1])) == ["t1"]

    @pytest.mark.asyncio
    async def test_iter_reports_paused_state(self, approval_agent):
        async with approval_agent.iter("clean up") as run:
            states = [step.state async for step in run]
        assert states == [RunState.PAUSED]

    @pytest.mark.asyncio
    async def test_approved_call_runs_on_resume(self, approval_agent, deleted):
        paused = await approval_agent.run("clean up")
        result = await approval_agent.run(
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(approvals={"d1": True}),
        )

        assert result.status == "done"
        assert result.output == "t1=2 | d1=deleted a.txt"
        assert deleted == ["a.txt"]
        assert result.usage.tool_calls == 1
        merged = result.messages[2]
        assert [p.tool_call_id for p in merged.parts] == ["t1", "d1"]

    @pytest.mark.asyncio
    async def test_denied_call_is_reported(self, approval_agent, deleted):
        paused = await approval_agent.run("clean up")
        result = await approval_agent.run(
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(approvals={"d1": ToolDenied(message="Not on Fridays")}),
        )

        assert deleted == []
        assert result.output == "t1=2 | d1=Error: Not on Fridays"
        denied = _returns_by_id(result.messages[2])["d1"]
        assert denied.content == ErrorReturn(message="Not on Fridays", retryable=False)

    @pytest.mark.asyncio
    async def test_plain_false_uses_default_denial(self, approval_agent):
        paused = await approval_agent.run("clean up")
        result = await approval_agent.run(
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(approvals={"d1": False}),
        )
        assert "The tool call was denied." in result.output

    @pytest.mark.asyncio
    async def test_resume_prompt_is_appended(self, approval_agent):
        paused = await approval_agent.run("clean up")
        result = await approval_agent.run(
            "and tell me when done",
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(approvals={"d1": True}),
        )
        last_part = result.messages[2].parts[-1]
        assert isinstance(last_part, UserPromptPart)
        assert last_part.content == "and tell me when done"

    @pytest.mark.asyncio
    async def test_missing_result_is_an_error(self, approval_agent):
        paused = await approval_agent.run("clean up")
        with pytest.raises(ConfigurationError, match="No deferred result supplied for tool call 'd1'"):
            await approval_agent.run(message_history=paused.messages, deferred_tool_results=DeferredToolResults())

    @pytest.mark.asyncio
    async def test_resume_needs_paused_history(self, approval_agent):
        with pytest.raises(ConfigurationError, match="paused run"):
            await approval_agent.run(
                message_history=[ModelRequest.user_text("hi")],
                deferred_tool_results=DeferredToolResults(approvals={"d1": True}),
            )


# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------


@pytest.fixture
def external_agent():
    ask = ToolDefinition(
        name="ask_user",
        description="Ask the user a question.",
        parameters_json_schema={
            "type": "object",
            "properties": {"question": {"type": "string"}},
            "required": ["question"],
        },
    )
    model = FunctionModel(
        _scripted_calls(ToolCallPart(tool_name="ask_user", args={"question": "Colour?"}, tool_call_id="e1"))
    )
    return Agent(model, toolsets=[ExternalToolset([ask], id="frontend")])


class TestExternalTools:
    @pytest.mark.asyncio
    async def test_pauses_with_call(self, external_agent):
        result = await external_agent.run("pick a colour")

        assert result.is_paused
        (pending,) = result.deferred.calls
        assert pending.tool_name == "ask_user"
        assert pending.args_as_dict() == {"question": "Colour?"}
        assert result.usage.tool_calls == 0

    @pytest.mark.asyncio
    async def test_resume_with_result(self, external_agent):
        paused = await external_agent.run("pick a colour")
        result = await external_agent.run(
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(calls={"e1": "blue"}),
        )

        assert result.output == "e1=blue"
        assert _returns_by_id(result.messages[2])["e1"].content == TextReturn(text="blue")

    @pytest.mark.asyncio
    async def test_resume_with_retry(self, external_agent):
        paused = await external_agent.run("pick a colour")
        result = await external_agent.run(
            message_history=paused.messages,
            deferred_tool_results=DeferredToolResults(calls={"e1": ModelRetry("Ask something else")}),
        )
        assert result.output == "e1=Error: Ask something else"
