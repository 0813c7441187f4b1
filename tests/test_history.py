"""Tests for history processors."""

from __future__ import annotations

import pytest

from agent_runtime.agents.history import FilterHistory, TruncateHistory, apply_history_processors
from agent_runtime.models.messages import (
    ModelMessagesTypeAdapter,
    ModelRequest,
    ModelResponse,
    RetryPromptPart,
    SystemPromptPart,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)


def _conversation() -> list:
    """user -> tool call -> tool return -> tool call -> tool return -> answer"""
    return [
        ModelRequest(parts=[SystemPromptPart(content="sys"), UserPromptPart(content="start")]),
        ModelResponse(parts=[ToolCallPart(tool_name="a", args={}, tool_call_id="c1")]),
        ModelRequest(parts=[ToolReturnPart(tool_name="a", tool_call_id="c1")]),
        ModelResponse(parts=[ThinkingPart(content="hmm"), ToolCallPart(tool_name="b", args={}, tool_call_id="c2")]),
        ModelRequest(parts=[ToolReturnPart(tool_name="b", tool_call_id="c2")]),
        ModelResponse(parts=[TextPart(content="answer")]),
        ModelRequest(parts=[UserPromptPart(content="more")]),
    ]


class TestTruncateHistory:
    def test_short_history_untouched(self):
        messages = _conversation()[:2]
        assert TruncateHistory(5)(messages) == messages

    def test_keeps_first_and_starts_at_response(self):
        messages = _conversation()
        result = TruncateHistory(4)(messages)

        # the budget would start at a tool return; the cut moves to the next response
        assert result == [messages[0], *messages[5:]]

    def test_never_orphans_tool_returns(self):
        messages = _conversation()
        for size in range(1, len(messages) + 1):
            for keep_first in (True, False):
                result = TruncateHistory(size, keep_first=keep_first)(messages)
                call_ids = {
                    part.tool_call_id
                    for m in result
                    if isinstance(m, ModelResponse)
                    for part in m.parts
                    if isinstance(part, ToolCallPart)
                }
                for m in result:
                    if isinstance(m, ModelRequest):
                        for part in m.parts:
                            if isinstance(part, ToolReturnPart):
                                assert part.tool_call_id in call_ids

    def test_without_first_starts_at_user_request(self):
        result = TruncateHistory(2, keep_first=False)(_conversation())
        assert isinstance(result[0], ModelRequest)
        assert isinstance(result[0].parts[0], UserPromptPart)

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            TruncateHistory(0)


class TestFilterHistory:
    def test_removes_selected_parts(self):
        messages = _conversation()
        messages.append(ModelRequest(parts=[RetryPromptPart(content="again")]))

        result = FilterHistory(remove_system=True, remove_retries=True, remove_thinking=True)(messages)

        kinds = [part.part_kind for m in result for part in m.parts]
        assert "system-prompt" not in kinds
        assert "retry-prompt" not in kinds
        assert "thinking" not in kinds
        # the retry-only request is dropped entirely
        assert len(result) == len(messages) - 1

    def test_original_messages_unchanged(self):
        messages = _conversation()
        FilterHistory(remove_system=True)(messages)
        assert isinstance(messages[0].parts[0], SystemPromptPart)


@pytest.mark.asyncio
async def test_processors_apply_in_order():
    async def drop_first(messages):
        return messages[1:]

    def keep_two(messages):
        return messages[:2]

    messages = _conversation()
    result = await apply_history_processors([drop_first, keep_two], messages)
    assert result == messages[1:3]
    assert len(messages) == 7


def test_messages_round_trip_through_json():
    messages = _conversation()
    restored = ModelMessagesTypeAdapter.validate_json(ModelMessagesTypeAdapter.dump_json(messages))
    assert restored == messages
