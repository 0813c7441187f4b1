"""History processors: transform the messages sent to the model.

Processors see a copy of the run history each step; the stored history is
never modified.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Sequence, Union

from agent_runtime.models.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    RetryPromptPart,
    SystemPromptPart,
    ThinkingPart,
    ToolReturnPart,
)

HistoryProcessor = Callable[
    [list[ModelMessage]],
    Union[list[ModelMessage], Awaitable[list[ModelMessage]]],
]


def _has_tool_returns(message: ModelMessage) -> bool:
    return isinstance(message, ModelRequest) and any(
        isinstance(part, ToolReturnPart) or (isinstance(part, RetryPromptPart) and part.tool_call_id)
        for part in message.parts
    )


class TruncateHistory:
    """Keep only the last ``max_messages`` messages.

    With ``keep_first`` the opening request (system prompt and first user
    prompt) is always kept. The cut never separates tool returns from the
    response holding their calls.
    """

    def __init__(self, max_messages: int, keep_first: bool = True) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self.keep_first = keep_first

    def __call__(self, messages: list[ModelMessage]) -> list[ModelMessage]:
        if len(messages) <= self.max_messages:
            return list(messages)

        head = messages[:1] if self.keep_first else []
        budget = max(self.max_messages - len(head), 1)
        start = len(messages) - budget
        last = len(messages) - 1
        if self.keep_first:
            while start < last and not isinstance(messages[start], ModelResponse):
                start += 1
        else:
            while start < last and (isinstance(messages[start], ModelResponse) or _has_tool_returns(messages[start])):
                start += 1
        return head + messages[start:]


class FilterHistory:
    """Drop selected part kinds; messages left empty are removed."""

    def __init__(
        self,
        remove_system: bool = False,
        remove_retries: bool = False,
        remove_thinking: bool = False,
    ) -> None:
        self.remove_system = remove_system
        self.remove_retries = remove_retries
        self.remove_thinking = remove_thinking

    def _keep(self, part: Any) -> bool:
        if self.remove_system and isinstance(part, SystemPromptPart):
            return False
        if self.remove_retries and isinstance(part, RetryPromptPart):
            return False
        if self.remove_thinking and isinstance(part, ThinkingPart):
            return False
        return True

    def __call__(self, messages: list[ModelMessage]) -> list[ModelMessage]:
        result: list[ModelMessage] = []
        for message in messages:
            parts = [part for part in message.parts if self._keep(part)]
            if not parts:
                continue
            if len(parts) == len(message.parts):
                result.append(message)
            else:
                result.append(message.model_copy(update={"parts": parts}))
        return result


async def apply_history_processors(
    processors: Sequence[HistoryProcessor],
    messages: list[ModelMessage],
) -> list[ModelMessage]:
    result = list(messages)
    for processor in processors:
        processed = processor(result)
        if inspect.isawaitable(processed):
            processed = await processed
        result = list(processed)
    return result
