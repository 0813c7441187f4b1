"""Per-run context handed to tools, validators and dynamic system prompts."""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from agent_runtime.models.settings import ModelSettings
from agent_runtime.usage import RunUsage

DepsT = TypeVar("DepsT")


@dataclass
class RunContext(Generic[DepsT]):
    """Shared state of one run.

    ``deps`` and ``usage`` are shared references: child contexts created with
    :meth:`for_tool` see the same objects. Tools should treat ``usage`` as
    read-only.
    """

    deps: DepsT
    usage: RunUsage = field(default_factory=RunUsage)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    start_time: float = field(default_factory=time.monotonic)
    model_name: str = ""
    model_settings: ModelSettings | None = None
    tool_name: str | None = None
    tool_call_id: str | None = None
    tool_call_approved: bool = False
    retry_count: int = 0
    max_retries: int = 1
    step: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def for_tool(
        self,
        tool_name: str,
        tool_call_id: str | None = None,
        retry_count: int = 0,
        approved: bool = False,
    ) -> RunContext[DepsT]:
        return dataclasses.replace(
            self,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            retry_count=retry_count,
            tool_call_approved=approved,
        )

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time

    @property
    def is_retry(self) -> bool:
        return self.retry_count > 0

    @property
    def in_tool(self) -> bool:
        return self.tool_name is not None

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)
