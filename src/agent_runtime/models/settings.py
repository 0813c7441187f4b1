"""Per-request model settings."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ModelSettings(BaseModel):
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop: list[str] | None = None
    seed: int | None = None
    timeout: float | None = None
    parallel_tool_calls: bool | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def merge(self, other: ModelSettings | None) -> ModelSettings:
        """Return a copy where every field set on ``other`` wins."""
        if other is None:
            return self.model_copy()
        overrides = other.model_dump(exclude_none=True, exclude={"extra"})
        merged = self.model_copy(update=overrides)
        merged.extra = {**self.extra, **other.extra}
        return merged
