from __future__ import annotations

from enum import Enum


class OutputMode(str, Enum):
    """How the model is asked to deliver its final output."""

    TEXT = "text"
    NATIVE = "native"
    PROMPTED = "prompted"
    TOOL = "tool"

    @classmethod
    def parse(cls, value: str | OutputMode) -> OutputMode:
        if isinstance(value, OutputMode):
            return value
        key = value.strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown output mode '{value}'. Expected one of: {valid}") from None

    @property
    def requires_schema(self) -> bool:
        return self in (OutputMode.NATIVE, OutputMode.PROMPTED)

    @property
    def uses_output_tool(self) -> bool:
        return self is OutputMode.TOOL

    @property
    def allows_text_output(self) -> bool:
        return self is not OutputMode.TOOL


_ALIASES = {
    "json": "prompted",
    "structured": "native",
    "function": "tool",
    "function_call": "tool",
}
