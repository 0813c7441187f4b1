"""Output schemas: how a final output is requested from and parsed out of a model."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import TypeAdapter, ValidationError

from agent_runtime.errors import ConfigurationError, OutputParseError
from agent_runtime.output.mode import OutputMode
from agent_runtime.output.parser import extract_json
from agent_runtime.tools import ToolDefinition

DEFAULT_OUTPUT_TOOL_NAME = "final_result"
DEFAULT_OUTPUT_TOOL_DESCRIPTION = "The final response which ends this conversation"


class OutputSchema(ABC):
    mode: OutputMode

    def tool_definitions(self) -> list[ToolDefinition]:
        return []

    def tool_names(self) -> set[str]:
        return {definition.name for definition in self.tool_definitions()}

    def json_schema(self) -> dict[str, Any] | None:
        return None

    @property
    def allows_text_output(self) -> bool:
        return self.mode.allows_text_output

    @abstractmethod
    def parse_text(self, text: str) -> Any: ...

    def parse_tool_call(self, tool_name: str, args: str | dict[str, Any] | None) -> Any:
        raise OutputParseError(f"Output mode '{self.mode.value}' does not accept tool calls")

    def parse_native(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.parse_text(value)
        raise OutputParseError(f"Output mode '{self.mode.value}' does not accept native output")

    def instructions(self, template: str) -> str | None:
        """Extra instructions for the model in prompted mode."""
        schema = self.json_schema()
        if self.mode is not OutputMode.PROMPTED or schema is None:
            return None
        return template.format(schema=json.dumps(schema, indent=2))

    def check(self) -> None:
        """Raise ConfigurationError if the schema cannot work in its mode."""
        if self.mode is OutputMode.TOOL and not self.tool_definitions():
            raise ConfigurationError("Tool output mode requires at least one output tool definition")
        if self.mode.requires_schema and self.json_schema() is None:
            raise ConfigurationError(f"{self.mode.value.capitalize()} output mode requires a JSON schema")


class TextOutputSchema(OutputSchema):
    mode = OutputMode.TEXT

    def __init__(
        self,
        min_length: int | None = None,
        max_length: int | None = None,
        pattern: str | None = None,
        trim: bool = True,
    ) -> None:
        self.min_length = min_length
        self.max_length = max_length
        self.pattern = re.compile(pattern) if pattern else None
        self.trim = trim

    def parse_text(self, text: str) -> str:
        if self.trim:
            text = text.strip()
        if self.min_length is not None and len(text) < self.min_length:
            raise OutputParseError(f"Output is too short: {len(text)} < {self.min_length} characters")
        if self.max_length is not None and len(text) > self.max_length:
            raise OutputParseError(f"Output is too long: {len(text)} > {self.max_length} characters")
        if self.pattern is not None and not self.pattern.search(text):
            raise OutputParseError(f"Output does not match pattern {self.pattern.pattern!r}")
        return text


class StructuredOutputSchema(OutputSchema):
    """Validates output against a Python type using pydantic.

    Types whose JSON schema is not an object (``list[int]``, ``str`` ...) are
    wrapped under a ``response`` key for the output tool, since tool
    arguments must be objects.
    """

    def __init__(
        self,
        output_type: Any,
        mode: OutputMode | str = OutputMode.TOOL,
        *,
        tool_name: str = DEFAULT_OUTPUT_TOOL_NAME,
        description: str | None = None,
        strict: bool | None = None,
    ) -> None:
        self.mode = OutputMode.parse(mode)
        if self.mode is OutputMode.TEXT:
            raise ConfigurationError("Structured output cannot use text output mode")
        self.output_type = output_type
        self.tool_name = tool_name
        self.description = description or DEFAULT_OUTPUT_TOOL_DESCRIPTION
        self.strict = strict
        self._adapter = TypeAdapter(output_type)
        self._schema = self._adapter.json_schema()
        self._wrapped = self._schema.get("type") != "object"

    def json_schema(self) -> dict[str, Any]:
        return self._schema

    def tool_definitions(self) -> list[ToolDefinition]:
        if self.mode is not OutputMode.TOOL:
            return []
        if self._wrapped:
            parameters = {
                "type": "object",
                "properties": {"response": self._schema},
                "required": ["response"],
            }
        else:
            parameters = self._schema
        return [
            ToolDefinition(
                name=self.tool_name,
                description=self.description,
                parameters_json_schema=parameters,
                strict=self.strict,
                kind="output",
            )
        ]

    def _validate(self, value: Any) -> Any:
        try:
            return self._adapter.validate_python(value)
        except ValidationError as e:
            raise OutputParseError(_format_errors(e)) from e

    def parse_text(self, text: str) -> Any:
        return self._validate(extract_json(text))

    def parse_tool_call(self, tool_name: str, args: str | dict[str, Any] | None) -> Any:
        if tool_name != self.tool_name:
            raise OutputParseError(f"Unknown output tool '{tool_name}'")
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except ValueError as e:
                raise OutputParseError(f"Invalid JSON in tool arguments: {e}") from e
        args = args or {}
        if self._wrapped:
            if not isinstance(args, dict) or "response" not in args:
                raise OutputParseError("Missing required field 'response'")
            return self._validate(args["response"])
        return self._validate(args)

    def parse_native(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.parse_text(value)
        return self._validate(value)


def _format_errors(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        lines.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(lines)


def build_output_schema(output: Any = None, mode: OutputMode | str | None = None) -> OutputSchema:
    """Pick the schema for an agent's declared output.

    ``None`` or ``str`` means free text (unless a non-text mode is asked for);
    an :class:`OutputSchema` instance is used as is; any other type is
    validated with pydantic.
    """
    if isinstance(output, OutputSchema):
        schema = output
    else:
        parsed = OutputMode.parse(mode) if mode is not None else None
        if output in (None, str) and parsed in (None, OutputMode.TEXT):
            schema = TextOutputSchema()
        else:
            if output is None:
                raise ConfigurationError(f"Output mode '{parsed.value}' requires an output type")
            schema = StructuredOutputSchema(output, parsed or OutputMode.TOOL)
    schema.check()
    return schema
