"""Tool definitions and the function-tool registry."""

from __future__ import annotations

import asyncio
import inspect
import logging
import typing
from dataclasses import dataclass
from typing import Any, Callable, Literal

from pydantic import BaseModel, ValidationError, create_model

from agent_runtime.errors import ToolArgumentsInvalid, ToolNotFound
from agent_runtime.tools.returns import ToolReturn, to_tool_return

logger = logging.getLogger(__name__)

ToolKind = Literal["function", "output", "external", "unapproved"]


class ToolDefinition(BaseModel):
    """What the model sees of a tool."""

    name: str
    description: str = ""
    parameters_json_schema: dict[str, Any] = {"type": "object", "properties": {}}
    strict: bool | None = None
    kind: ToolKind = "function"

    def to_openai_tool(self) -> dict[str, Any]:
        function: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_json_schema,
        }
        if self.strict is not None:
            function["strict"] = self.strict
        return {"type": "function", "function": function}


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    function: Callable[..., Any]
    takes_ctx: bool = False
    args_model: type[BaseModel] | None = None
    max_retries: int | None = None
    timeout: float | None = None
    strict: bool | None = None

    @classmethod
    def from_function(
        cls,
        function: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        takes_ctx: bool | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        strict: bool | None = None,
    ) -> Tool:
        """Build a tool from a plain or async function.

        The argument schema is derived from the signature; the first
        paragraph of the docstring becomes the description. When
        ``takes_ctx`` is not given, a first parameter annotated with
        ``RunContext`` (or named ``ctx``) is treated as the run context.
        """
        name = name or function.__name__
        params = list(inspect.signature(function).parameters.values())
        hints = _type_hints(function)
        if takes_ctx is None:
            takes_ctx = bool(params) and _is_ctx_param(params[0], hints)
        arg_params = params[1:] if takes_ctx else params

        fields: dict[str, Any] = {}
        for param in arg_params:
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            annotation = hints.get(param.name, Any)
            default = ... if param.default is param.empty else param.default
            fields[param.name] = (annotation, default)

        args_model = create_model(f"{name}_args", **fields)
        schema = args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})

        if description is None:
            doc = inspect.getdoc(function) or ""
            description = doc.split("\n\n", 1)[0].replace("\n", " ").strip()

        return cls(
            name=name,
            description=description,
            parameters=schema,
            function=function,
            takes_ctx=takes_ctx,
            args_model=args_model,
            max_retries=max_retries,
            timeout=timeout,
            strict=strict,
        )

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters_json_schema=self.parameters,
            strict=self.strict,
        )

    def validate_args(self, args: dict[str, Any]) -> dict[str, Any]:
        if self.args_model is not None:
            try:
                return dict(self.args_model.model_validate(args))
            except ValidationError as e:
                raise ToolArgumentsInvalid(self.name, _format_validation_error(self.name, e)) from e

        missing = [key for key in self.parameters.get("required", []) if key not in args]
        if missing:
            raise ToolArgumentsInvalid(
                self.name,
                f"Invalid arguments for tool '{self.name}': missing required argument(s) {', '.join(missing)}",
            )
        return dict(args)

    async def call(self, args: dict[str, Any], ctx: Any = None) -> Any:
        kwargs = self.validate_args(args)
        call_args = (ctx,) if self.takes_ctx else ()
        try:
            inspect.signature(self.function).bind(*call_args, **kwargs)
        except TypeError as e:
            raise ToolArgumentsInvalid(self.name, f"Invalid arguments for tool '{self.name}': {e}") from e

        if inspect.iscoroutinefunction(self.function):
            return await self.function(*call_args, **kwargs)
        return await asyncio.to_thread(self.function, *call_args, **kwargs)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("Replacing already registered tool '%s'", tool.name)
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> Tool | None:
        return self._tools.pop(name, None)

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFound(name, list(self._tools)) from None

    def list_all(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return [definition.to_openai_tool() for definition in self.definitions()]

    async def execute(self, name: str, args: dict[str, Any], ctx: Any = None) -> ToolReturn:
        tool = self.get(name)
        return to_tool_return(await tool.call(args, ctx))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _type_hints(function: Callable[..., Any]) -> dict[str, Any]:
    try:
        return typing.get_type_hints(function)
    except (NameError, TypeError) as e:
        logger.debug("Could not resolve type hints for %s: %s", function, e)
        return {}


def _is_ctx_param(param: inspect.Parameter, hints: dict[str, Any]) -> bool:
    from agent_runtime.context import RunContext

    annotation = hints.get(param.name)
    if annotation is RunContext or typing.get_origin(annotation) is RunContext:
        return True
    if isinstance(param.annotation, str) and param.annotation.startswith("RunContext"):
        return True
    return param.name == "ctx"


def _format_validation_error(tool_name: str, error: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'args'}: {err['msg']}" for err in error.errors()
    )
    return f"Invalid arguments for tool '{tool_name}': {details}"
