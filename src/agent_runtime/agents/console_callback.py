"""Step callbacks that render a run: rich console output and a markdown log."""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from agent_runtime.tools import ToolDefinition

MAX_RESULT_LINES = 30
MAX_RESULT_CHARS = 2000
MAX_ARG_CHARS = 120


def _truncate(text: str) -> str:
    lines = text.splitlines()
    if len(lines) <= MAX_RESULT_LINES and len(text) <= MAX_RESULT_CHARS:
        return text
    truncated = "\n".join(lines[:MAX_RESULT_LINES])[:MAX_RESULT_CHARS]
    omitted = len(lines) - MAX_RESULT_LINES
    if omitted > 0:
        truncated += f"\n... ({omitted} more lines)"
    return truncated


def _format_arg_value(value: Any) -> str:
    s = str(value)
    return s if len(s) <= MAX_ARG_CHARS else s[:MAX_ARG_CHARS] + "..."


class ConsoleCallback:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def print_tools(self, tool_defs: Sequence[ToolDefinition]) -> None:
        table = Table(title="Available tools", border_style="dim", show_lines=False)
        table.add_column("Tool", style="bold cyan", no_wrap=True)
        table.add_column("Kind", style="magenta")
        table.add_column("Description", style="dim")
        for tool_def in tool_defs:
            params = tool_def.parameters_json_schema.get("properties", {})
            table.add_row(f"{tool_def.name}({', '.join(params)})", tool_def.kind, tool_def.description)
        self.console.print(table)
        self.console.print()

    def on_step_start(self, step: int, max_steps: int | None) -> None:
        label = f"Step {step}/{max_steps}" if max_steps else f"Step {step}"
        self.console.rule(f"[bold blue]{label}", style="blue")

    def on_thinking(self, text: str) -> None:
        self.console.print(
            Panel(_truncate(text), title="[bold yellow]Thinking", border_style="yellow", padding=(0, 1))
        )

    def on_tool_call(self, name: str, args: dict[str, Any]) -> None:
        self.console.print(f"  🔧 [bold cyan]{name}[/]")
        for key, value in args.items():
            formatted = _format_arg_value(value)
            if "\n" in formatted:
                self.console.print(f"      [dim]{key}:[/]")
                self.console.print(
                    Panel(
                        Syntax(formatted, "text", theme="ansi_dark", word_wrap=True),
                        border_style="dim",
                        padding=(0, 1),
                    )
                )
            else:
                self.console.print(f"      [dim]{key}:[/] {formatted}")

    def on_tool_result(self, name: str, result: str) -> None:
        truncated = _truncate(result)
        self.console.print(
            Panel(
                Syntax(truncated, "text", theme="ansi_dark", word_wrap=True)
                if len(truncated) > 200
                else Text(truncated, style="dim"),
                title=f"[dim]{name} result",
                border_style="red" if result.startswith("Error:") else "dim",
                padding=(0, 1),
            )
        )

    def on_retry(self, reason: str, attempt: int) -> None:
        self.console.print(f"  [bold red]↻ retry {attempt}[/] [dim]{_format_arg_value(reason)}[/]")

    def on_finish(self, text: str, steps: int, tool_calls: int) -> None:
        self.console.print()
        self.console.rule("[bold green]Run finished", style="green")
        self.console.print(
            Panel(
                text,
                title=f"[bold green]Output ({steps} steps, {tool_calls} tool calls)",
                border_style="green",
                padding=(0, 1),
            )
        )


class MarkdownCallback:
    """Collects run events into a markdown report with collapsible steps."""

    def __init__(self, body_limit: int | None = None) -> None:
        self.body_limit = body_limit
        self._entries: list[str] = []
        self._current_step = 0
        self._finish_text = ""
        self._total_steps = 0
        self._total_tool_calls = 0
        self._retries = 0
        self._open_calls: dict[str, list[int]] = {}

    def on_step_start(self, step: int, max_steps: int | None) -> None:
        self._current_step = step
        self._open_calls.clear()

    def on_thinking(self, text: str) -> None:
        self._entries.append(
            f"<details><summary>Step {self._current_step}: thinking</summary>\n\n{text}\n\n</details>"
        )

    def on_tool_call(self, name: str, args: dict[str, Any]) -> None:
        short_args = ", ".join(f'{k}="{_format_arg_value(v)}"' for k, v in args.items())
        # closed by on_tool_result; results arrive in call order
        self._open_calls.setdefault(name, []).append(len(self._entries))
        self._entries.append(f"<details><summary>Step {self._current_step}: {name}({short_args})</summary>\n\n")

    def on_tool_result(self, name: str, result: str) -> None:
        truncated = _truncate(result).replace("```", "")
        pending = self._open_calls.get(name)
        if pending:
            self._entries[pending.pop(0)] += f"```\n{truncated}\n```\n\n</details>"

    def on_retry(self, reason: str, attempt: int) -> None:
        self._retries += 1
        self._entries.append(f"> Step {self._current_step}: retry {attempt}: {reason}")

    def on_finish(self, text: str, steps: int, tool_calls: int) -> None:
        self._finish_text = text
        self._total_steps = steps
        self._total_tool_calls = tool_calls

    def build_report(self, title: str = "Agent run") -> str:
        parts: list[str] = [f"## {title}", "", self._finish_text or "_No final output._", ""]
        if self._entries:
            inner = "\n\n".join(self._entries)
            summary = (
                f"Run log ({self._total_steps} steps, {self._total_tool_calls} tool calls, "
                f"{self._retries} retries)"
            )
            parts.append(f"<details><summary>{summary}</summary>\n\n{inner}\n\n</details>")

        body = "\n".join(parts)
        if self.body_limit is not None and len(body) > self.body_limit:
            body = body[: self.body_limit - 200] + "\n\n_(log truncated)_\n\n</details>"
        return body


class CompositeCallback:
    """Forwards every event to each delegate in order."""

    def __init__(self, callbacks: Sequence[Any]) -> None:
        self._callbacks = list(callbacks)

    def on_step_start(self, step: int, max_steps: int | None) -> None:
        for cb in self._callbacks:
            cb.on_step_start(step, max_steps)

    def on_thinking(self, text: str) -> None:
        for cb in self._callbacks:
            cb.on_thinking(text)

    def on_tool_call(self, name: str, args: dict[str, Any]) -> None:
        for cb in self._callbacks:
            cb.on_tool_call(name, args)

    def on_tool_result(self, name: str, result: str) -> None:
        for cb in self._callbacks:
            cb.on_tool_result(name, result)

    def on_retry(self, reason: str, attempt: int) -> None:
        for cb in self._callbacks:
            cb.on_retry(reason, attempt)

    def on_finish(self, text: str, steps: int, tool_calls: int) -> None:
        for cb in self._callbacks:
            cb.on_finish(text, steps, tool_calls)
