import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="agent-runtime", help="Run tool-using LLM agents from the command line.")
console = Console()


def _build_agent(
    work_dir: Path,
    output_mode: str,
    json_output: bool,
    max_retries: int = 0,
    request_limit: int = 0,
    timeout: float = 0,
    show_tools: bool = True,
):
    """Create an Agent over the configured OpenAI-compatible model with workspace tools."""
    from agent_runtime.agents.agent import Agent
    from agent_runtime.agents.console_callback import CompositeCallback, ConsoleCallback, MarkdownCallback
    from agent_runtime.config import get_model_config, settings, transport_retry_strategy
    from agent_runtime.retries.transport import RetryingModel
    from agent_runtime.services.llm_service import OpenAIChatModel
    from agent_runtime.tools.workspace_tools import create_workspace_tools
    from agent_runtime.usage import UsageLimits

    model = RetryingModel(OpenAIChatModel(get_model_config("agent")), transport_retry_strategy())
    tools = create_workspace_tools(work_dir)

    console_cb = ConsoleCallback(console)
    if show_tools:
        console_cb.print_tools([tool.definition() for tool in tools])
    md_cb = MarkdownCallback()

    agent = Agent(
        model,
        output_type=dict if json_output else str,
        output_mode=output_mode or None,
        instructions=(
            "You are a helpful assistant working inside a local workspace. "
            "Use the file tools to look things up before answering."
        ),
        tools=tools,
        max_retries=max_retries or settings.max_retries,
        usage_limits=UsageLimits(request_limit=request_limit or settings.request_limit),
        callback=CompositeCallback([console_cb, md_cb]),
        run_timeout=timeout or None,
        name="agent",
    )
    return agent, md_cb


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Task for the agent"),
    workdir: Path = typer.Option(Path("."), "--workdir", "-w", help="Workspace root for file tools"),
    output_mode: str = typer.Option("", "--output-mode", help="text, native, prompted or tool (default: auto)"),
    json_output: bool = typer.Option(False, "--json", help="Ask for a JSON object as the final output"),
    max_retries: int = typer.Option(0, "--max-retries", help="Output/tool retries (0 = use config)"),
    request_limit: int = typer.Option(0, "--request-limit", help="Max model requests (0 = use config)"),
    timeout: float = typer.Option(0, "--timeout", help="Run timeout in seconds (0 = none)"),
    stream: bool = typer.Option(False, "--stream", help="Use the streaming request path"),
    report: Path = typer.Option(None, "--report", help="Write a markdown run log to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Run an agent on PROMPT and print its output."""
    from agent_runtime.errors import AgentRunError

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s | %(levelname)s | %(message)s")

    if output_mode and not json_output and output_mode != "text":
        console.print("[yellow]--output-mode other than text needs --json; using text[/yellow]")
        output_mode = "text"

    try:
        agent, md_cb = _build_agent(workdir, output_mode, json_output, max_retries, request_limit, timeout)
        result = agent.run_sync(prompt, stream=stream)
    except AgentRunError as e:
        console.print(f"[bold red]Run failed[/] during [bold]{e.phase or 'setup'}[/]: {e.message}")
        if e.usage is not None:
            _print_usage(e.usage)
        raise typer.Exit(code=1)

    if json_output:
        console.print_json(json.dumps(result.output, default=str))
    _print_usage(result.usage)
    if report:
        report.write_text(md_cb.build_report(title=prompt[:80]), encoding="utf-8")
        console.print(f"[dim]Run log written to {report}[/dim]")


@app.command()
def config() -> None:
    """Show the effective settings and model configuration."""
    from agent_runtime.config import get_model_config, settings

    table = Table(title="Settings", border_style="dim")
    table.add_column("Name", style="bold cyan")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        if key == "llm_api_key":
            value = "***" if value else "(unset)"
        table.add_row(key, str(value))
    console.print(table)

    model_config = get_model_config("agent")
    console.print(
        f"[dim]Model:[/] {model_config.model}  [dim]base_url:[/] {model_config.base_url}  "
        f"[dim]temperature:[/] {model_config.temperature}  [dim]max_tokens:[/] {model_config.max_tokens}"
    )


def _print_usage(usage) -> None:
    console.print(
        f"[dim]{usage.requests} request(s), {usage.tool_calls} tool call(s), "
        f"{usage.input_tokens} input / {usage.output_tokens} output tokens[/dim]"
    )


if __name__ == "__main__":
    app()
