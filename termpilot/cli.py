"""termpilot CLI: command-line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from termpilot import __version__

app = typer.Typer(
    name="termpilot",
    help="Scripted automation and verification of interactive terminal programs.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"[bold cyan]termpilot[/bold cyan] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Drive terminal programs through scripted steps."""
    pass


def _setup(config_path: Optional[Path], log_level: Optional[str]):
    from termpilot.config import load_config
    from termpilot.logging import configure_logging

    config = load_config(config_path)
    if log_level:
        config.logging.level = log_level
    configure_logging(config.logging.level, log_file=config.logging.file)
    return config


# ── Run Command ─────────────────────────────────────────────


@app.command()
def run(
    scenario: Path = typer.Argument(..., help="Scenario YAML file."),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (defaults to ~/.termpilot/config.yaml).",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="DEBUG, INFO, WARN or ERROR.",
    ),
    show_logs: bool = typer.Option(
        False,
        "--show-logs",
        help="Print captured session output after the results.",
    ),
):
    """
    Run a scenario and report each step.

    Usage:
        termpilot run scenarios/menu.yaml
        termpilot run --log-level DEBUG scenarios/menu.yaml
    """
    from termpilot.errors import TermPilotError
    from termpilot.scenario import load_scenario
    from termpilot.terminal.agent import TUIAgent

    config = _setup(config_path, log_level)

    try:
        loaded = load_scenario(scenario)
    except TermPilotError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(2)

    if not loaded.enabled:
        console.print(f"[yellow]Scenario disabled:[/yellow] {loaded.id}")
        return

    async def _execute():
        async with TUIAgent(config) as agent:
            return await agent.execute(loaded)

    result = asyncio.run(_execute())

    table = Table(title=f"Scenario: {loaded.name or loaded.id}")
    table.add_column("#", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", style="dim")

    for step in result.step_results:
        status_style = "green" if step.passed else "red"
        table.add_row(
            str(step.step_index),
            step.action,
            f"[{status_style}]{step.status.value}[/{status_style}]",
            f"{step.duration * 1000:.0f}ms",
            escape(step.error or step.actual_result or ""),
        )

    console.print(table)

    if show_logs and result.logs:
        console.print()
        for line in result.logs:
            console.print(line, markup=False, highlight=False)

    if result.status.value == "passed":
        console.print(f"\n[green]✓[/green] Passed in {result.duration:.2f}s")
    else:
        console.print(f"\n[red]✗[/red] Failed: {escape(result.error or '')}")
        raise typer.Exit(1)


# ── Inspection Commands ─────────────────────────────────────


@app.command()
def decode(
    text: str = typer.Argument(..., help="Raw output; write ESC as \\e or \\x1b."),
):
    """Show the plain text and style spans of a chunk of terminal output."""
    from termpilot.terminal.decoder import decode as decode_chunk

    raw = text.replace("\\e", "\x1b").replace("\\x1b", "\x1b").replace("\\033", "\x1b")
    plain, spans = decode_chunk(raw)

    console.print(f"Text: [cyan]{escape(repr(plain))}[/cyan]\n", highlight=False)

    if not spans:
        console.print("  [dim]No styled spans.[/dim]")
        return

    table = Table(title="Style Spans")
    table.add_column("Text", style="cyan")
    table.add_column("Fg")
    table.add_column("Bg")
    table.add_column("Styles", style="green")
    table.add_column("Position", style="dim")

    for span in spans:
        table.add_row(
            escape(repr(span.text)),
            span.fg or "",
            span.bg or "",
            ", ".join(span.styles),
            f"{span.position.start}-{span.position.end}",
        )

    console.print(table)


@app.command()
def keys(
    platform: Optional[str] = typer.Option(
        None,
        "--platform",
        "-p",
        help="win32, darwin or linux (defaults to this machine).",
    ),
):
    """Show the key mapping used for {Key} substitution."""
    from termpilot.config import load_config
    from termpilot.terminal.keys import KeyMapping

    config = load_config()
    mapping = KeyMapping.for_platform(platform, config.key_mappings)

    table = Table(title=f"Keys ({mapping.platform})")
    table.add_column("Key", style="cyan")
    table.add_column("Sequence", style="green")

    for name, sequence in mapping.keys.items():
        table.add_row(f"{{{name}}}", escape(repr(sequence)))

    console.print(table)


# ── Server Commands ─────────────────────────────────────────


server_app = typer.Typer(help="Run the termpilot control server.")
app.add_typer(server_app, name="server")


@server_app.command("start")
def server_start(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port."),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Log level."),
):
    """Start the control server."""
    import uvicorn

    from termpilot.server.app import create_app

    config = _setup(None, log_level)
    port = port or config.server.port
    host = host or config.server.bind

    console.print("\n[bold cyan]termpilot server[/bold cyan]")
    console.print(f"  [dim]HTTP: http://{host}:{port}[/dim]")
    console.print(f"  [dim]WS:   ws://{host}:{port}/ws[/dim]")
    console.print()

    uvicorn.run(create_app(config), host=host, port=port, log_level="warning")


# ── Config Commands ─────────────────────────────────────────


config_app = typer.Typer(help="Manage termpilot configuration.")
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init():
    """Create the default configuration file."""
    from termpilot.config import CONFIG_FILE, ensure_dirs, save_default_config

    ensure_dirs()

    if CONFIG_FILE.exists():
        console.print(f"[yellow]Config already exists:[/yellow] {CONFIG_FILE}")
    else:
        path = save_default_config()
        console.print(f"[green]✓[/green] Created config: {path}")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from termpilot.config import load_config

    config = load_config()
    console.print_json(data=config.model_dump())


if __name__ == "__main__":
    app()
