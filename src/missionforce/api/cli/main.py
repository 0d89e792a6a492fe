"""Missionforce CLI entry point."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console

from missionforce.api.cli.output_formatter import OutputFormat, OutputFormatter
from missionforce.application.orchestrator import MissionOrchestrator
from missionforce.application.settings import MissionforceSettings
from missionforce.core.domain.events import EventBroadcaster

app = typer.Typer(
    name="missionforce",
    help="Missionforce - multi-agent mission control for the Codex CLI",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def configure_logging(debug: bool) -> None:
    """Route structlog through stdlib logging at DEBUG or WARNING level."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def load_settings(config_file: Optional[Path], debug: Optional[bool]) -> MissionforceSettings:
    settings = (
        MissionforceSettings.load_from_file(config_file) if config_file else MissionforceSettings()
    )
    if debug is not None:
        settings.debug = debug
    return settings


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML settings file (overrides environment)"
    ),
    debug: Optional[bool] = typer.Option(
        None, "--debug/--no-debug", help="Enable verbose protocol traces"
    ),
):
    """Missionforce CLI."""
    ctx.obj = {"config_file": config_file, "debug": debug}


@app.command("run")
def run_mission(
    ctx: typer.Context,
    goal: str = typer.Argument(..., help="Mission goal"),
    context: Optional[str] = typer.Option(
        None, "--context", help="Additional context (plain text or JSON object)"
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.TABLE, "--output", "-o", help="Output format"
    ),
):
    """Plan and execute a mission.

    Examples:
        # Run a mission with the default Codex profile
        missionforce run "Add a health endpoint with tests"

        # Provide structured context
        missionforce run "Fix flaky tests" --context '{"repo": "api"}'
    """
    global_opts = ctx.obj or {}
    settings = load_settings(global_opts.get("config_file"), global_opts.get("debug"))
    configure_logging(settings.debug)

    parsed_context: Optional[object] = context
    if context:
        try:
            parsed_context = json.loads(context)
        except json.JSONDecodeError:
            parsed_context = context

    events = EventBroadcaster()
    formatter = OutputFormatter(debug=settings.debug, target=console)
    events.subscribe(formatter.print_event)
    orchestrator = MissionOrchestrator.from_settings(settings, events=events)

    console.print(f"[bold blue]Mission:[/bold blue] {goal}")
    console.print(f"[dim]Codex: {settings.codex_bin} (profile {settings.profile})[/dim]")

    mission = asyncio.run(orchestrator.create_mission(goal, parsed_context))

    formatter.format_mission(mission.to_dict(), output_format)
    if mission.status.value != "completed":
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from PORT)"),
):
    """Start the HTTP/WebSocket mission server."""
    import uvicorn

    from missionforce.api.server import create_app

    global_opts = ctx.obj or {}
    settings = load_settings(global_opts.get("config_file"), global_opts.get("debug"))
    configure_logging(settings.debug)

    console.print(
        f"[bold blue]Missionforce[/bold blue] debug mode {'enabled' if settings.debug else 'disabled'}"
    )
    uvicorn.run(
        create_app(settings=settings),
        host=host or settings.host,
        port=port or settings.port,
    )


@app.command()
def version():
    """Show Missionforce version."""
    from missionforce import __version__

    console.print(f"[bold blue]Missionforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
