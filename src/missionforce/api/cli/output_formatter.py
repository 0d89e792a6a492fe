"""
Output formatting for the CLI.
"""

from enum import Enum
from typing import Any, Dict, Optional

import yaml
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from missionforce.core.domain.events import EventType, MissionEvent

console = Console()

STATUS_STYLES = {
    "pending": "white",
    "running": "yellow",
    "completed": "green",
    "failed": "red",
    "planning": "blue",
    "executing": "yellow",
}


class OutputFormat(str, Enum):
    """Available output formats."""
    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _shorten(text: Optional[str], length: int = 60) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    return text if len(text) <= length else text[: length - 3] + "..."


class OutputFormatter:
    """Renders missions and live events."""

    def __init__(self, debug: bool = False, target: Optional[Console] = None):
        self.debug = debug
        self.console = target or console

    def format_mission(self, mission: Dict[str, Any], format_type: OutputFormat) -> None:
        """Display a finished mission in the requested format."""
        if format_type == OutputFormat.JSON:
            self.console.print(JSON.from_data(mission, default=str))
        elif format_type == OutputFormat.YAML:
            self.console.print(yaml.safe_dump(mission, default_flow_style=False, indent=2))
        else:
            self._format_mission_table(mission)

    def _format_mission_table(self, mission: Dict[str, Any]) -> None:
        header = (
            f"[bold]Goal:[/bold] {mission.get('goal', '')}\n"
            f"[bold]Status:[/bold] {_styled_status(mission.get('status', ''))}\n"
            f"[bold]Summary:[/bold] {mission.get('summary') or '-'}"
        )
        if mission.get("error"):
            header += f"\n[bold red]Error:[/bold red] {mission['error']}"
        self.console.print(Panel(header, title=f"Mission {mission.get('id', '')[:8]}"))

        table = Table(title="Agents")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Role", style="green")
        table.add_column("Status", style="yellow")
        table.add_column("Triggered By", style="blue")
        table.add_column("Result", style="white")

        for agent in mission.get("agents", []):
            result = agent.get("result") or {}
            table.add_row(
                agent.get("id", ""),
                _shorten(agent.get("role"), 40),
                _styled_status(agent.get("status", "")),
                agent.get("triggered_by") or "",
                _shorten(result.get("summary")),
            )

        self.console.print(table)

    def print_event(self, event: MissionEvent) -> None:
        """Print one lifecycle line; protocol events only in debug mode."""
        payload = event.payload
        if event.type == EventType.MISSION_PLANNED:
            agents = ", ".join(payload.get("agents", []))
            self.console.print(f"[blue]>[/blue] Plan ready: {agents}")
        elif event.type == EventType.MISSION_EXECUTING:
            self.console.print("[blue]>[/blue] Executing agents...")
        elif event.type == EventType.AGENT_STARTED:
            self.console.print(f"[yellow]>[/yellow] {payload['agent']['id']} started")
        elif event.type == EventType.AGENT_FINISHED:
            agent = payload["agent"]
            self.console.print(f"  {agent['id']} {_styled_status(agent['status'])}")
        elif event.type == EventType.CODEX_TIMEOUT:
            self.console.print(f"[red]![/red] Codex run timed out after {payload.get('timeout')}s")
        elif self.debug and event.type == EventType.CODEX_EVENT:
            self.console.print(f"[dim]  codex: {payload['event'].get('type')}[/dim]")
        elif self.debug and event.type == EventType.CODEX_STDERR:
            self.console.print(f"[dim]  stderr: {_shorten(payload.get('chunk'), 120)}[/dim]")
