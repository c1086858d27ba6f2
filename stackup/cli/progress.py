"""CLI — Live progress reporting and outcome rendering."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackup.events.bus import TOPIC_PLANS, TOPIC_UNITS, EventBus
from stackup.orchestration.outcome import Outcome, OutcomeStatus

_PHASE_STYLES = {
    "pending": "dim",
    "starting": "yellow",
    "started": "cyan",
    "healthy": "green",
    "unhealthy": "red",
    "exited": "blue",
    "failed": "bold red",
    "skipped": "magenta",
    "timed_out": "red",
}

_STATUS_STYLES = {
    OutcomeStatus.SUCCESS: "bold green",
    OutcomeStatus.PARTIAL_FAILURE: "bold red",
    OutcomeStatus.CANCELLED: "bold yellow",
    OutcomeStatus.TIMED_OUT: "bold yellow",
}


class ConsoleProgressBus(EventBus):
    """Prints one line per unit transition as the run progresses."""

    def __init__(self, console: Console) -> None:
        self._console = console

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        if topic == TOPIC_PLANS and event.get("event") == "plan_started":
            self._console.print(
                f"[bold]Bringing up[/bold] {event['plan_id']} ({len(event['units'])} units)"
            )
            return
        if topic != TOPIC_UNITS:
            return
        phase = event["phase"]
        style = _PHASE_STYLES.get(phase, "white")
        label = f"exited({event['exit_code']})" if phase == "exited" else phase
        line = f"  [cyan]{event['unit']}[/cyan] [{style}]{label}[/{style}]"
        if event.get("reason"):
            line += f" [dim]({escape(event['reason'])})[/dim]"
        self._console.print(line)


def render_outcome(console: Console, outcome: Outcome) -> None:
    table = Table(title=f"Plan {outcome.plan_id}")
    table.add_column("Unit", style="cyan")
    table.add_column("Phase")
    table.add_column("Reason")

    for name, unit in outcome.units.items():
        style = _PHASE_STYLES.get(unit.phase.value, "white")
        phase = f"[{style}]{unit}[/{style}]"
        if unit.allow_failure and not unit.succeeded:
            phase += " [dim](allowed)[/dim]"
        table.add_row(name, phase, escape(unit.reason or ""))
    console.print(table)

    style = _STATUS_STYLES[outcome.status]
    console.print(f"[{style}]Status: {outcome.status.value}[/{style}]")
