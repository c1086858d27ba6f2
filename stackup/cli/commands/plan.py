"""CLI — Plan validation and execution commands."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackup.exceptions import PlanError, StackupError
from stackup.protocol.models import PlanSpec

if TYPE_CHECKING:
    from stackup.config import Settings
    from stackup.events.bus import EventBus
    from stackup.launchers.base import Launcher

console = Console()
err_console = Console(stderr=True)

_EXIT_CODES = {
    "success": 0,
    "partial_failure": 1,
    "cancelled": 2,
    "timed_out": 2,
}


def _load_plan(plan_file: Path) -> PlanSpec:
    from stackup.protocol.parser import PlanParser

    if not plan_file.exists():
        console.print(f"[red]File not found: {plan_file}[/red]")
        raise typer.Exit(1)
    try:
        return PlanParser().parse_file(plan_file)
    except PlanError as exc:
        console.print(f"[red]Invalid plan: {escape(exc.message)}[/red]")
        raise typer.Exit(1)


def validate_plan(
    plan_file: Path = typer.Argument(help="Plan file (native or Compose YAML/JSON)."),
) -> None:
    """Check a plan and show its startup order."""
    from stackup.orchestration.graph import GraphBuilder

    plan = _load_plan(plan_file)
    try:
        graph = GraphBuilder().build(plan)
    except PlanError as exc:
        console.print(f"[red]Invalid plan: {escape(exc.message)}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Plan {plan.plan_id}")
    table.add_column("Unit", style="cyan")
    table.add_column("Rank", justify="right")
    table.add_column("Depends on")
    table.add_column("Health check")
    table.add_column("Blocks", justify="right")

    for name in graph.topological_order():
        deps = ", ".join(
            f"{d.target} ({d.condition.value})" + ("" if d.required else " optional")
            for d in graph.dependencies(name)
        )
        table.add_row(
            name,
            str(graph.rank(name)),
            deps or "-",
            "yes" if graph.unit(name).has_health_check else "no",
            str(len(graph.descendants(name))),
        )
    console.print(table)
    console.print(f"[green]Plan is valid:[/green] {len(graph)} units")


def up_plan(
    plan_file: Path = typer.Argument(help="Plan file (native or Compose YAML/JSON)."),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", min=0.0, help="Seconds before the run is cut short."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Simulate every unit instead of starting processes."
    ),
    detach: bool = typer.Option(
        False, "--detach", "-d", help="Leave units running and exit once the stack is up."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the outcome as JSON."),
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """Bring a plan up in dependency order.

    Ctrl-C cancels the startup.  Unless ``--detach`` or ``--dry-run`` is
    given, a successful stack stays in the foreground until the next Ctrl-C
    and is then stopped.
    """
    from stackup.config import Settings, override_settings
    from stackup.events.bus import FanoutEventBus, LogEventBus
    from stackup.launchers.process import SubprocessLauncher
    from stackup.launchers.scripted import ScriptedLauncher
    from stackup.logging import configure_logging

    settings = Settings.load(config_file=config)
    override_settings(settings)
    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    plan = _load_plan(plan_file)

    backends: list[EventBus] = []
    if not json_output:
        from stackup.cli.progress import ConsoleProgressBus

        backends.append(ConsoleProgressBus(console))
    if settings.events.file:
        backends.append(LogEventBus(settings.events.file))

    launcher: Launcher
    if dry_run:
        launcher = ScriptedLauncher()
    else:
        launcher = SubprocessLauncher(config=settings.launcher, cwd=plan_file.parent.resolve())

    try:
        status = asyncio.run(
            _up(
                plan,
                launcher,
                timeout=timeout,
                bus=FanoutEventBus(backends),
                settings=settings,
                json_output=json_output,
                hold=not (dry_run or detach),
                detach=detach,
            )
        )
    except StackupError as exc:
        console.print(f"[red]Error: {escape(exc.message)}[/red]")
        raise typer.Exit(1)

    raise typer.Exit(_EXIT_CODES[status])


async def _up(
    plan: PlanSpec,
    launcher: Launcher,
    timeout: float | None,
    bus: EventBus,
    settings: Settings,
    json_output: bool,
    hold: bool,
    detach: bool,
) -> str:
    from stackup.orchestration.executor import PlanExecutor
    from stackup.orchestration.outcome import OutcomeStatus

    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, interrupted.set)
    keep_running = False
    try:
        outcome = await PlanExecutor(launcher, bus=bus, settings=settings).run(
            plan, timeout=timeout, cancel_event=interrupted
        )
        if json_output:
            typer.echo(json.dumps(outcome.to_dict(), indent=2, default=str))
        else:
            from stackup.cli.progress import render_outcome

            render_outcome(console, outcome)

        if outcome.status == OutcomeStatus.SUCCESS:
            if hold:
                err_console.print("[dim]Stack is up. Press Ctrl-C to stop it.[/dim]")
                interrupted.clear()
                await interrupted.wait()
            elif detach:
                keep_running = True
        return outcome.status.value
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if not keep_running:
            await launcher.aclose()
