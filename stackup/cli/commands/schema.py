"""CLI — Plan schema export."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax

console = Console()


def dump_schema(
    output: Path | None = typer.Option(None, "--output", "-o", help="Output file path."),
) -> None:
    """Dump the plan JSONSchema to stdout or a file."""
    from stackup.protocol.models import PlanSpec

    json_str = json.dumps(PlanSpec.model_json_schema(), indent=2, default=str)

    if output:
        output.write_text(json_str)
        console.print(f"[green]Schema written to {output}[/green]")
    else:
        console.print(Syntax(json_str, "json"))
