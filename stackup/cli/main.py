"""stackup CLI — Entry point.

Usage:
    stackup validate <plan.yaml>
    stackup up <plan.yaml> [--timeout S] [--dry-run] [--detach] [--json]
    stackup schema [--output FILE]
"""

from __future__ import annotations

import typer

from stackup.cli.commands import plan, schema

app = typer.Typer(
    name="stackup",
    help="stackup — Dependency-ordered, health-gated startup of multi-service stacks.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

app.command("validate")(plan.validate_plan)
app.command("up")(plan.up_plan)
app.command("schema")(schema.dump_schema)


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
