"""budgetcycle command line entry point."""

from datetime import date
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from budgetcycle.cli.history import history_app
from budgetcycle.cli.setup_cmd import setup_app
from budgetcycle.cli.status import period_command, status_command
from budgetcycle.cli.utils import parse_date, setup_logging
from budgetcycle.core.models import BudgetSettings
from budgetcycle.core.workspace import WORKSPACE_FILE, init_workspace
from budgetcycle.engine.setup_draft import default_anchor_date

console = Console()

app = typer.Typer(help="Budget cycles, allocations and carryover history")
app.command(name="period")(period_command)
app.command(name="status")(status_command)
app.add_typer(history_app, name="history")
app.add_typer(setup_app, name="setup")


@app.callback()
def main() -> None:
    setup_logging()


@app.command(name="init")
def init_command(
    path: Path = typer.Argument(
        Path("."),
        help="Directory for the new workspace",
    ),
    cycle_days: int = typer.Option(
        30,
        "--cycle-days",
        "-c",
        help="Cycle length in days",
    ),
    anchor: str = typer.Option(
        None,
        "--anchor",
        "-a",
        help="First day of period 0 (default: first day of this month)",
    ),
) -> None:
    """Create a new workspace."""
    if (path / WORKSPACE_FILE).exists():
        console.print(f"[yellow]Workspace already exists:[/yellow] {path / WORKSPACE_FILE}")
        raise typer.Exit(1)

    anchor_date = parse_date(anchor, console) or default_anchor_date(date.today())
    try:
        settings = BudgetSettings(cycle_length_days=cycle_days, anchor_date=anchor_date)
    except ValidationError:
        console.print("[red]Error:[/red] Cycle length must be at least 1 day")
        raise typer.Exit(1)

    ws = init_workspace(path, settings)
    console.print(f"[green]Workspace created:[/green] {ws.file_path}")


if __name__ == "__main__":
    app()
