"""Implementation of 'budgetcycle history' commands.

Close elapsed periods, browse snapshots and backfill manual history.
"""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from budgetcycle.cli.utils import format_currency, format_signed, open_workspace, parse_date
from budgetcycle.core.exceptions import BudgetCycleError
from budgetcycle.core.models import ManualCycleEntry

console = Console()

history_app = typer.Typer(help="Close periods and browse budget history")


def _close_elapsed(ws, through: date | None = None):
    """Snapshot elapsed periods before history is read, and persist them."""
    result = ws.builder().ensure_snapshots(
        ws.settings,
        ws.data.categories,
        ws.data.allocations,
        ws.data.transactions,
        ws.data.splits,
        through_period_start=through,
    )
    ws.save()
    return result


@history_app.command(name="close")
def history_close(
    through: str = typer.Option(
        None,
        "--through",
        help="Last period start to close (default: last elapsed period)",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """Snapshot every elapsed period that has no snapshot yet."""
    ws = open_workspace(workspace, console)
    result = _close_elapsed(ws, parse_date(through, console))

    if result.first_period_start is None:
        console.print("[yellow]No budget activity yet[/yellow]")
        raise typer.Exit(0)
    console.print(
        f"[green]Closed:[/green] {result.created_cycles} cycles "
        f"({result.first_period_start} .. {result.last_closed_period_start})"
    )


@history_app.command(name="list")
def history_list(
    limit: int = typer.Option(
        None,
        "--limit",
        "-l",
        help="Number of cycles to show",
    ),
    before: str = typer.Option(
        None,
        "--before",
        help="Show cycles starting before this date",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """List closed cycles, newest first."""
    ws = open_workspace(workspace, console)
    _close_elapsed(ws)
    page = ws.builder().list_cycles(limit=limit, cursor=parse_date(before, console))

    if not page.items:
        console.print("[yellow]No history yet[/yellow]")
        console.print("[dim]A period appears here once it has elapsed[/dim]")
        raise typer.Exit(0)

    table = Table(title="Budget history")
    table.add_column("Period")
    table.add_column("Budget", justify="right")
    table.add_column("Spent", justify="right")
    table.add_column("Over/Under", justify="right")
    table.add_column("Carryover", justify="right")
    for header in page.items:
        label = f"{header.period_start} .. {header.period_end}"
        if header.is_manual:
            label += " [dim](manual)[/dim]"
        table.add_row(
            label,
            format_currency(header.total_budget_base),
            format_currency(header.total_spent),
            format_signed(header.over_under_base),
            format_signed(header.carryover_net_total),
        )
    console.print(table)

    if page.next_cursor:
        console.print(f"[dim]More: --before {page.next_cursor}[/dim]")


@history_app.command(name="show")
def history_show(
    period_start: str = typer.Argument(
        ...,
        help="Period start date (YYYY-MM-DD)",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """Show category rows of one closed cycle."""
    ws = open_workspace(workspace, console)
    _close_elapsed(ws)
    details = ws.builder().get_cycle_details(parse_date(period_start, console))  # type: ignore[arg-type]

    if details.cycle is None:
        console.print(f"[yellow]No snapshot for {period_start}[/yellow]")
        raise typer.Exit(1)

    cycle = details.cycle
    console.print(f"[bold]{cycle.period_start} .. {cycle.period_end}[/bold] ({cycle.period_length_days} days)")
    console.print(
        f"Budget {format_currency(cycle.total_budget_base)}  "
        f"Spent {format_currency(cycle.total_spent)}  "
        f"Over/Under {format_signed(cycle.over_under_base)}"
    )
    console.print(
        f"Carryover +{format_currency(cycle.carryover_positive_total)} / "
        f"{format_currency(cycle.carryover_negative_total)} = "
        f"{format_signed(cycle.carryover_net_total)}"
    )

    table = Table()
    table.add_column("Category")
    table.add_column("Mode")
    table.add_column("Budget", justify="right")
    table.add_column("Spent", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Running", justify="right")
    for row in details.categories:
        table.add_row(
            row.category_name,
            row.rollover_mode.value,
            format_currency(row.budget_base),
            format_currency(row.spent),
            format_signed(row.remaining_base),
            format_signed(row.carryover_applied_in),
            format_signed(row.carryover_out),
            format_signed(row.carryover_running_total),
        )
    console.print(table)


@history_app.command(name="backfill")
def history_backfill(
    period_start: str = typer.Argument(
        ...,
        help="Start of the backfilled period (YYYY-MM-DD)",
    ),
    entries_file: Path = typer.Argument(
        ...,
        help='JSON file mapping category id to spent amount, e.g. {"groceries": "420.50"}',
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """Add a manual cycle before the earliest known snapshot."""
    ws = open_workspace(workspace, console)
    start = parse_date(period_start, console)

    try:
        raw = json.loads(entries_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] Cannot read {entries_file}: {e}")
        raise typer.Exit(1)
    if not isinstance(raw, dict):
        console.print("[red]Error:[/red] Entries file must contain a JSON object")
        raise typer.Exit(1)

    try:
        entries = [
            ManualCycleEntry(category_id=str(category_id), spent=Decimal(str(spent)))
            for category_id, spent in raw.items()
        ]
    except (ArithmeticError, ValidationError) as e:
        console.print(f"[red]Error:[/red] Invalid entry in {entries_file}: {e}")
        raise typer.Exit(1)

    try:
        snapshot = ws.builder().add_manual_cycle(
            ws.settings,
            start,  # type: ignore[arg-type]
            entries,
            ws.data.categories,
            ws.data.allocations,
            today=date.today(),
        )
    except BudgetCycleError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    ws.save()
    console.print(
        f"[green]Added:[/green] {snapshot.period_start} .. {snapshot.period_end} "
        f"({len(snapshot.rows)} categories)"
    )
