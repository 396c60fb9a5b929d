"""Implementation of 'budgetcycle period' and 'budgetcycle status' commands.

Shows period boundaries and the allocation hierarchy of a period with
spend progress and balance warnings.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from budgetcycle.cli.utils import format_currency, open_workspace, parse_date
from budgetcycle.core.exceptions import InvalidConfiguration
from budgetcycle.engine.calculator import aggregate_spend
from budgetcycle.engine.periods import (
    days_remaining_in_period,
    format_period,
    get_period_for_offset,
)

console = Console()


def period_command(
    offset: int = typer.Option(
        0,
        "--offset",
        "-n",
        help="Periods relative to the current one (negative = past)",
    ),
    on: str = typer.Option(
        None,
        "--date",
        "-d",
        help="Reference date (default: today)",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace (default: current directory)",
    ),
) -> None:
    """Show period boundaries for the workspace cycle settings."""
    ws = open_workspace(workspace, console)
    reference = parse_date(on, console)

    try:
        period = get_period_for_offset(ws.settings, reference or date.today(), offset)
    except InvalidConfiguration as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"Period: [cyan]{format_period(period)}[/cyan]")
    console.print(f"Length: {period.period_length_days} days")


def status_command(
    offset: int = typer.Option(
        0,
        "--offset",
        "-n",
        help="Periods relative to the current one (default: current period)",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace (default: current directory)",
    ),
) -> None:
    """Show allocations and spend for a period.

    Flags parents whose subcategories do not add up to the parent budget.
    Unbalanced allocations are warnings only.
    """
    ws = open_workspace(workspace, console)
    period = get_period_for_offset(ws.settings, date.today(), offset)
    ledger = ws.ledger()
    spend = aggregate_spend(ws.data.transactions, period, ledger.tree, ws.data.splits)

    days_left = days_remaining_in_period(period)

    console.print()
    title = f"Status for {format_period(period)}"
    if days_left > 0:
        title += f" ({days_left} days remaining)"
    console.print(Panel(f"[bold]{title}[/bold]", style="cyan"))
    console.print()

    hierarchy = ledger.hierarchy(period.period_start)
    if not hierarchy:
        console.print("[yellow]No categories defined[/yellow]")
        raise typer.Exit(0)

    warnings: list[str] = []

    for item in hierarchy:
        parent = item.parent
        if item.children:
            spent = sum((spend.spent_for(c.category_id) for c in item.children), Decimal(0))
            spent += spend.spent_for(parent.category_id)
        else:
            spent = spend.spent_for(parent.category_id)
        pct = (spent / parent.amount * 100) if parent.amount > 0 else Decimal(0)
        color = "red" if parent.amount and spent > parent.amount else "green"

        console.print(
            f"[bold]{parent.name}[/bold] [dim]({parent.rollover_mode.value})[/dim]  "
            f"{format_currency(parent.amount):>12}  "
            f"[{color}]{format_currency(spent):>12} ({pct:.1f}%)[/{color}]"
        )
        for child in item.children:
            child_spent = spend.spent_for(child.category_id)
            console.print(
                f"    {child.name} [dim]({child.rollover_mode.value})[/dim]  "
                f"{format_currency(child.amount):>12}  {format_currency(child_spent):>12}"
            )
        if not item.balanced:
            warnings.append(
                f"{parent.name}: subcategories total {format_currency(item.child_total)}, "
                f"budget is {format_currency(parent.amount)}"
            )

    console.print()

    if warnings:
        console.print("[bold yellow]⚠ Warnings[/bold yellow]")
        for w in warnings:
            console.print(f"  - {w}")
        console.print()

    console.print(f"[dim]Transactions: {spend.transaction_count}[/dim]")
    if spend.last_transaction_date:
        console.print(f"[dim]Last transaction: {spend.last_transaction_date}[/dim]")
