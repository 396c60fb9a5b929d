"""Implementation of 'budgetcycle setup' commands.

Export the current categories as a wizard draft, and reconcile an edited
draft against the workspace.
"""

from datetime import date
from pathlib import Path

import typer
from rich.console import Console

from budgetcycle.cli.utils import format_currency, open_workspace
from budgetcycle.core.exceptions import InvalidDraft
from budgetcycle.core.models import BudgetSettings
from budgetcycle.engine.periods import get_current_period
from budgetcycle.engine.setup_diff import apply_diff, compute_diff, find_name_matches
from budgetcycle.engine.setup_draft import draft_from_existing, encode_draft, parse_draft

console = Console()

setup_app = typer.Typer(help="Budget setup drafts and reconciliation")


@setup_app.command(name="export")
def setup_export(
    output: Path = typer.Argument(
        ...,
        help="Where to write the draft JSON",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """Write the current categories and amounts as an editable draft."""
    ws = open_workspace(workspace, console)
    period = get_current_period(ws.settings)
    draft = draft_from_existing(
        ws.data.categories,
        ws.ledger(),
        period.period_start,
        ws.settings.cycle_length_days,
        ws.settings.anchor_date,
        ws.settings.monthly_income or 0,
    )
    output.write_text(encode_draft(draft), encoding="utf-8")
    console.print(f"[green]Draft written:[/green] {output}")


@setup_app.command(name="apply")
def setup_apply(
    draft_file: Path = typer.Argument(
        ...,
        help="Draft JSON produced by 'setup export' (or the wizard)",
    ),
    confirm: bool = typer.Option(
        False,
        "--confirm",
        "-y",
        help="Apply the changes (default: only show the diff)",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Path to workspace",
    ),
) -> None:
    """Show, and optionally apply, the changes a draft implies.

    Deleting a category that is still in use falls back to a zero budget.
    """
    ws = open_workspace(workspace, console)
    try:
        raw = draft_file.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error:[/red] Cannot read {draft_file}: {e}")
        raise typer.Exit(1)

    try:
        draft = parse_draft(raw)
    except InvalidDraft as e:
        console.print(f"[red]Error:[/red] {draft_file}: {e}")
        raise typer.Exit(1)

    diff = compute_diff(draft)
    names = {cat.id: cat.name for cat in ws.data.categories}
    matches = find_name_matches(diff, ws.data.categories)

    console.print(
        f"Cycle: {draft.cycle_length_days} days from {draft.anchor_date}, "
        f"income {format_currency(draft.income_per_cycle)}"
    )
    for create in diff.creates:
        parent = f" under {create.parent_name}" if create.parent_name else ""
        note = " [dim](matches existing)[/dim]" if create.name in matches else ""
        console.print(f"  [green]+[/green] {create.name}{parent}: {format_currency(create.amount)}{note}")
    for update in diff.updates:
        console.print(f"  [cyan]~[/cyan] {update.name}: {format_currency(update.amount)}")
    for category_id in diff.deletes:
        console.print(f"  [red]-[/red] {names.get(category_id, category_id)}")

    if not confirm:
        console.print()
        console.print("Run with [bold]--confirm[/bold] to apply")
        raise typer.Exit(0)

    ws.data.settings = BudgetSettings(
        cycle_length_days=draft.cycle_length_days,
        anchor_date=draft.anchor_date,
        monthly_income=draft.income_per_cycle,
    )
    period = get_current_period(ws.settings, date.today())
    report = apply_diff(diff, ws.repository(), period.period_start)
    ws.save()

    console.print()
    console.print(
        f"[green]Applied:[/green] {len(report.created)} created, {len(report.reused)} reused, "
        f"{len(report.updated)} updated, {len(report.deleted)} deleted, {len(report.zeroed)} zeroed"
    )
    for failure in report.failures:
        console.print(f"  [red]{failure.action} {failure.target}:[/red] {failure.error}")
    if not report.ok:
        raise typer.Exit(1)
