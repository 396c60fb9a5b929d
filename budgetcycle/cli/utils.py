"""Shared CLI helpers."""

import logging
from datetime import date
from decimal import Decimal

import typer
from rich.console import Console

from budgetcycle.core.config import get_config
from budgetcycle.core.exceptions import WorkspaceNotFoundError
from budgetcycle.core.workspace import Workspace, load_workspace


def format_currency(amount: Decimal) -> str:
    """Format amount with thousands separators and two decimals."""
    return f"{amount:,.2f}"


def format_signed(amount: Decimal) -> str:
    sign = "+" if amount > 0 else ""
    return f"{sign}{format_currency(amount)}"


def setup_logging() -> None:
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_date(value: str | None, console: Console) -> date | None:
    """Parse an ISO date option, exiting with an error message on failure."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid date '{value}' (expected YYYY-MM-DD)")
        raise typer.Exit(1)


def open_workspace(path, console: Console) -> Workspace:
    try:
        return load_workspace(path)
    except WorkspaceNotFoundError:
        console.print(
            "[red]Error:[/red] No workspace found. "
            "Run 'budgetcycle init' or use --workspace"
        )
        raise typer.Exit(1)
