"""Spend and budget calculations for a single period.

Aggregates transactions (and their splits) into per-category spend and
derives the budget-vs-actual figures used by snapshots.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from budgetcycle.core.models import BudgetPeriod, Transaction, TransactionSplit
from budgetcycle.engine.categories import CategoryTree

logger = logging.getLogger(__name__)


class SpendSummary(BaseModel):
    """Aggregated spend for one period."""

    period_start: date
    period_end: date
    spent_by_category: dict[str, Decimal] = Field(default_factory=dict)
    total_spent: Decimal = Decimal(0)
    transaction_count: int = 0
    last_transaction_date: date | None = None

    def spent_for(self, category_id: str) -> Decimal:
        return self.spent_by_category.get(category_id, Decimal(0))


def aggregate_spend(
    transactions: Iterable[Transaction],
    period: BudgetPeriod,
    tree: CategoryTree,
    splits: Iterable[TransactionSplit] = (),
) -> SpendSummary:
    """Aggregate spend per category for a period.

    A transaction with splits is attributed through its splits only, so a
    split purchase is never counted twice. Transactions without a category
    are ignored; those pointing at unknown categories are skipped and
    logged.

    Args:
        transactions: Transactions to consider (any dates).
        period: Period to aggregate (inclusive bounds).
        tree: Known categories.
        splits: Transaction splits to subcategories.

    Returns:
        SpendSummary for the period.
    """
    in_period = [tx for tx in transactions if period.contains(tx.date)]
    tx_ids = {tx.id for tx in in_period}

    spent: dict[str, Decimal] = {}
    split_tx_ids: set[str] = set()

    for split in splits:
        if split.transaction_id not in tx_ids:
            continue
        if tree.get(split.category_id) is None:
            logger.warning(
                f"spend_orphan_split: transaction_id={split.transaction_id} "
                f"category_id={split.category_id}"
            )
            continue
        split_tx_ids.add(split.transaction_id)
        spent[split.category_id] = spent.get(split.category_id, Decimal(0)) + split.amount

    last_date: date | None = None
    count = 0
    for tx in in_period:
        count += 1
        if last_date is None or tx.date > last_date:
            last_date = tx.date

        if tx.id in split_tx_ids or not tx.category_id:
            continue
        if tree.get(tx.category_id) is None:
            logger.warning(f"spend_orphan_transaction: id={tx.id} category_id={tx.category_id}")
            continue
        spent[tx.category_id] = spent.get(tx.category_id, Decimal(0)) + tx.amount

    return SpendSummary(
        period_start=period.period_start,
        period_end=period.period_end,
        spent_by_category=spent,
        total_spent=sum(spent.values(), Decimal(0)),
        transaction_count=count,
        last_transaction_date=last_date,
    )


def calculate_total_budget_base(
    amounts: Mapping[str, Decimal],
    tree: CategoryTree,
) -> Decimal:
    """Sum of leaf-category allocations.

    Parent amounts are excluded because they restate their children.
    """
    return sum(
        (amounts.get(leaf.id, Decimal(0)) for leaf in tree.leaves()),
        Decimal(0),
    )


def calculate_over_under(budget: Decimal, spent: Decimal) -> Decimal:
    """Budget minus spend.

    Positive = under budget (surplus)
    Negative = over budget (deficit)
    """
    return budget - spent


def rollup_spend_to_leaves(summary: SpendSummary, tree: CategoryTree) -> dict[str, Decimal]:
    """Spend per leaf category.

    Spend booked directly on a parent that has children is not owned by any
    leaf and is left out here; it still counts in summary.total_spent.
    """
    return {leaf.id: summary.spent_for(leaf.id) for leaf in tree.leaves()}
