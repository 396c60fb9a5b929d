"""Allocation ledger.

Stores budgeted amounts per category per period and reports whether a
parent's amount matches the sum of its children. Balance is reported,
never enforced: an unbalanced write is stored and flagged.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, computed_field

from budgetcycle.core.config import get_config
from budgetcycle.core.exceptions import (
    IncompleteAllocation,
    InvalidAmount,
    OrphanCategoryReference,
    UnbalancedAllocation,
)
from budgetcycle.core.models import Allocation, Category, RolloverMode
from budgetcycle.engine.categories import CategoryTree, build_category_tree

logger = logging.getLogger(__name__)


class AllocationLine(BaseModel):
    """One category's amount for a period, as shown to callers."""

    category_id: str
    name: str
    amount: Decimal
    rollover_mode: RolloverMode


class ParentAllocation(BaseModel):
    """A parent category's allocation with its children."""

    period_start: date
    parent: AllocationLine
    children: list[AllocationLine] = Field(default_factory=list)
    tolerance: Decimal = Decimal("0.01")

    @computed_field  # type: ignore[misc]
    @property
    def child_total(self) -> Decimal:
        return sum((child.amount for child in self.children), Decimal(0))

    @computed_field  # type: ignore[misc]
    @property
    def balanced(self) -> bool:
        """Always True without children."""
        if not self.children:
            return True
        return abs(self.child_total - self.parent.amount) < self.tolerance


class AllocationWriteResult(BaseModel):
    """Outcome of set_allocations. Warnings are values, not exceptions."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    applied: bool
    allocation: ParentAllocation | None = None
    warnings: list[UnbalancedAllocation] = Field(default_factory=list)
    skipped: list[OrphanCategoryReference] = Field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return not self.warnings


def validate_amount(amount: Decimal | int | str, what: str = "amount") -> Decimal:
    """Coerce to Decimal and reject negative or non-finite values.

    Raises:
        InvalidAmount: For negative, NaN, infinite or unparseable input.
    """
    if isinstance(amount, bool):
        raise InvalidAmount(amount, what)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(amount, what) from None
    if not value.is_finite() or value < 0:
        raise InvalidAmount(amount, what)
    return value


class AllocationLedger:
    """In-memory store of allocations keyed by (category_id, period_start).

    The ledger is a plain store: it validates amounts and coverage of
    children, but leaves the balance decision to the caller.
    """

    def __init__(
        self,
        categories: Iterable[Category],
        allocations: Iterable[Allocation] = (),
        tolerance: Decimal | None = None,
    ):
        self.tree: CategoryTree = build_category_tree(categories)
        self.tolerance = tolerance if tolerance is not None else get_config().balance_tolerance
        self._amounts: dict[tuple[str, date], Decimal] = {}
        for alloc in allocations:
            self._amounts[(alloc.category_id, alloc.period_start)] = alloc.amount

    def _line(self, category: Category, period_start: date) -> AllocationLine:
        return AllocationLine(
            category_id=category.id,
            name=category.display_name,
            amount=self.amount_for(category.id, period_start),
            rollover_mode=category.rollover_mode,
        )

    def amount_for(self, category_id: str, period_start: date) -> Decimal:
        """Budgeted amount, 0 when nothing was allocated."""
        return self._amounts.get((category_id, period_start), Decimal(0))

    def amounts_for_period(self, period_start: date) -> dict[str, Decimal]:
        return {
            category_id: amount
            for (category_id, start), amount in self._amounts.items()
            if start == period_start
        }

    def allocations(self) -> list[Allocation]:
        return [
            Allocation(category_id=category_id, period_start=start, amount=amount)
            for (category_id, start), amount in sorted(
                self._amounts.items(), key=lambda item: (item[0][1], item[0][0])
            )
        ]

    def get_allocation(self, category_id: str, period_start: date) -> ParentAllocation | None:
        """Get a category's allocation together with its children.

        Args:
            category_id: Category to look up (normally a top-level one).
            period_start: Period the amounts belong to.

        Returns:
            ParentAllocation, or None if the category is unknown.
        """
        category = self.tree.get(category_id)
        if category is None:
            logger.warning(f"allocation_orphan_read: category_id={category_id}")
            return None
        return ParentAllocation(
            period_start=period_start,
            parent=self._line(category, period_start),
            children=[self._line(child, period_start) for child in self.tree.children_of(category_id)],
            tolerance=self.tolerance,
        )

    def hierarchy(self, period_start: date) -> list[ParentAllocation]:
        """All top-level allocations for a period, in tree order."""
        return [
            self.get_allocation(node.id, period_start)  # type: ignore[misc]
            for node in self.tree.top_level
        ]

    def upsert(self, category_id: str, period_start: date, amount: Decimal | int | str) -> bool:
        """Set one category's amount. Returns False for unknown categories."""
        value = validate_amount(amount)
        if self.tree.get(category_id) is None:
            logger.warning(f"allocation_orphan_write: category_id={category_id}")
            return False
        self._amounts[(category_id, period_start)] = value
        return True

    def set_allocations(
        self,
        category_id: str,
        period_start: date,
        parent_amount: Decimal | int | str,
        child_allocations: Mapping[str, Decimal | int | str] | Iterable[Allocation],
    ) -> AllocationWriteResult:
        """Write a parent amount and the amounts of all its children.

        Partial updates are not merged: every existing child must be
        supplied. Unknown child ids are skipped and reported.

        Args:
            category_id: Parent category id.
            period_start: Period being written.
            parent_amount: Budget for the parent.
            child_allocations: Mapping of child id to amount, or Allocations.

        Returns:
            AllocationWriteResult; an UnbalancedAllocation warning is
            attached when children do not sum to the parent.

        Raises:
            InvalidAmount: If any amount is negative or non-finite.
            IncompleteAllocation: If an existing child is missing.
        """
        parent_value = validate_amount(parent_amount, "parent amount")
        if isinstance(child_allocations, Mapping):
            pairs = list(child_allocations.items())
        else:
            pairs = [(alloc.category_id, alloc.amount) for alloc in child_allocations]
        child_values = {cid: validate_amount(amount, f"amount for {cid}") for cid, amount in pairs}

        if self.tree.get(category_id) is None:
            logger.warning(f"allocation_orphan_write: category_id={category_id}")
            return AllocationWriteResult(
                applied=False,
                skipped=[OrphanCategoryReference(category_id, "parent")],
            )

        child_ids = {child.id for child in self.tree.children_of(category_id)}
        skipped: list[OrphanCategoryReference] = []
        for cid in list(child_values):
            if cid not in child_ids:
                logger.warning(f"allocation_orphan_child: parent_id={category_id} category_id={cid}")
                skipped.append(OrphanCategoryReference(cid, f"not a subcategory of {category_id}"))
                del child_values[cid]

        missing = child_ids - set(child_values)
        if missing:
            raise IncompleteAllocation(list(missing))

        self._amounts[(category_id, period_start)] = parent_value
        for cid, value in child_values.items():
            self._amounts[(cid, period_start)] = value

        allocation = self.get_allocation(category_id, period_start)
        warnings: list[UnbalancedAllocation] = []
        if allocation is not None and not allocation.balanced:
            warnings.append(UnbalancedAllocation(category_id, allocation.parent.amount, allocation.child_total))
            logger.info(
                f"allocation_unbalanced: category_id={category_id} "
                f"amount={allocation.parent.amount} child_total={allocation.child_total}"
            )
        return AllocationWriteResult(
            applied=True, allocation=allocation, warnings=warnings, skipped=skipped
        )
