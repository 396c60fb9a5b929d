"""Exception hierarchy for budgetcycle.

Fatal errors are raised. Advisory ones (UnbalancedAllocation,
OrphanCategoryReference) are never raised by the engine; they are
attached to operation results so batch callers can report them.
"""

from datetime import date
from decimal import Decimal


class BudgetCycleError(Exception):
    """Base class for all budgetcycle errors."""


class InvalidConfiguration(BudgetCycleError):
    """Budget settings cannot produce periods (e.g. cycle length <= 0)."""


class InvalidDraft(BudgetCycleError):
    """A setup draft is not valid enough to be applied."""


class InvalidAmount(BudgetCycleError):
    """An amount is negative, NaN or infinite."""

    def __init__(self, amount: object, what: str = "amount"):
        self.amount = amount
        super().__init__(f"Invalid {what}: {amount!r} (must be a finite, non-negative number)")


class IncompleteAllocation(BudgetCycleError):
    """A write left out categories it was required to cover."""

    def __init__(self, missing_ids: list[str], message: str | None = None):
        self.missing_ids = sorted(missing_ids)
        super().__init__(
            message or f"All subcategories must be allocated; missing: {', '.join(self.missing_ids)}"
        )


class UnbalancedAllocation(BudgetCycleError):
    """Children of a parent do not sum to the parent amount. Advisory."""

    def __init__(self, category_id: str, amount: Decimal, child_total: Decimal):
        self.category_id = category_id
        self.amount = amount
        self.child_total = child_total
        super().__init__(
            f"Subcategories of {category_id} total {child_total}, parent budget is {amount}"
        )

    @property
    def difference(self) -> Decimal:
        return self.child_total - self.amount


class ManualCycleOutOfOrder(BudgetCycleError):
    """Manual history may only extend history backward."""

    def __init__(self, period_start: date, boundary: date):
        self.period_start = period_start
        self.boundary = boundary
        super().__init__(
            f"Manual cycle {period_start.isoformat()} must end before {boundary.isoformat()}"
        )


class OrphanCategoryReference(BudgetCycleError):
    """A record references a category id that is not known. Advisory."""

    def __init__(self, category_id: str, context: str = ""):
        self.category_id = category_id
        self.context = context
        suffix = f" ({context})" if context else ""
        super().__init__(f"Unknown category {category_id}{suffix}")


class CategoryDeleteBlocked(BudgetCycleError):
    """A category cannot be deleted (default, has children, or in use)."""

    def __init__(self, category_id: str, reason: str):
        self.category_id = category_id
        self.reason = reason
        super().__init__(f"Category {category_id} cannot be deleted: {reason}")


class WorkspaceNotFoundError(BudgetCycleError):
    """No budgetcycle workspace file was found."""
