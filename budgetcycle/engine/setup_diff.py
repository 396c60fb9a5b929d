"""Setup wizard reconciliation.

Turns the wizard's draft tree into create/update/delete lists against the
categories that existed when editing started, and provides a reference
apply layer that executes such a diff against a category repository.
"""

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from budgetcycle.core.exceptions import BudgetCycleError, CategoryDeleteBlocked
from budgetcycle.core.models import Category, RolloverMode, SetupDraftTree

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Diff model
# -----------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    """A draft row with no existing_id.

    parent_name (not an id) links a subcategory to its parent, because the
    parent may itself be a pending create.
    """

    name: str
    parent_name: str | None = None
    amount: Decimal
    rollover_mode: RolloverMode


class CategoryUpdate(BaseModel):
    """A draft row that points at an existing category."""

    existing_id: str
    name: str
    parent_existing_id: str | None = None
    amount: Decimal
    rollover_mode: RolloverMode


class SetupDiff(BaseModel):
    """Three independent lists; ordering is left to the apply layer."""

    creates: list[CategoryCreate] = Field(default_factory=list)
    updates: list[CategoryUpdate] = Field(default_factory=list)
    deletes: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


def compute_diff(draft: SetupDraftTree, persisted_ids: Iterable[str] | None = None) -> SetupDiff:
    """Compare a draft tree with the persisted category ids.

    Every row with an existing_id becomes an update, even when nothing
    changed. Rows without one become creates. Persisted ids the draft no
    longer references become deletes.

    Args:
        draft: Wizard draft tree.
        persisted_ids: Ids that existed before editing. Defaults to the
            draft's original_category_ids.

    Returns:
        SetupDiff with creates, updates and deletes.
    """
    if persisted_ids is None:
        persisted_ids = draft.original_category_ids

    creates: list[CategoryCreate] = []
    updates: list[CategoryUpdate] = []
    referenced: set[str] = set()

    for cat in draft.categories:
        if cat.existing_id:
            referenced.add(cat.existing_id)
            updates.append(
                CategoryUpdate(
                    existing_id=cat.existing_id,
                    name=cat.name,
                    amount=cat.amount,
                    rollover_mode=cat.rollover_mode,
                )
            )
        else:
            creates.append(
                CategoryCreate(name=cat.name, amount=cat.amount, rollover_mode=cat.rollover_mode)
            )

        for sub in cat.subcategories:
            if sub.existing_id:
                referenced.add(sub.existing_id)
                updates.append(
                    CategoryUpdate(
                        existing_id=sub.existing_id,
                        name=sub.name,
                        parent_existing_id=cat.existing_id,
                        amount=sub.amount,
                        rollover_mode=sub.rollover_mode,
                    )
                )
            else:
                creates.append(
                    CategoryCreate(
                        name=sub.name,
                        parent_name=cat.name,
                        amount=sub.amount,
                        rollover_mode=sub.rollover_mode,
                    )
                )

    deletes: list[str] = []
    for category_id in persisted_ids:
        if category_id not in referenced and category_id not in deletes:
            deletes.append(category_id)

    return SetupDiff(creates=creates, updates=updates, deletes=deletes)


def ordered_creates(diff: SetupDiff) -> list[CategoryCreate]:
    """Creates with every top-level create before any subcategory create."""
    parents = [create for create in diff.creates if create.parent_name is None]
    children = [create for create in diff.creates if create.parent_name is not None]
    return parents + children


def find_name_matches(diff: SetupDiff, categories: Iterable[Category]) -> dict[str, str]:
    """Creates that duplicate an existing category by name.

    Matching is case-insensitive. Categories scheduled for deletion are
    not matched.

    Returns:
        Mapping of create name to the existing category id it matches.
    """
    deleted = set(diff.deletes)
    by_name: dict[str, str] = {}
    for category in categories:
        if category.id in deleted:
            continue
        by_name.setdefault(category.name.lower(), category.id)
    return {
        create.name: by_name[create.name.lower()]
        for create in diff.creates
        if create.name.lower() in by_name
    }


# -----------------------------------------------------------------------------
# Reference apply layer
# -----------------------------------------------------------------------------


class CategoryRepository(Protocol):
    """Storage operations the apply layer needs."""

    def list_categories(self) -> list[Category]: ...

    def create_category(
        self, name: str, parent_id: str | None, rollover_mode: RolloverMode
    ) -> Category: ...

    def update_category(
        self, category_id: str, name: str, parent_id: str | None, rollover_mode: RolloverMode
    ) -> Category: ...

    def delete_category(self, category_id: str) -> None: ...

    def set_budget(self, category_id: str, period_start: date, amount: Decimal) -> None: ...


class RowFailure(BaseModel):
    """A diff row that could not be applied."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: str
    target: str
    error: BudgetCycleError


class ApplyReport(BaseModel):
    """Partial-success summary of apply_diff."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    created: dict[str, str] = Field(default_factory=dict)
    reused: dict[str, str] = Field(default_factory=dict)
    updated: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    zeroed: list[str] = Field(default_factory=list)
    failures: list[RowFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def apply_diff(diff: SetupDiff, repository: CategoryRepository, period_start: date) -> ApplyReport:
    """Execute a diff against a repository.

    Order: deletes (falling back to a zero budget when a delete is
    blocked), then updates, then creates with parents first. A create whose
    name matches an existing category (case-insensitive) reuses it, and a
    subcategory's parent is resolved by name among created and existing
    categories. Row errors are collected and processing continues.

    Args:
        diff: Output of compute_diff.
        repository: Category storage.
        period_start: Period whose budgets are written.

    Returns:
        ApplyReport describing what happened to each row.
    """
    report = ApplyReport()

    for category_id in diff.deletes:
        try:
            repository.delete_category(category_id)
            report.deleted.append(category_id)
        except CategoryDeleteBlocked as exc:
            logger.warning(f"setup_delete_fallback: category_id={category_id} reason={exc.reason}")
            try:
                repository.set_budget(category_id, period_start, Decimal(0))
                report.zeroed.append(category_id)
            except BudgetCycleError as inner:
                report.failures.append(RowFailure(action="delete", target=category_id, error=inner))
        except BudgetCycleError as exc:
            report.failures.append(RowFailure(action="delete", target=category_id, error=exc))

    for update in diff.updates:
        try:
            repository.update_category(
                update.existing_id, update.name, update.parent_existing_id, update.rollover_mode
            )
            repository.set_budget(update.existing_id, period_start, update.amount)
            report.updated.append(update.existing_id)
        except BudgetCycleError as exc:
            report.failures.append(RowFailure(action="update", target=update.existing_id, error=exc))

    existing_by_name: dict[str, str] = {}
    for category in repository.list_categories():
        existing_by_name.setdefault(category.name.lower(), category.id)
    created_parents: dict[str, str] = {}

    for create in ordered_creates(diff):
        key = create.name.lower()
        try:
            category_id = existing_by_name.get(key)
            if category_id is not None:
                report.reused[create.name] = category_id
            else:
                parent_id = None
                if create.parent_name is not None:
                    parent_id = created_parents.get(create.parent_name) or existing_by_name.get(
                        create.parent_name.lower()
                    )
                category = repository.create_category(create.name, parent_id, create.rollover_mode)
                category_id = category.id
                existing_by_name[key] = category_id
                report.created[create.name] = category_id
            if create.parent_name is None:
                created_parents[create.name] = category_id
            repository.set_budget(category_id, period_start, create.amount)
        except BudgetCycleError as exc:
            report.failures.append(RowFailure(action="create", target=create.name, error=exc))

    logger.info(
        f"setup_applied: created={len(report.created)} reused={len(report.reused)} "
        f"updated={len(report.updated)} deleted={len(report.deleted)} "
        f"zeroed={len(report.zeroed)} failures={len(report.failures)}"
    )
    return report
