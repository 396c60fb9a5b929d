"""File-backed workspace used by the CLI.

A workspace is a directory holding budgetcycle.json with one owner's
settings, categories, allocations, transactions and snapshots.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from budgetcycle.core.exceptions import (
    CategoryDeleteBlocked,
    OrphanCategoryReference,
    WorkspaceNotFoundError,
)
from budgetcycle.core.models import (
    Allocation,
    BudgetSettings,
    Category,
    CycleSnapshot,
    RolloverMode,
    Transaction,
    TransactionSplit,
)
from budgetcycle.engine.ledger import AllocationLedger
from budgetcycle.engine.snapshots import CycleSnapshotBuilder, SnapshotStore

WORKSPACE_FILE = "budgetcycle.json"


class WorkspaceData(BaseModel):
    """Serialized workspace content."""

    owner_id: str = "default"
    settings: BudgetSettings
    categories: list[Category] = Field(default_factory=list)
    allocations: list[Allocation] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    splits: list[TransactionSplit] = Field(default_factory=list)
    snapshots: list[CycleSnapshot] = Field(default_factory=list)


class Workspace:
    """Loaded workspace with helpers that wire up engine components."""

    def __init__(self, root: Path, data: WorkspaceData):
        self.root = root
        self.data = data
        self.store = SnapshotStore({data.owner_id: data.snapshots})

    @property
    def file_path(self) -> Path:
        return self.root / WORKSPACE_FILE

    @property
    def settings(self) -> BudgetSettings:
        return self.data.settings

    def ledger(self) -> AllocationLedger:
        return AllocationLedger(self.data.categories, self.data.allocations)

    def builder(self) -> CycleSnapshotBuilder:
        return CycleSnapshotBuilder(self.store, self.data.owner_id)

    def repository(self) -> "WorkspaceCategoryRepository":
        return WorkspaceCategoryRepository(self)

    def save(self) -> None:
        self.data.snapshots = self.store.list_snapshots(self.data.owner_id)
        self.file_path.write_text(self.data.model_dump_json(indent=2), encoding="utf-8")


class WorkspaceCategoryRepository:
    """Category storage over a workspace, with the deletion guards."""

    def __init__(self, workspace: Workspace):
        self.ws = workspace

    def _find(self, category_id: str) -> Category:
        for category in self.ws.data.categories:
            if category.id == category_id:
                return category
        raise OrphanCategoryReference(category_id, "workspace")

    def list_categories(self) -> list[Category]:
        return list(self.ws.data.categories)

    def create_category(
        self, name: str, parent_id: str | None, rollover_mode: RolloverMode
    ) -> Category:
        category = Category(
            id=uuid4().hex, name=name, parent_id=parent_id, rollover_mode=rollover_mode
        )
        self.ws.data.categories.append(category)
        return category

    def update_category(
        self, category_id: str, name: str, parent_id: str | None, rollover_mode: RolloverMode
    ) -> Category:
        current = self._find(category_id)
        if parent_id == category_id:
            parent_id = current.parent_id
        updated = current.model_copy(
            update={"name": name, "parent_id": parent_id, "rollover_mode": rollover_mode}
        )
        self.ws.data.categories = [
            updated if cat.id == category_id else cat for cat in self.ws.data.categories
        ]
        return updated

    def delete_category(self, category_id: str) -> None:
        category = self._find(category_id)
        if category.is_default:
            raise CategoryDeleteBlocked(category_id, "default categories cannot be deleted")
        if any(cat.parent_id == category_id for cat in self.ws.data.categories):
            raise CategoryDeleteBlocked(category_id, "delete subcategories first")
        in_use = any(tx.category_id == category_id for tx in self.ws.data.transactions) or any(
            split.category_id == category_id for split in self.ws.data.splits
        )
        if in_use:
            raise CategoryDeleteBlocked(category_id, "category is used by transactions")
        self.ws.data.categories = [cat for cat in self.ws.data.categories if cat.id != category_id]
        self.ws.data.allocations = [
            alloc for alloc in self.ws.data.allocations if alloc.category_id != category_id
        ]

    def set_budget(self, category_id: str, period_start: date, amount: Decimal) -> None:
        self.ws.data.allocations = [
            alloc
            for alloc in self.ws.data.allocations
            if not (alloc.category_id == category_id and alloc.period_start == period_start)
        ]
        self.ws.data.allocations.append(
            Allocation(category_id=category_id, period_start=period_start, amount=amount)
        )


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from start (default: cwd) to the directory with a workspace file."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / WORKSPACE_FILE).is_file():
            return candidate
    raise WorkspaceNotFoundError(f"No {WORKSPACE_FILE} found in {current} or its parents")


def load_workspace(path: Path | None = None) -> Workspace:
    """Load the workspace containing path.

    Raises:
        WorkspaceNotFoundError: If no workspace file is found.
    """
    root = find_workspace_root(path)
    data = WorkspaceData.model_validate_json((root / WORKSPACE_FILE).read_text(encoding="utf-8"))
    return Workspace(root, data)


def init_workspace(path: Path, settings: BudgetSettings, owner_id: str = "default") -> Workspace:
    """Create a new, empty workspace at path."""
    path.mkdir(parents=True, exist_ok=True)
    workspace = Workspace(path.resolve(), WorkspaceData(owner_id=owner_id, settings=settings))
    workspace.save()
    return workspace
