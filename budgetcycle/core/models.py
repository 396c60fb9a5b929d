"""Domain models for budgetcycle.

All budget records are defined here using Pydantic v2 for validation.
Amounts are Decimal values in a single, already-normalized currency.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class RolloverMode(str, Enum):
    """How a category's over/under amount carries into the next period.

    NONE:     Nothing carries forward; the running total resets to 0.
    POSITIVE: Only surplus carries forward. Deficits are absorbed.
    NEGATIVE: Only deficits carry forward, as a debt. Surplus is dropped.
    BOTH:     Surplus and deficit both carry forward, unclamped.
    """

    NONE = "none"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    BOTH = "both"

    @classmethod
    def parse(cls, value: Any) -> "RolloverMode":
        """Lenient parse: anything unrecognised means NONE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


class CycleType(str, Enum):
    """Cycle presets offered by the setup wizard."""

    MONTHLY = "monthly"
    SEMI_MONTHLY = "semiMonthly"
    BIWEEKLY = "biweekly"


# -----------------------------------------------------------------------------
# Settings and periods
# -----------------------------------------------------------------------------


class BudgetSettings(BaseModel):
    """Owner-level budget cycle configuration.

    Read on every period computation. Changing it moves all future period
    boundaries but never rewrites snapshots that were already taken.
    """

    cycle_length_days: int
    anchor_date: date
    monthly_income: Decimal | None = None

    @field_validator("cycle_length_days")
    @classmethod
    def validate_cycle_length(cls, value: int) -> int:
        if value < 1:
            raise ValueError("cycle_length_days must be at least 1 day")
        return value


class BudgetPeriod(BaseModel):
    """A contiguous, inclusive date range of fixed length."""

    model_config = ConfigDict(frozen=True)

    period_start: date
    period_end: date  # Inclusive
    period_length_days: int = Field(ge=1)

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end


# -----------------------------------------------------------------------------
# Categories and allocations
# -----------------------------------------------------------------------------


class Category(BaseModel):
    """A budget category. parent_id None means top-level.

    Only two tiers are modelled: a parent and its children.
    """

    id: str = Field(min_length=1)
    name: str
    parent_id: str | None = None
    rollover_mode: RolloverMode = RolloverMode.NONE
    is_default: bool = False

    @field_validator("rollover_mode", mode="before")
    @classmethod
    def parse_rollover_mode(cls, value: Any) -> RolloverMode:
        if value is None:
            return RolloverMode.NONE
        return RolloverMode.parse(value)

    @property
    def display_name(self) -> str:
        return self.name or "Category"


class Allocation(BaseModel):
    """Budgeted amount for one category in one period."""

    category_id: str = Field(min_length=1)
    period_start: date
    amount: Annotated[Decimal, Field(ge=0)]


class Transaction(BaseModel):
    """Spend booked against a category.

    Positive amount = money spent, negative = refund.
    """

    id: str = Field(min_length=1)
    date: date
    amount: Decimal
    category_id: str | None = None


class TransactionSplit(BaseModel):
    """Part of a transaction attributed to a subcategory."""

    transaction_id: str = Field(min_length=1)
    category_id: str = Field(min_length=1)
    amount: Decimal


# -----------------------------------------------------------------------------
# Snapshots (immutable history)
# -----------------------------------------------------------------------------


class CycleSnapshotHeader(BaseModel):
    """Cycle-level history record for a closed period.

    One per owner per period_start. Never mutated once written.
    """

    model_config = ConfigDict(frozen=True)

    period_start: date
    period_end: date
    period_length_days: int = Field(ge=1)
    total_budget_base: Decimal
    total_spent: Decimal
    carryover_positive_total: Decimal = Decimal(0)
    carryover_negative_total: Decimal = Decimal(0)
    carryover_net_total: Decimal = Decimal(0)
    is_manual: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field  # type: ignore[misc]
    @property
    def over_under_base(self) -> Decimal:
        """Budget minus spend (positive = under budget)."""
        return self.total_budget_base - self.total_spent


class CategoryCycleSnapshotRow(BaseModel):
    """Category-level history record for a closed period.

    category_name and rollover_mode are copies taken at snapshot time, so
    later renames or mode changes do not rewrite history.
    """

    model_config = ConfigDict(frozen=True)

    period_start: date
    category_id: str
    category_name: str
    rollover_mode: RolloverMode
    budget_base: Decimal
    spent: Decimal
    carryover_applied_in: Decimal = Decimal(0)
    carryover_out: Decimal = Decimal(0)
    carryover_running_total: Decimal = Decimal(0)

    @computed_field  # type: ignore[misc]
    @property
    def remaining_base(self) -> Decimal:
        return self.budget_base - self.spent


class CycleSnapshot(BaseModel):
    """A header together with its category rows."""

    model_config = ConfigDict(frozen=True)

    header: CycleSnapshotHeader
    rows: tuple[CategoryCycleSnapshotRow, ...] = ()

    @property
    def period_start(self) -> date:
        return self.header.period_start

    @property
    def period_end(self) -> date:
        return self.header.period_end

    def row_for(self, category_id: str) -> CategoryCycleSnapshotRow | None:
        for row in self.rows:
            if row.category_id == category_id:
                return row
        return None


class ManualCycleEntry(BaseModel):
    """User-supplied spend for one category of a backfilled period."""

    category_id: str = Field(min_length=1)
    spent: Decimal


class CycleListPage(BaseModel):
    """One page of cycle headers, newest first."""

    items: list[CycleSnapshotHeader] = Field(default_factory=list)
    next_cursor: date | None = None


class CycleDetails(BaseModel):
    """A cycle header and its category rows sorted by name."""

    cycle: CycleSnapshotHeader | None = None
    categories: list[CategoryCycleSnapshotRow] = Field(default_factory=list)


class EnsureSnapshotsResult(BaseModel):
    """Summary of a lazy close pass."""

    first_period_start: date | None
    last_closed_period_start: date
    created_cycles: int = 0


# -----------------------------------------------------------------------------
# Setup wizard draft
# -----------------------------------------------------------------------------


def _lenient_amount(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        return Decimal(0)
    return amount if amount.is_finite() else Decimal(0)


class SubcategoryDraft(BaseModel):
    """A subcategory row in the setup wizard."""

    name: str = ""
    amount: Decimal = Decimal(0)
    rollover_mode: RolloverMode = RolloverMode.NONE
    existing_id: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def parse_name(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: Any) -> Any:
        return _lenient_amount(value)

    @field_validator("rollover_mode", mode="before")
    @classmethod
    def parse_rollover_mode(cls, value: Any) -> RolloverMode:
        return RolloverMode.parse(value)

    @field_validator("existing_id", mode="before")
    @classmethod
    def parse_existing_id(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None


class CategoryDraft(SubcategoryDraft):
    """A top-level category row in the setup wizard."""

    subcategories: list[SubcategoryDraft] = Field(default_factory=list)

    @field_validator("subcategories", mode="before")
    @classmethod
    def parse_subcategories(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, SubcategoryDraft))]


class SetupDraftTree(BaseModel):
    """Ephemeral wizard state before it is reconciled with storage."""

    categories: list[CategoryDraft] = Field(default_factory=list)
    cycle_type: CycleType = CycleType.MONTHLY
    cycle_length_days: int = Field(default=30, ge=1)
    anchor_date: date
    income_per_cycle: Decimal = Decimal(0)
    template_id: str = "starter"
    mode: str = "create"
    # Ids of every category that existed before editing started
    original_category_ids: list[str] = Field(default_factory=list)

    @field_validator("income_per_cycle", mode="before")
    @classmethod
    def parse_income(cls, value: Any) -> Any:
        return _lenient_amount(value)

    @model_validator(mode="after")
    def validate_mode(self) -> "SetupDraftTree":
        if self.mode not in ("create", "edit"):
            raise ValueError("mode must be 'create' or 'edit'")
        return self

    def draft_ids(self) -> set[str]:
        """Every existing_id referenced anywhere in the tree."""
        ids: set[str] = set()
        for category in self.categories:
            if category.existing_id:
                ids.add(category.existing_id)
            for sub in category.subcategories:
                if sub.existing_id:
                    ids.add(sub.existing_id)
        return ids
