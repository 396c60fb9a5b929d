"""Cycle snapshot builder.

A period is Open while it is current and becomes Closed once its last day
has passed. Closing is lazy: whenever history is requested, every fully
elapsed period without a snapshot gets one. Snapshots are append-only and
are never recomputed, so later renames, mode changes and deletes leave
history untouched.
"""

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal

from budgetcycle.core.config import get_config
from budgetcycle.core.exceptions import (
    IncompleteAllocation,
    ManualCycleOutOfOrder,
    OrphanCategoryReference,
)
from budgetcycle.core.models import (
    Allocation,
    BudgetPeriod,
    BudgetSettings,
    Category,
    CategoryCycleSnapshotRow,
    CycleDetails,
    CycleListPage,
    CycleSnapshot,
    CycleSnapshotHeader,
    EnsureSnapshotsResult,
    ManualCycleEntry,
    Transaction,
    TransactionSplit,
)
from budgetcycle.engine.calculator import (
    aggregate_spend,
    calculate_over_under,
    calculate_total_budget_base,
)
from budgetcycle.engine.categories import CategoryTree, build_category_tree
from budgetcycle.engine.ledger import validate_amount
from budgetcycle.engine.periods import (
    get_current_period,
    get_period_for_offset,
    is_closed,
    iterate_periods,
)
from budgetcycle.engine.rollover import apply_rollover, summarize_carryover

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class SnapshotStore:
    """In-memory, append-only snapshot storage keyed by owner.

    Holds one lock per owner so that two closes for the same owner cannot
    both write the same period.
    """

    def __init__(self, snapshots: Mapping[str, Iterable[CycleSnapshot]] | None = None):
        self._snapshots: dict[str, dict[date, CycleSnapshot]] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        for owner_id, items in (snapshots or {}).items():
            for snapshot in items:
                self.add(owner_id, snapshot)

    @contextmanager
    def owner_lock(self, owner_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(owner_id, threading.RLock())
        with lock:
            yield

    def get(self, owner_id: str, period_start: date) -> CycleSnapshot | None:
        return self._snapshots.get(owner_id, {}).get(period_start)

    def list_snapshots(self, owner_id: str) -> list[CycleSnapshot]:
        """All snapshots for an owner, oldest first."""
        owned = self._snapshots.get(owner_id, {})
        return [owned[start] for start in sorted(owned)]

    def earliest(self, owner_id: str) -> CycleSnapshot | None:
        snapshots = self.list_snapshots(owner_id)
        return snapshots[0] if snapshots else None

    def latest_before(self, owner_id: str, day: date) -> CycleSnapshot | None:
        """Most recent snapshot starting strictly before day."""
        previous = None
        for snapshot in self.list_snapshots(owner_id):
            if snapshot.period_start >= day:
                break
            previous = snapshot
        return previous

    def overlapping(self, owner_id: str, period: BudgetPeriod) -> CycleSnapshot | None:
        for snapshot in self.list_snapshots(owner_id):
            if snapshot.period_start <= period.period_end and period.period_start <= snapshot.period_end:
                return snapshot
        return None

    def add(self, owner_id: str, snapshot: CycleSnapshot) -> bool:
        """Store a snapshot. Returns False (and stores nothing) if one exists."""
        owned = self._snapshots.setdefault(owner_id, {})
        if snapshot.period_start in owned:
            return False
        owned[snapshot.period_start] = snapshot
        return True

    def append_rows(
        self,
        owner_id: str,
        period_start: date,
        rows: Iterable[CategoryCycleSnapshotRow],
    ) -> int:
        """Add rows for categories not yet present. Existing rows are kept."""
        snapshot = self.get(owner_id, period_start)
        if snapshot is None:
            return 0
        known = {row.category_id for row in snapshot.rows}
        new_rows = [row for row in rows if row.category_id not in known]
        if new_rows:
            self._snapshots[owner_id][period_start] = CycleSnapshot(
                header=snapshot.header, rows=snapshot.rows + tuple(new_rows)
            )
        return len(new_rows)


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------


def _amounts_by_period(allocations: Iterable[Allocation]) -> dict[date, dict[str, Decimal]]:
    by_period: dict[date, dict[str, Decimal]] = {}
    for alloc in allocations:
        by_period.setdefault(alloc.period_start, {})[alloc.category_id] = alloc.amount
    return by_period


def build_category_row(
    category: Category,
    period_start: date,
    budget_base: Decimal,
    spent: Decimal,
    previous_row: CategoryCycleSnapshotRow | None,
) -> CategoryCycleSnapshotRow:
    """Build one category row, chaining carryover from the previous period.

    Name and rollover mode are copied from the category as it is now.
    """
    prior_running_total = previous_row.carryover_running_total if previous_row else Decimal(0)
    carried_in = previous_row.carryover_out if previous_row else Decimal(0)
    rollover = apply_rollover(
        category.rollover_mode,
        prior_running_total,
        calculate_over_under(budget_base, spent),
    )
    return CategoryCycleSnapshotRow(
        period_start=period_start,
        category_id=category.id,
        category_name=category.display_name,
        rollover_mode=category.rollover_mode,
        budget_base=budget_base,
        spent=spent,
        carryover_applied_in=carried_in,
        carryover_out=rollover.carryover_out,
        carryover_running_total=rollover.new_running_total,
    )


def build_header(
    period: BudgetPeriod,
    rows: Iterable[CategoryCycleSnapshotRow],
    total_budget_base: Decimal,
    total_spent: Decimal,
    is_manual: bool = False,
) -> CycleSnapshotHeader:
    totals = summarize_carryover(rows)
    return CycleSnapshotHeader(
        period_start=period.period_start,
        period_end=period.period_end,
        period_length_days=period.period_length_days,
        total_budget_base=total_budget_base,
        total_spent=total_spent,
        carryover_positive_total=totals.positive,
        carryover_negative_total=totals.negative,
        carryover_net_total=totals.net,
        is_manual=is_manual,
    )


class CycleSnapshotBuilder:
    """Materializes immutable snapshots for one owner.

    Callers load settings, categories, allocations and transactions
    beforehand; the builder does no I/O besides the store.
    """

    def __init__(self, store: SnapshotStore, owner_id: str):
        self.store = store
        self.owner_id = owner_id

    def _previous(self, period_start: date) -> CycleSnapshot | None:
        return self.store.latest_before(self.owner_id, period_start)

    def _rows_for(
        self,
        tree: CategoryTree,
        period_start: date,
        budget_for: Mapping[str, Decimal],
        spent_for: Mapping[str, Decimal],
        previous: CycleSnapshot | None,
    ) -> list[CategoryCycleSnapshotRow]:
        return [
            build_category_row(
                leaf,
                period_start,
                budget_for.get(leaf.id, Decimal(0)),
                spent_for.get(leaf.id, Decimal(0)),
                previous.row_for(leaf.id) if previous else None,
            )
            for leaf in tree.leaves()
        ]

    def build_snapshot(
        self,
        period: BudgetPeriod,
        categories: Iterable[Category],
        allocations: Iterable[Allocation],
        transactions: Iterable[Transaction],
        splits: Iterable[TransactionSplit] = (),
    ) -> CycleSnapshot:
        """Compute (without storing) the snapshot for a period."""
        tree = build_category_tree(categories)
        amounts = _amounts_by_period(allocations).get(period.period_start, {})
        spend = aggregate_spend(transactions, period, tree, splits)
        rows = self._rows_for(
            tree,
            period.period_start,
            amounts,
            spend.spent_by_category,
            self._previous(period.period_start),
        )
        header = build_header(
            period,
            rows,
            calculate_total_budget_base(amounts, tree),
            spend.total_spent,
        )
        return CycleSnapshot(header=header, rows=tuple(rows))

    def close_period(
        self,
        period: BudgetPeriod,
        categories: Iterable[Category],
        allocations: Iterable[Allocation],
        transactions: Iterable[Transaction],
        splits: Iterable[TransactionSplit] = (),
    ) -> tuple[CycleSnapshot, bool]:
        """Close a period, or return the snapshot it already has.

        Returns:
            (snapshot, created). created is False when a snapshot for the
            period_start already existed; it is returned unchanged.
        """
        with self.store.owner_lock(self.owner_id):
            existing = self.store.get(self.owner_id, period.period_start)
            if existing is not None:
                return existing, False
            snapshot = self.build_snapshot(period, categories, allocations, transactions, splits)
            self.store.add(self.owner_id, snapshot)
        logger.info(
            f"snapshot_created: owner={self.owner_id} period_start={period.period_start} "
            f"rows={len(snapshot.rows)}"
        )
        return snapshot, True

    def ensure_snapshots(
        self,
        settings: BudgetSettings,
        categories: Iterable[Category],
        allocations: Iterable[Allocation],
        transactions: Iterable[Transaction],
        splits: Iterable[TransactionSplit] = (),
        today: date | None = None,
        through_period_start: date | None = None,
    ) -> EnsureSnapshotsResult:
        """Snapshot every elapsed period that has none yet.

        Starts at the period holding the earliest allocation or transaction
        and stops at the last closed period (or the period holding
        through_period_start, if that one is closed). Periods overlapping an
        existing snapshot, e.g. after a cycle change, are left alone.

        Args:
            settings: Current owner settings.
            categories: Current categories.
            allocations: All allocations.
            transactions: All transactions.
            splits: All transaction splits.
            today: Reference date (default: date.today()).
            through_period_start: Optional last period to close.

        Returns:
            EnsureSnapshotsResult with the range and created count.
        """
        today = today or date.today()
        categories = list(categories)
        allocations = list(allocations)
        transactions = list(transactions)
        splits = list(splits)

        last_closed = get_period_for_offset(settings, today, -1)
        if through_period_start is not None:
            through = get_period_for_offset(settings, through_period_start)
            if is_closed(through, today) and through.period_start < last_closed.period_start:
                last_closed = through

        candidates = [alloc.period_start for alloc in allocations] + [tx.date for tx in transactions]
        if not candidates:
            return EnsureSnapshotsResult(
                first_period_start=None,
                last_closed_period_start=last_closed.period_start,
            )
        first = get_period_for_offset(settings, min(candidates))

        created = 0
        with self.store.owner_lock(self.owner_id):
            for period in iterate_periods(settings, first.period_start, last_closed.period_start):
                if self.store.overlapping(self.owner_id, period) is not None:
                    continue
                _, was_created = self.close_period(period, categories, allocations, transactions, splits)
                created += int(was_created)

        return EnsureSnapshotsResult(
            first_period_start=first.period_start,
            last_closed_period_start=last_closed.period_start,
            created_cycles=created,
        )

    def add_manual_cycle(
        self,
        settings: BudgetSettings,
        period_start: date,
        entries: Iterable[ManualCycleEntry],
        categories: Iterable[Category],
        allocations: Iterable[Allocation] = (),
        today: date | None = None,
    ) -> CycleSnapshot:
        """Backfill a period before the earliest known snapshot.

        Spend comes from the entries instead of transactions. Rollover math
        is the same as for a regular close. Later snapshots are not touched,
        so their carryover chains are not recomputed.

        Args:
            settings: Owner settings (cycle length gives the period end).
            period_start: First day of the backfilled period.
            entries: Spent amount per leaf category; all leaves required.
            categories: Current categories.
            allocations: Allocations; the target period's amounts are used,
                falling back to the current period's.
            today: Reference date for the current period.

        Returns:
            The stored CycleSnapshot.

        Raises:
            ManualCycleOutOfOrder: If the period does not end strictly before
                the earliest snapshot (or the current period when there are
                no snapshots), or overlaps any stored snapshot.
            InvalidAmount: If a spent amount is negative or non-finite.
            IncompleteAllocation: If a leaf category has no entry.
        """
        today = today or date.today()
        tree = build_category_tree(categories)
        leaves = tree.leaves()
        if not leaves:
            raise IncompleteAllocation([], "Create budget categories before adding manual history")

        spent_by_category: dict[str, Decimal] = {}
        skipped: list[OrphanCategoryReference] = []
        for entry in entries:
            if tree.get(entry.category_id) is None:
                skipped.append(OrphanCategoryReference(entry.category_id, "manual cycle entry"))
                logger.warning(f"manual_cycle_orphan: category_id={entry.category_id}")
                continue
            spent_by_category[entry.category_id] = validate_amount(
                entry.spent, f"spent for {entry.category_id}"
            )

        missing = [leaf.id for leaf in leaves if leaf.id not in spent_by_category]
        if missing:
            raise IncompleteAllocation(missing, "All leaf categories must be included")

        by_period = _amounts_by_period(allocations)
        current = get_current_period(settings, today)
        target_amounts = by_period.get(period_start, {})
        current_amounts = by_period.get(current.period_start, {})
        budget_for = {
            leaf.id: target_amounts.get(leaf.id, current_amounts.get(leaf.id, Decimal(0)))
            for leaf in leaves
        }

        period = BudgetPeriod(
            period_start=period_start,
            period_end=period_start + timedelta(days=settings.cycle_length_days - 1),
            period_length_days=settings.cycle_length_days,
        )

        with self.store.owner_lock(self.owner_id):
            earliest = self.store.earliest(self.owner_id)
            boundary = earliest.period_start if earliest else current.period_start
            overlap = self.store.overlapping(self.owner_id, period)
            if period.period_end >= boundary or overlap is not None:
                raise ManualCycleOutOfOrder(period_start, boundary)

            rows = self._rows_for(
                tree, period_start, budget_for, spent_by_category, self._previous(period_start)
            )
            header = build_header(
                period,
                rows,
                sum(budget_for.values(), Decimal(0)),
                sum(spent_by_category.values(), Decimal(0)),
                is_manual=True,
            )
            snapshot = CycleSnapshot(header=header, rows=tuple(rows))
            self.store.add(self.owner_id, snapshot)

        logger.info(
            f"manual_cycle_created: owner={self.owner_id} period_start={period_start} "
            f"rows={len(rows)} skipped={len(skipped)}"
        )
        return snapshot

    def append_categories(
        self,
        period_start: date,
        categories: Iterable[Category],
        allocations: Iterable[Allocation],
        transactions: Iterable[Transaction],
        splits: Iterable[TransactionSplit] = (),
    ) -> int:
        """Add rows for leaf categories missing from an existing snapshot.

        Existing rows and the header are left as they are.

        Returns:
            Number of rows appended.
        """
        with self.store.owner_lock(self.owner_id):
            snapshot = self.store.get(self.owner_id, period_start)
            if snapshot is None:
                return 0
            tree = build_category_tree(categories)
            period = BudgetPeriod(
                period_start=snapshot.period_start,
                period_end=snapshot.period_end,
                period_length_days=snapshot.header.period_length_days,
            )
            amounts = _amounts_by_period(allocations).get(period_start, {})
            spend = aggregate_spend(transactions, period, tree, splits)
            rows = self._rows_for(
                tree, period_start, amounts, spend.spent_by_category, self._previous(period_start)
            )
            known = {row.category_id for row in snapshot.rows}
            appended = self.store.append_rows(
                self.owner_id, period_start, [row for row in rows if row.category_id not in known]
            )
        if appended:
            logger.info(
                f"snapshot_rows_appended: owner={self.owner_id} period_start={period_start} rows={appended}"
            )
        return appended

    # -------------------------------------------------------------------------
    # History reads
    # -------------------------------------------------------------------------

    def list_cycles(self, limit: int | None = None, cursor: date | None = None) -> CycleListPage:
        """Cycle headers newest first.

        Args:
            limit: Page size, clamped to [1, history_page_max].
            cursor: Only cycles starting strictly before this date.

        Returns:
            CycleListPage; next_cursor is set when more cycles remain.
        """
        config = get_config()
        size = limit if limit is not None else config.history_page_default
        size = min(max(size, 1), config.history_page_max)

        snapshots = [
            snapshot
            for snapshot in reversed(self.store.list_snapshots(self.owner_id))
            if cursor is None or snapshot.period_start < cursor
        ]
        page = snapshots[:size]
        has_more = len(snapshots) > size
        return CycleListPage(
            items=[snapshot.header for snapshot in page],
            next_cursor=page[-1].period_start if has_more else None,
        )

    def get_cycle_details(self, period_start: date) -> CycleDetails:
        """Header and category rows (sorted by name) for one cycle."""
        snapshot = self.store.get(self.owner_id, period_start)
        if snapshot is None:
            return CycleDetails()
        return CycleDetails(
            cycle=snapshot.header,
            categories=sorted(snapshot.rows, key=lambda row: row.category_name.lower()),
        )
