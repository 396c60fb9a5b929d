"""Tests for cycle snapshots and history."""

from datetime import date
from decimal import Decimal

import pytest

from budgetcycle.core.exceptions import IncompleteAllocation, InvalidAmount, ManualCycleOutOfOrder
from budgetcycle.core.models import (
    Allocation,
    BudgetSettings,
    Category,
    ManualCycleEntry,
    RolloverMode,
    Transaction,
)
from budgetcycle.engine.periods import compute_period
from budgetcycle.engine.snapshots import CycleSnapshotBuilder, SnapshotStore

OWNER = "owner-1"
PERIOD_0 = date(2024, 1, 1)
PERIOD_1 = date(2024, 1, 31)
TODAY = date(2024, 3, 5)


@pytest.fixture
def settings() -> BudgetSettings:
    return BudgetSettings(cycle_length_days=30, anchor_date=PERIOD_0)


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="groceries", name="Groceries"),
        Category(id="produce", name="Produce", parent_id="groceries", rollover_mode=RolloverMode.POSITIVE),
        Category(id="meat", name="Meat", parent_id="groceries", rollover_mode=RolloverMode.BOTH),
        Category(id="rent", name="Rent", rollover_mode=RolloverMode.NONE),
    ]


@pytest.fixture
def allocations() -> list[Allocation]:
    def alloc(category_id: str, start: date, amount: int) -> Allocation:
        return Allocation(category_id=category_id, period_start=start, amount=Decimal(amount))

    return [
        alloc("groceries", PERIOD_0, 500),
        alloc("produce", PERIOD_0, 200),
        alloc("meat", PERIOD_0, 300),
        alloc("rent", PERIOD_0, 1000),
        alloc("groceries", PERIOD_1, 500),
        alloc("produce", PERIOD_1, 200),
        alloc("meat", PERIOD_1, 300),
    ]


@pytest.fixture
def transactions() -> list[Transaction]:
    def tx(tx_id: str, day: date, amount: int, category_id: str) -> Transaction:
        return Transaction(id=tx_id, date=day, amount=Decimal(amount), category_id=category_id)

    return [
        tx("t1", date(2024, 1, 1), 1000, "rent"),
        tx("t2", date(2024, 1, 5), 150, "produce"),
        tx("t3", date(2024, 1, 10), 320, "meat"),
        tx("t4", date(2024, 2, 3), 250, "produce"),
        tx("t5", date(2024, 2, 10), 250, "meat"),
    ]


@pytest.fixture
def builder() -> CycleSnapshotBuilder:
    return CycleSnapshotBuilder(SnapshotStore(), OWNER)


def _entries(**spent: int) -> list[ManualCycleEntry]:
    return [ManualCycleEntry(category_id=cid, spent=Decimal(amount)) for cid, amount in spent.items()]


class TestClosePeriod:
    """Tests for CycleSnapshotBuilder.close_period."""

    def test_rows_and_header(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """One row per leaf category with budget, spend and carryover."""
        period = compute_period(settings.anchor_date, 30, PERIOD_0)
        snapshot, created = builder.close_period(period, categories, allocations, transactions)

        assert created
        assert [row.category_id for row in snapshot.rows] == ["produce", "meat", "rent"]

        produce = snapshot.row_for("produce")
        assert produce.budget_base == Decimal(200)
        assert produce.spent == Decimal(150)
        assert produce.remaining_base == Decimal(50)
        assert produce.carryover_out == Decimal(50)
        assert produce.carryover_running_total == Decimal(50)
        assert produce.carryover_applied_in == Decimal(0)

        meat = snapshot.row_for("meat")
        assert meat.carryover_out == Decimal(-20)
        assert meat.carryover_running_total == Decimal(-20)

        rent = snapshot.row_for("rent")
        assert rent.carryover_out == Decimal(0)
        assert rent.carryover_running_total == Decimal(0)

        header = snapshot.header
        assert header.period_end == date(2024, 1, 30)
        assert header.total_budget_base == Decimal(1500)
        assert header.total_spent == Decimal(1470)
        assert header.over_under_base == Decimal(30)
        assert header.carryover_positive_total == Decimal(50)
        assert header.carryover_negative_total == Decimal(-20)
        assert header.carryover_net_total == Decimal(30)
        assert not header.is_manual
        assert header.created_at.tzinfo is not None

    def test_close_is_idempotent(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """Closing twice returns the stored snapshot unchanged."""
        period = compute_period(settings.anchor_date, 30, PERIOD_0)
        first, created_first = builder.close_period(period, categories, allocations, transactions)
        second, created_second = builder.close_period(period, categories, allocations, [])

        assert created_first
        assert not created_second
        assert second is first
        assert len(builder.store.list_snapshots(OWNER)) == 1

    def test_owners_are_separate(self, settings, categories, allocations, transactions) -> None:
        """Snapshots of one owner are invisible to another."""
        store = SnapshotStore()
        period = compute_period(settings.anchor_date, 30, PERIOD_0)
        CycleSnapshotBuilder(store, "a").close_period(period, categories, allocations, transactions)
        assert store.list_snapshots("b") == []
        assert CycleSnapshotBuilder(store, "b").list_cycles().items == []


class TestEnsureSnapshots:
    """Tests for CycleSnapshotBuilder.ensure_snapshots."""

    def test_closes_elapsed_periods(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """Every elapsed period from the first activity is snapshotted."""
        result = builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)

        assert result.first_period_start == PERIOD_0
        assert result.last_closed_period_start == PERIOD_1
        assert result.created_cycles == 2

    def test_second_run_creates_nothing(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """Repeated lazy closes are no-ops."""
        builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)
        result = builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)
        assert result.created_cycles == 0

    def test_carryover_chains_between_periods(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """applied_in is the previous period's out; running totals accumulate."""
        builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)
        snapshot = builder.store.get(OWNER, PERIOD_1)

        produce = snapshot.row_for("produce")
        assert produce.carryover_applied_in == Decimal(50)
        assert produce.carryover_out == Decimal(0)
        assert produce.carryover_running_total == Decimal(50)

        meat = snapshot.row_for("meat")
        assert meat.carryover_applied_in == Decimal(-20)
        assert meat.carryover_out == Decimal(50)
        assert meat.carryover_running_total == Decimal(30)

        assert snapshot.header.carryover_net_total == Decimal(80)

    def test_current_period_stays_open(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """The period holding today is not closed."""
        result = builder.ensure_snapshots(
            settings, categories, allocations, transactions, today=date(2024, 1, 30)
        )
        assert result.created_cycles == 0
        assert builder.store.list_snapshots(OWNER) == []

    def test_no_activity(self, builder, settings, categories) -> None:
        """Without allocations or transactions there is nothing to close."""
        result = builder.ensure_snapshots(settings, categories, [], [], today=TODAY)
        assert result.first_period_start is None
        assert result.created_cycles == 0

    def test_through_period_start(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """Closing can stop at an earlier period."""
        result = builder.ensure_snapshots(
            settings,
            categories,
            allocations,
            transactions,
            today=TODAY,
            through_period_start=date(2024, 1, 15),
        )
        assert result.created_cycles == 1
        assert result.last_closed_period_start == PERIOD_0

    def test_rename_does_not_rewrite_history(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """Snapshots keep the name and mode from when they were taken."""
        builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)
        renamed = [
            cat.model_copy(update={"name": "Vegetables", "rollover_mode": RolloverMode.NONE})
            if cat.id == "produce"
            else cat
            for cat in categories
        ]
        builder.ensure_snapshots(settings, renamed, allocations, transactions, today=TODAY)

        row = builder.store.get(OWNER, PERIOD_0).row_for("produce")
        assert row.category_name == "Produce"
        assert row.rollover_mode == RolloverMode.POSITIVE

    def test_settings_change_keeps_existing_snapshots(
        self, builder, settings, categories, allocations, transactions
    ) -> None:
        """A new cycle length only affects periods after existing history."""
        builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)
        before = builder.store.list_snapshots(OWNER)

        biweekly = BudgetSettings(cycle_length_days=14, anchor_date=PERIOD_0)
        result = builder.ensure_snapshots(
            biweekly, categories, allocations, transactions, today=date(2024, 4, 1)
        )

        after = builder.store.list_snapshots(OWNER)
        assert result.created_cycles == 1
        assert after[0] is before[0]
        assert after[1] is before[1]
        assert after[2].period_start == date(2024, 3, 11)
        assert after[2].header.period_length_days == 14


class TestManualCycle:
    """Tests for CycleSnapshotBuilder.add_manual_cycle."""

    def test_backfill_before_earliest(self, builder, categories) -> None:
        """Earliest snapshot 2023-12-01: 2023-11-01 is accepted."""
        settings = BudgetSettings(cycle_length_days=30, anchor_date=date(2023, 12, 1))
        period = compute_period(settings.anchor_date, 30, date(2023, 12, 1))
        existing, _ = builder.close_period(period, categories, [], [])

        snapshot = builder.add_manual_cycle(
            settings,
            date(2023, 11, 1),
            _entries(produce=120, meat=80, rent=1000),
            categories,
            today=date(2024, 6, 1),
        )

        assert snapshot.header.is_manual
        assert snapshot.period_end == date(2023, 11, 30)
        assert snapshot.header.total_spent == Decimal(1200)
        assert builder.store.earliest(OWNER) is snapshot
        assert builder.store.get(OWNER, date(2023, 12, 1)) is existing

    def test_backfill_at_earliest_is_rejected(self, builder, categories) -> None:
        """Earliest snapshot 2023-12-01: 2023-12-01 is rejected."""
        settings = BudgetSettings(cycle_length_days=30, anchor_date=date(2023, 12, 1))
        period = compute_period(settings.anchor_date, 30, date(2023, 12, 1))
        builder.close_period(period, categories, [], [])

        with pytest.raises(ManualCycleOutOfOrder) as exc_info:
            builder.add_manual_cycle(
                settings,
                date(2023, 12, 1),
                _entries(produce=0, meat=0, rent=0),
                categories,
                today=date(2024, 6, 1),
            )
        assert exc_info.value.boundary == date(2023, 12, 1)

    def test_backfill_overlapping_earliest_is_rejected(self, builder, categories) -> None:
        """Earliest snapshot 2023-12-01: 2023-11-15 would run to 2023-12-14."""
        settings = BudgetSettings(cycle_length_days=30, anchor_date=date(2023, 12, 1))
        period = compute_period(settings.anchor_date, 30, date(2023, 12, 1))
        builder.close_period(period, categories, [], [])

        with pytest.raises(ManualCycleOutOfOrder) as exc_info:
            builder.add_manual_cycle(
                settings,
                date(2023, 11, 15),
                _entries(produce=0, meat=0, rent=0),
                categories,
                today=date(2024, 6, 1),
            )
        assert exc_info.value.boundary == date(2023, 12, 1)
        assert len(builder.store.list_snapshots(OWNER)) == 1

    def test_misaligned_backfill_ends_before_earliest(self, builder, categories) -> None:
        """A start off the cycle grid is fine while the period ends in time."""
        settings = BudgetSettings(cycle_length_days=30, anchor_date=date(2023, 12, 1))
        period = compute_period(settings.anchor_date, 30, date(2023, 12, 1))
        existing, _ = builder.close_period(period, categories, [], [])

        snapshot = builder.add_manual_cycle(
            settings,
            date(2023, 10, 20),
            _entries(produce=0, meat=0, rent=0),
            categories,
            today=date(2024, 6, 1),
        )

        assert snapshot.period_end == date(2023, 11, 18)
        assert builder.store.get(OWNER, date(2023, 12, 1)) is existing
        assert len(builder.store.list_snapshots(OWNER)) == 2

    def test_backfill_running_into_current_period_is_rejected(
        self, builder, settings, categories
    ) -> None:
        """With no history the period must end before the current one starts."""
        with pytest.raises(ManualCycleOutOfOrder):
            builder.add_manual_cycle(
                settings, date(2024, 2, 15), _entries(produce=0, meat=0, rent=0), categories, today=TODAY
            )
        assert builder.store.list_snapshots(OWNER) == []

    def test_backfill_extends_backward_only(self, builder, settings, categories) -> None:
        """After a backfill, the new earliest is the boundary."""
        builder.add_manual_cycle(
            settings, date(2023, 12, 2), _entries(produce=0, meat=0, rent=0), categories, today=TODAY
        )
        with pytest.raises(ManualCycleOutOfOrder):
            builder.add_manual_cycle(
                settings, date(2023, 12, 2), _entries(produce=0, meat=0, rent=0), categories, today=TODAY
            )

    def test_without_snapshots_boundary_is_current_period(
        self, builder, settings, categories
    ) -> None:
        """With no history the current period start is the boundary."""
        with pytest.raises(ManualCycleOutOfOrder):
            builder.add_manual_cycle(
                settings, date(2024, 3, 1), _entries(produce=0, meat=0, rent=0), categories, today=TODAY
            )
        snapshot = builder.add_manual_cycle(
            settings, PERIOD_1, _entries(produce=0, meat=0, rent=0), categories, today=TODAY
        )
        assert snapshot.period_start == PERIOD_1

    def test_budget_falls_back_to_current_period(self, builder, settings, categories) -> None:
        """Without allocations for the period, current ones are used."""
        current = [
            Allocation(category_id="produce", period_start=date(2024, 3, 1), amount=Decimal(100)),
            Allocation(category_id="rent", period_start=date(2024, 3, 1), amount=Decimal(900)),
        ]
        snapshot = builder.add_manual_cycle(
            settings,
            date(2023, 12, 2),
            _entries(produce=40, meat=10, rent=900),
            categories,
            current,
            today=TODAY,
        )
        produce = snapshot.row_for("produce")
        assert produce.budget_base == Decimal(100)
        assert produce.carryover_out == Decimal(60)
        assert snapshot.row_for("meat").carryover_out == Decimal(-10)
        assert snapshot.header.total_budget_base == Decimal(1000)

    def test_missing_leaf_is_rejected(self, builder, settings, categories) -> None:
        """Every leaf category needs an entry."""
        with pytest.raises(IncompleteAllocation) as exc_info:
            builder.add_manual_cycle(
                settings, date(2023, 12, 2), _entries(produce=10), categories, today=TODAY
            )
        assert exc_info.value.missing_ids == ["meat", "rent"]

    def test_no_categories_is_rejected(self, builder, settings) -> None:
        """A manual cycle needs at least one category."""
        with pytest.raises(IncompleteAllocation):
            builder.add_manual_cycle(settings, date(2023, 12, 2), [], [], today=TODAY)

    def test_negative_spent_is_rejected(self, builder, settings, categories) -> None:
        """Spent amounts must be non-negative."""
        with pytest.raises(InvalidAmount):
            builder.add_manual_cycle(
                settings, date(2023, 12, 2), _entries(produce=-5, meat=0, rent=0), categories, today=TODAY
            )

    def test_unknown_entry_is_skipped(self, builder, settings, categories) -> None:
        """Entries for unknown categories are ignored."""
        snapshot = builder.add_manual_cycle(
            settings,
            date(2023, 12, 2),
            _entries(produce=1, meat=2, rent=3, ghost=50),
            categories,
            today=TODAY,
        )
        assert snapshot.row_for("ghost") is None
        assert snapshot.header.total_spent == Decimal(6)

    def test_unknown_entry_is_skipped_before_amount_checks(
        self, builder, settings, categories
    ) -> None:
        """A negative amount on an unknown category does not fail the cycle."""
        snapshot = builder.add_manual_cycle(
            settings,
            date(2023, 12, 2),
            _entries(produce=1, meat=2, rent=3, ghost=-50),
            categories,
            today=TODAY,
        )
        assert snapshot.row_for("ghost") is None
        assert snapshot.header.total_spent == Decimal(6)


class TestHistoryReads:
    """Tests for list_cycles, get_cycle_details and append_categories."""

    @pytest.fixture(autouse=True)
    def _closed(self, builder, settings, categories, allocations, transactions) -> None:
        builder.ensure_snapshots(settings, categories, allocations, transactions, today=TODAY)

    def test_list_newest_first(self, builder) -> None:
        """Headers come back newest first."""
        page = builder.list_cycles()
        assert [item.period_start for item in page.items] == [PERIOD_1, PERIOD_0]
        assert page.next_cursor is None

    def test_pagination(self, builder) -> None:
        """next_cursor continues with older cycles."""
        first = builder.list_cycles(limit=1)
        assert [item.period_start for item in first.items] == [PERIOD_1]
        assert first.next_cursor == PERIOD_1

        second = builder.list_cycles(limit=1, cursor=first.next_cursor)
        assert [item.period_start for item in second.items] == [PERIOD_0]
        assert second.next_cursor is None

    def test_limit_is_clamped(self, builder) -> None:
        """A limit below 1 still returns one item."""
        assert len(builder.list_cycles(limit=0).items) == 1

    def test_details_sorted_by_name(self, builder) -> None:
        """Category rows are sorted by name."""
        details = builder.get_cycle_details(PERIOD_0)
        assert details.cycle is not None
        assert [row.category_name for row in details.categories] == ["Meat", "Produce", "Rent"]

    def test_details_unknown_cycle(self, builder) -> None:
        """Unknown cycles give empty details."""
        details = builder.get_cycle_details(date(2020, 1, 1))
        assert details.cycle is None
        assert details.categories == []

    def test_append_new_category(self, builder, categories, allocations, transactions) -> None:
        """A category created later gets a row; existing rows are untouched."""
        before = builder.store.get(OWNER, PERIOD_0)
        extended = categories + [Category(id="fun", name="Fun")]

        appended = builder.append_categories(PERIOD_0, extended, allocations, transactions)
        assert appended == 1

        after = builder.store.get(OWNER, PERIOD_0)
        assert after.header == before.header
        assert after.rows[: len(before.rows)] == before.rows
        assert after.row_for("fun").budget_base == Decimal(0)

        assert builder.append_categories(PERIOD_0, extended, allocations, transactions) == 0

    def test_append_to_missing_snapshot(self, builder, categories) -> None:
        """Nothing happens for a period without a snapshot."""
        assert builder.append_categories(date(2020, 1, 1), categories, [], []) == 0
