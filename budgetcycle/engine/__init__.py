"""Budget engine.

Components, leaves first:
    periods     - period boundaries from anchor date and cycle length
    categories  - two-tier category grouping
    calculator  - period spend aggregation and budget totals
    ledger      - per-period allocations and balance reporting
    rollover    - carryover rules per rollover mode
    snapshots   - immutable history of closed periods
    setup_diff  - reconciliation of wizard drafts with stored categories
    setup_draft - wizard presets, templates and draft (de)serialization
"""

from budgetcycle.engine.categories import CategoryTree, build_category_tree
from budgetcycle.engine.ledger import AllocationLedger
from budgetcycle.engine.periods import compute_period
from budgetcycle.engine.rollover import apply_rollover
from budgetcycle.engine.setup_diff import apply_diff, compute_diff
from budgetcycle.engine.snapshots import CycleSnapshotBuilder, SnapshotStore

__all__ = [
    "AllocationLedger",
    "CategoryTree",
    "CycleSnapshotBuilder",
    "SnapshotStore",
    "apply_diff",
    "apply_rollover",
    "build_category_tree",
    "compute_diff",
    "compute_period",
]
