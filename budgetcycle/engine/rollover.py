"""Rollover (carryover) calculations.

The engine is period-agnostic: it is called once per category per period
close with the previous running total and the period's over/under amount.
"""

from collections.abc import Iterable
from decimal import Decimal

from pydantic import BaseModel

from budgetcycle.core.models import CategoryCycleSnapshotRow, RolloverMode

ZERO = Decimal(0)


class RolloverResult(BaseModel):
    """Carryover produced by closing one category's period.

    carryover_out is also the next period's carryover_applied_in.
    """

    carryover_out: Decimal
    new_running_total: Decimal


class CarryoverTotals(BaseModel):
    """Cycle-level carryover sums over category running totals."""

    positive: Decimal = ZERO
    negative: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.positive + self.negative


def compute_carryover_out(mode: RolloverMode, period_over_under: Decimal) -> Decimal:
    """Portion of a period's over/under amount that carries forward.

    Args:
        mode: Category rollover mode.
        period_over_under: Budget minus spend (positive = surplus).

    Returns:
        Carryover amount (positive = surplus, negative = debt).
    """
    if mode == RolloverMode.POSITIVE:
        return max(period_over_under, ZERO)
    if mode == RolloverMode.NEGATIVE:
        return min(period_over_under, ZERO)
    if mode == RolloverMode.BOTH:
        return period_over_under
    return ZERO


def apply_rollover(
    mode: RolloverMode,
    prior_running_total: Decimal,
    period_over_under: Decimal,
) -> RolloverResult:
    """Apply rollover rules to a closed period.

    Rules:
        none:     out = 0, running total = 0.
        positive: out = max(over_under, 0), running total floored at 0.
        negative: out = min(over_under, 0), running total capped at 0.
        both:     out = over_under, running total = prior + over_under.

    Args:
        mode: Category rollover mode.
        prior_running_total: Running total through the previous period.
        period_over_under: Budget minus spend for the closed period.

    Returns:
        RolloverResult with carryover_out and new_running_total.
    """
    mode = RolloverMode.parse(mode)
    carryover_out = compute_carryover_out(mode, period_over_under)

    if mode == RolloverMode.NONE:
        running = ZERO
    elif mode == RolloverMode.POSITIVE:
        running = max(prior_running_total + carryover_out, ZERO)
    elif mode == RolloverMode.NEGATIVE:
        running = min(prior_running_total + carryover_out, ZERO)
    else:
        running = prior_running_total + carryover_out

    return RolloverResult(carryover_out=carryover_out, new_running_total=running)


def summarize_carryover(rows: Iterable[CategoryCycleSnapshotRow]) -> CarryoverTotals:
    """Split category running totals into positive and negative sums."""
    positive = ZERO
    negative = ZERO
    for row in rows:
        if row.carryover_running_total > 0:
            positive += row.carryover_running_total
        elif row.carryover_running_total < 0:
            negative += row.carryover_running_total
    return CarryoverTotals(positive=positive, negative=negative)
