"""Budget period calculations.

Periods are fixed-length day ranges counted from an anchor date. The
length is any positive number of days and is not tied to calendar months.
"""

from collections.abc import Iterator
from datetime import date, timedelta

from budgetcycle.core.exceptions import InvalidConfiguration
from budgetcycle.core.models import BudgetPeriod, BudgetSettings


def _check_length(cycle_length_days: int) -> None:
    if isinstance(cycle_length_days, bool) or not isinstance(cycle_length_days, int):
        raise InvalidConfiguration(f"Cycle length must be an integer, got {cycle_length_days!r}")
    if cycle_length_days <= 0:
        raise InvalidConfiguration(f"Cycle length must be at least 1 day, got {cycle_length_days}")


def period_index(anchor_date: date, cycle_length_days: int, reference_date: date) -> int:
    """Index of the period containing reference_date (0 = anchor period).

    Uses floor division, so dates before the anchor give negative indexes
    that are still aligned to the anchor.
    """
    _check_length(cycle_length_days)
    return (reference_date - anchor_date).days // cycle_length_days


def compute_period(
    anchor_date: date,
    cycle_length_days: int,
    reference_date: date,
    offset: int = 0,
) -> BudgetPeriod:
    """Compute period boundaries relative to the period containing a date.

    Args:
        anchor_date: Start of period index 0.
        cycle_length_days: Period length in days (positive).
        reference_date: Any date; selects the base period.
        offset: Periods to move from the base period (negative = past).

    Returns:
        BudgetPeriod with an inclusive period_end.

    Raises:
        InvalidConfiguration: If cycle_length_days is not positive.
    """
    k = period_index(anchor_date, cycle_length_days, reference_date)
    period_start = anchor_date + timedelta(days=(k + offset) * cycle_length_days)
    return BudgetPeriod(
        period_start=period_start,
        period_end=period_start + timedelta(days=cycle_length_days - 1),
        period_length_days=cycle_length_days,
    )


def get_period_for_offset(
    settings: BudgetSettings,
    reference_date: date,
    offset: int = 0,
) -> BudgetPeriod:
    """compute_period driven by owner settings."""
    return compute_period(
        settings.anchor_date, settings.cycle_length_days, reference_date, offset
    )


def get_current_period(settings: BudgetSettings, today: date | None = None) -> BudgetPeriod:
    """Get the period containing today."""
    return get_period_for_offset(settings, today or date.today(), 0)


def next_period(settings: BudgetSettings, period: BudgetPeriod) -> BudgetPeriod:
    """Period immediately after the given one under current settings."""
    return get_period_for_offset(settings, period.period_start, 1)


def iterate_periods(
    settings: BudgetSettings,
    start: date,
    end: date,
) -> Iterator[BudgetPeriod]:
    """Iterate over all periods touching [start, end].

    Args:
        settings: Owner budget settings.
        start: First date of interest.
        end: Last date of interest (inclusive).

    Yields:
        Contiguous BudgetPeriods, oldest first.
    """
    period = get_period_for_offset(settings, start)
    while period.period_start <= end:
        yield period
        period = next_period(settings, period)


def days_remaining_in_period(period: BudgetPeriod, today: date | None = None) -> int:
    """Days left in the period including today (0 once it has ended)."""
    today = today or date.today()
    if today > period.period_end:
        return 0
    if today < period.period_start:
        return period.period_length_days
    return (period.period_end - today).days + 1


def is_closed(period: BudgetPeriod, today: date | None = None) -> bool:
    """A period is closed once its last day is strictly before today."""
    return period.period_end < (today or date.today())


def format_period(period: BudgetPeriod) -> str:
    """Format for display: '2024-01-31..2024-02-29'."""
    return f"{period.period_start.isoformat()}..{period.period_end.isoformat()}"
